"""
Retry Policy
============
Decides whether a failed provider (or broadcast) call is worth repeating
on the same endpoint.

Transient: timeouts, resets, proxy/tunnel failures, HTTP 429/5xx.
Terminal: everything else (bad payloads, rejected routes, missing fields).

Transient errors are retried with linearly growing waits up to
``max_attempts`` total attempts; terminal errors surface immediately.
"""

import time
from enum import Enum
from typing import Any, Callable, Optional

import requests
from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_incrementing,
    retry_if_exception,
)

from utils import logger, ProviderError, NetworkTransientError, sanitize_error_message


class ErrorClass(Enum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"


# Fallback for errors raised below requests (sockets, SOCKS tunnels)
TRANSIENT_MARKERS = ("socket", "timeout", "timed out", "proxy", "network", "econnreset", "econnrefused")

TRANSIENT_TYPES = (
    NetworkTransientError,
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
    ConnectionError,
    TimeoutError,
)


class AttemptsExhausted(Exception):
    """A call failed for good; carries the last error and how many tries it took."""

    def __init__(self, cause: BaseException, attempts: int, error_class: ErrorClass):
        super().__init__(str(cause))
        self.cause = cause
        self.attempts = attempts
        self.error_class = error_class


class RetryPolicy:
    """
    Per-call retry policy.

    Args:
        max_attempts: total attempts per call, first try included
        backoff_seconds: wait before retry N is ``backoff_seconds * N``
        sleep: injectable sleep, defaults to time.sleep
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if backoff_seconds <= 0:
            raise ValueError("backoff_seconds must be positive")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep or time.sleep

    @staticmethod
    def classify(error: BaseException) -> ErrorClass:
        if isinstance(error, ProviderError):
            if isinstance(error, NetworkTransientError):
                return ErrorClass.TRANSIENT
            return ErrorClass.TERMINAL
        if isinstance(error, TRANSIENT_TYPES):
            return ErrorClass.TRANSIENT

        message = str(error).lower()
        if any(marker in message for marker in TRANSIENT_MARKERS):
            return ErrorClass.TRANSIENT
        return ErrorClass.TERMINAL

    def is_transient(self, error: BaseException) -> bool:
        return self.classify(error) is ErrorClass.TRANSIENT

    def _log_retry(self, label: str):
        def before_sleep(retry_state):
            error = retry_state.outcome.exception()
            logger.warning(
                f"[{label}] network hiccup ({sanitize_error_message(error)}), "
                f"retry {retry_state.attempt_number}/{self.max_attempts - 1} "
                f"in {retry_state.next_action.sleep:.1f}s"
            )
        return before_sleep

    def call(self, fn: Callable[[], Any], label: str = "call") -> Any:
        """
        Run ``fn`` under the policy.

        Returns whatever ``fn`` returns; raises AttemptsExhausted with the
        last error once the call fails terminally or runs out of attempts.
        """
        attempts = 0

        def attempt():
            nonlocal attempts
            attempts += 1
            return fn()

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
            retry=retry_if_exception(self.is_transient),
            sleep=self.sleep,
            before_sleep=self._log_retry(label),
            reraise=True,
        )
        try:
            return retrying(attempt)
        except Exception as e:
            raise AttemptsExhausted(e, attempts, self.classify(e)) from e
