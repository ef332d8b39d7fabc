"""
Provider interface shared by every swap aggregator integration.

A provider turns (source mint, destination mint, amount, signer) into an
unsigned, serialized Solana transaction. All HTTP goes through the
``transport`` session handed in by the caller, which is the identity's own
proxied session.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

import requests

from utils import (
    ProviderError,
    ProviderErrorKind,
    NetworkTransientError,
    sanitize_error_message,
)


@dataclass(frozen=True)
class UnsignedTransaction:
    """Serialized transaction returned by an aggregator, not yet signed."""
    payload: bytes
    provider: str
    quoted_out: Optional[int] = None


@dataclass(frozen=True)
class ProviderFailure:
    """Why one provider in the chain did not produce a transaction."""
    provider: str
    kind: ProviderErrorKind
    reason: str
    attempts: int = 1

    def __str__(self) -> str:
        return f"{self.provider} [{self.kind.value} x{self.attempts}]: {self.reason}"


class Provider(ABC):
    """Swap aggregator capability."""

    name: str = "provider"

    def __init__(self, timeout: float = 15.0):
        self.timeout = timeout

    @property
    @abstractmethod
    def available(self) -> bool:
        """Fixed at construction from the presence of endpoints/credentials."""

    @abstractmethod
    def quote_and_build(
        self,
        source_mint: str,
        dest_mint: str,
        amount_units: int,
        signer_address: str,
        transport: requests.Session,
        slippage_bps: Optional[int] = None,
    ) -> UnsignedTransaction:
        """Price the route and build the unsigned transaction, or raise ProviderError."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} available={self.available}>"

    # HTTP helpers

    def _send(
        self,
        transport: requests.Session,
        method: str,
        url: str,
        error_cls: Type[ProviderError],
        **kwargs,
    ) -> Dict[str, Any]:
        """
        Perform one HTTP exchange and return the decoded JSON body.

        Transport failures, 429 and 5xx become NetworkTransientError; any
        other non-2xx or a body that is not JSON becomes ``error_cls``.
        """
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = transport.request(method, url, **kwargs)
        except (requests.exceptions.Timeout,
                requests.exceptions.ConnectionError,
                requests.exceptions.ChunkedEncodingError) as e:
            raise NetworkTransientError(
                f"{method} {url} failed: {type(e).__name__}: {sanitize_error_message(e)}",
                provider=self.name,
            ) from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise NetworkTransientError(
                f"HTTP {status} from {self.name}: {sanitize_error_message(response.text or '')}",
                provider=self.name,
            )
        if status < 200 or status >= 300:
            raise error_cls(
                f"HTTP {status} from {self.name}: {sanitize_error_message(response.text or '')}",
                provider=self.name,
            )

        try:
            body = response.json()
        except (ValueError, json.JSONDecodeError):
            raise error_cls(f"{self.name} returned a non-JSON body", provider=self.name)
        if not isinstance(body, dict):
            raise error_cls(f"{self.name} returned an unexpected body type", provider=self.name)
        return body

    def _require(self, data: Any, field: str, error_cls: Type[ProviderError]) -> Any:
        """Fetch a required field, raising ``error_cls`` when it is missing."""
        if not isinstance(data, dict) or data.get(field) in (None, ""):
            raise error_cls(f"{self.name} response missing field: {field}", provider=self.name)
        return data[field]
