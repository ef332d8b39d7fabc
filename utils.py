"""
Utility Module

Logging, error taxonomy and formatting helpers shared by every module.

- SecureLogger redacts secret keys, proxy credentials and API keys
- Error classes for providers, submission and configuration
- Formatting helpers for lamports, durations and signatures
"""

import os
import re
import logging
from enum import Enum
from typing import List, Optional, Set

from rich.logging import RichHandler
from rich.console import Console


# Global console for Rich output
console = Console()

LAMPORTS_PER_SOL = 1_000_000_000


class ProviderErrorKind(Enum):
    """Where inside a provider call an error happened."""
    QUOTE = "quote"
    BUILD = "build"
    NETWORK = "network"


class ProviderError(Exception):
    """Base error raised by a swap provider."""

    kind = ProviderErrorKind.BUILD

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ProviderQuoteError(ProviderError):
    """The aggregator refused or could not price the route."""
    kind = ProviderErrorKind.QUOTE


class ProviderBuildError(ProviderError):
    """The aggregator priced the route but the transaction could not be built."""
    kind = ProviderErrorKind.BUILD


class NetworkTransientError(ProviderError):
    """Timeout, reset or tunnel failure. Retryable on the same provider."""
    kind = ProviderErrorKind.NETWORK


class AllProvidersExhausted(Exception):
    """Every eligible provider failed (or none was available)."""

    def __init__(self, failures: List["ProviderFailure"]):
        self.failures = list(failures)
        if self.failures:
            detail = "; ".join(str(f) for f in self.failures)
        else:
            detail = "no provider available"
        super().__init__(f"All providers exhausted: {detail}")


class SigningError(Exception):
    """Payload could not be decoded or signed."""
    pass


class SubmissionError(Exception):
    """Broadcast failed after its own retry budget."""
    pass


class ConfigurationError(Exception):
    """Fatal startup misconfiguration."""
    pass


_secrets: Set[str] = set()


def register_secret(value: Optional[str]):
    """Make ``value`` redacted from every log line and error message."""
    # Very short values would blank out ordinary words
    if value and len(value) >= 6:
        _secrets.add(value)


def _redact_registered(text: str, replacement: str) -> str:
    # Longest first so a secret containing another is fully covered
    for secret in sorted(_secrets, key=len, reverse=True):
        if secret in text:
            text = text.replace(secret, replacement)
    return text


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.

    Secret keys look exactly like transaction signatures (87-88 base58
    characters), so key material is redacted by value once registered with
    register_secret(). Proxy URLs carry user:password pairs; those and API
    key assignments are redacted by pattern.
    """

    # Patterns to redact from logs
    SENSITIVE_PATTERNS = [
        (r'(socks5h?|https?)://[^:@/\s]+:[^@/\s]+@', r'\1://[CREDENTIALS]@'),
        (r'api[_-]?key["\']?\s*[:=]\s*["\']?[^"\'\s,]+', 'api_key=[REDACTED]'),
        (r'(secret|passphrase)["\']?\s*[:=]\s*["\']?[^"\'\s,]+', r'\1=[REDACTED]'),
    ]

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def _sanitize(self, msg: str) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = _redact_registered(msg, "[SECRET_REDACTED]")
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    @property
    def level(self) -> int:
        return self._logger.level

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(self._sanitize(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(self._sanitize(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(self._sanitize(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(self._sanitize(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._logger.exception(self._sanitize(msg), *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._logger.critical(self._sanitize(msg), *args, **kwargs)


_logger = logging.getLogger("lst_rotator")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def resolve_log_level(log_level) -> int:
    """Numeric level for a level name, or ConfigurationError."""
    name = str(log_level).upper()
    if name not in LOG_LEVELS:
        raise ConfigurationError(f"Unknown log level: {log_level!r} (use one of {', '.join(LOG_LEVELS)})")
    return getattr(logging, name)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> SecureLogger:
    """
    Setup logging with Rich console output and an optional log file.

    Reconfigures the shared logger in place, so module-level ``logger``
    references pick up the new handlers.
    """
    level = resolve_log_level(log_level)
    _logger.setLevel(level)

    # Remove existing handlers
    _logger.handlers = []
    _logger.propagate = False

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setLevel(level)
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    _logger.addHandler(rich_handler)

    if log_file:
        log_path = os.path.abspath(log_file)
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        _logger.addHandler(file_handler)

    return logger


# Shared secure logger; console only until bot.py wires the log file
logger = SecureLogger(_logger)
setup_logging()


# Formatting utilities

def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


def format_sol(lamports: int) -> str:
    """Format a lamport amount as SOL with appropriate precision."""
    sol = lamports_to_sol(lamports)
    if sol < 0.01:
        return f"{sol:.6f} SOL"
    elif sol < 1:
        return f"{sol:.4f} SOL"
    return f"{sol:.2f} SOL"


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"


def format_address(address: str, length: int = 4) -> str:
    """Shorten a base58 address with an ellipsis."""
    if len(address) <= length * 2 + 3:
        return address
    return f"{address[:length]}...{address[-length:]}"


def format_signature(signature: str, length: int = 8) -> str:
    """Format transaction signature with ellipsis."""
    if len(signature) <= length * 2:
        return signature
    return f"{signature[:length]}...{signature[-length:]}"


def explorer_url(signature: str) -> str:
    return f"https://solscan.io/tx/{signature}"


def sanitize_error_message(error) -> str:
    """
    Sanitize error messages to remove sensitive data.

    Args:
        error: Original error (or message)

    Returns:
        Sanitized error message safe for display
    """
    if not isinstance(error, str):
        error = str(error)

    patterns = [
        (r'(socks5h?|https?)://[^:@/\s]+:[^@/\s]+@', r'\1://[CREDENTIALS]@'),
    ]

    sanitized = _redact_registered(error, "[SECRET]")
    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    # Aggregator error bodies can be large
    if len(sanitized) > 300:
        sanitized = sanitized[:300] + "..."
    return sanitized
