"""Exceptions raised by WebSession when ``raise_on_error`` is set.

Without the flag the same conditions are only recorded in
``WebSession.last_error`` and surfaced as an empty result.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "FetchError",
    "ConfigurationError",
    "TransportError",
    "OperationTimeoutError",
    "EmptyResponseError",
]


class FetchError(Exception):
    """Base class for every failure a fetch call can report."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url


class ConfigurationError(FetchError):
    """The call was rejected before any network activity (e.g. empty URL)."""


class TransportError(FetchError):
    """DNS, connect, TLS, protocol or read failure reported by the transport."""


class OperationTimeoutError(FetchError):
    """The body read exceeded the session's operation timeout."""

    def __init__(self, message: str, *, url: Optional[str] = None, elapsed_ms: int = 0) -> None:
        super().__init__(message, url=url)
        self.elapsed_ms = elapsed_ms


class EmptyResponseError(FetchError):
    """The response stream ended before a single byte was read."""
