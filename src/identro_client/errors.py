"""
Custom exceptions for the Identro client.

Provides structured error handling with retry classification.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx


class IdentroError(Exception):
    """Base error for the Identro client."""

    pass


class StoppedError(IdentroError):
    """Operation attempted after the batcher (or client) was shut down."""

    pass


class ConfigurationError(IdentroError, ValueError):
    """Invalid tunables; raised at construction time."""

    pass


class TransportError(IdentroError):
    """Failure talking to the collector."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientTransportError(TransportError):
    """Network, timeout, HTTP 429 or 5xx. Worth retrying with backoff."""

    pass


class PermanentTransportError(TransportError):
    """4xx (other than 429), malformed payloads. Never retried."""

    pass


def _status_of(e: BaseException) -> Optional[int]:
    status = getattr(e, "status", None)
    if status is None:
        status = getattr(e, "status_code", None)
    if status is None:
        response = getattr(e, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(e: BaseException) -> bool:
    """True for transient failures: connection refused, timeout, 429, 5xx."""
    if isinstance(e, TransientTransportError):
        return True
    if isinstance(e, PermanentTransportError):
        return False
    if isinstance(e, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(e, (ConnectionRefusedError, TimeoutError, asyncio.TimeoutError)):
        return True
    status = _status_of(e)
    if status is not None:
        return status == 429 or 500 <= status < 600
    return False


def map_http_error(e: Exception) -> TransportError:
    """Translate an httpx failure into the client's transport taxonomy."""
    if isinstance(e, TransportError):
        return e
    if isinstance(e, httpx.TimeoutException):
        return TransientTransportError(f"timeout: {e}")
    if isinstance(e, (httpx.ConnectError, httpx.RemoteProtocolError, httpx.NetworkError)):
        return TransientTransportError(f"network error: {e}")
    if isinstance(e, httpx.HTTPStatusError):
        status = e.response.status_code
        msg = f"HTTP {status}: {e.response.reason_phrase}"
        if status == 429 or 500 <= status < 600:
            return TransientTransportError(msg, status=status)
        return PermanentTransportError(msg, status=status)
    if is_retryable(e):
        return TransientTransportError(str(e), status=_status_of(e))
    return PermanentTransportError(f"{type(e).__name__}: {e}", status=_status_of(e))
