"""
Error classification for provider requests.

WHAT: Map HTTP statuses and transport exceptions to ErrorKind
WHY: Retry decisions and user messages depend on the kind, not the raw failure
HOW: Pure functions over status codes and exception types
"""

import asyncio
import json

import httpx

from .types import ErrorKind, ProviderError


TRANSIENT_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.NETWORK_ERROR,
    ErrorKind.INVALID_RESPONSE_SHAPE,
    ErrorKind.SERVER_ERROR,
})


def classify_status(status_code: int, body: str = "") -> ProviderError | None:
    """
    Classify the initial HTTP status of a streaming response.

    Args:
        status_code: HTTP status of the handshake
        body: Error body text, if it was read

    Returns:
        None for 200, otherwise the classified ProviderError
    """
    if status_code == 200:
        return None
    if status_code == 401:
        return ProviderError(ErrorKind.INVALID_CREDENTIAL)
    if status_code == 429:
        return ProviderError(ErrorKind.RATE_LIMITED)
    if status_code == 400:
        return ProviderError(ErrorKind.BAD_REQUEST, body.strip() or "Bad request")
    if 500 <= status_code <= 599:
        detail = f"Server error code: {status_code}"
        if body.strip():
            detail = f"{detail}. {body.strip()}"
        return ProviderError(ErrorKind.SERVER_ERROR, detail)
    return ProviderError(ErrorKind.SERVER_ERROR, f"Unexpected status code: {status_code}")


def classify_exception(exc: BaseException) -> ProviderError:
    """Map a raised exception onto the ErrorKind taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, asyncio.CancelledError):
        return ProviderError(ErrorKind.CANCELLED)
    if isinstance(exc, httpx.TimeoutException):
        return ProviderError(ErrorKind.NETWORK_ERROR, "Request timed out")
    if isinstance(exc, httpx.ConnectError):
        return ProviderError(ErrorKind.NETWORK_ERROR, "Server is not reachable")
    if isinstance(exc, httpx.TransportError):
        return ProviderError(ErrorKind.NETWORK_ERROR, str(exc) or type(exc).__name__)
    if isinstance(exc, (json.JSONDecodeError, KeyError, TypeError)):
        return ProviderError(ErrorKind.INVALID_RESPONSE_SHAPE, str(exc))
    return ProviderError(ErrorKind.NETWORK_ERROR, str(exc) or type(exc).__name__)


def is_transient(error: ProviderError) -> bool:
    """True when another connection attempt may succeed."""
    return error.kind in TRANSIENT_KINDS


def user_message(error: ProviderError, provider_name: str) -> str | None:
    """
    Human-readable message surfaced once per failed turn.

    Args:
        error: Terminal error of the turn
        provider_name: Display name of the provider in use

    Returns:
        Message text, or None for cancellation (never reported)
    """
    if error.kind is ErrorKind.CANCELLED:
        return None
    if error.kind is ErrorKind.INVALID_CREDENTIAL:
        return (
            f"No valid API key found for {provider_name}. "
            "Please open Settings and enter a valid API key."
        )
    return error.description
