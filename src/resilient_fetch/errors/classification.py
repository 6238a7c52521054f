"""
Error classification for outbound HTTP calls.

Maps HTTP status codes and transport exceptions onto a small set of
error classes that drive retry and circuit-breaker decisions.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

import httpx


class ErrorClass(str, Enum):
    """Standard error classification."""

    INVALID_REQUEST = "invalid_request"
    """Malformed request or unsupported parameters (400)."""

    AUTHENTICATION = "authentication"
    """Missing or invalid credentials (401)."""

    PERMISSION_DENIED = "permission_denied"
    """Authenticated but not allowed (403)."""

    NOT_FOUND = "not_found"
    """Requested resource does not exist (404)."""

    RATE_LIMITED = "rate_limited"
    """Upstream throttling (429)."""

    SERVER_ERROR = "server_error"
    """Transient server-side failure (500, 502, other 5xx)."""

    OVERLOADED = "overloaded"
    """Service temporarily unavailable (503)."""

    TIMEOUT = "timeout"
    """Gateway timeout (504) or a local per-attempt timeout."""

    NETWORK = "network"
    """Connection reset, DNS failure or another transport-level error."""

    MALFORMED_RESPONSE = "malformed_response"
    """Body could not be decoded."""

    CIRCUIT_OPEN = "circuit_open"
    """Local circuit breaker rejected the call."""

    LOCAL_RATE_LIMITED = "local_rate_limited"
    """Local token bucket rejected the call."""

    OTHER = "other"
    """Anything else."""


_RETRYABLE_CLASSES: frozenset[ErrorClass] = frozenset(
    {
        ErrorClass.RATE_LIMITED,
        ErrorClass.SERVER_ERROR,
        ErrorClass.OVERLOADED,
        ErrorClass.TIMEOUT,
        ErrorClass.NETWORK,
    }
)

# Admission decisions made before any network attempt
_LOCAL_CLASSES: frozenset[ErrorClass] = frozenset(
    {ErrorClass.CIRCUIT_OPEN, ErrorClass.LOCAL_RATE_LIMITED}
)

_DEFAULT_STATUS_MAPPING: dict[int, ErrorClass] = {
    400: ErrorClass.INVALID_REQUEST,
    401: ErrorClass.AUTHENTICATION,
    403: ErrorClass.PERMISSION_DENIED,
    404: ErrorClass.NOT_FOUND,
    429: ErrorClass.RATE_LIMITED,
    500: ErrorClass.SERVER_ERROR,
    502: ErrorClass.SERVER_ERROR,
    503: ErrorClass.OVERLOADED,
    504: ErrorClass.TIMEOUT,
}


def classify_http_status(status_code: int) -> ErrorClass:
    """Classify an HTTP error status.

    Args:
        status_code: HTTP status code (>= 400)

    Returns:
        ErrorClass for the status
    """
    if status_code in _DEFAULT_STATUS_MAPPING:
        return _DEFAULT_STATUS_MAPPING[status_code]

    if 400 <= status_code < 500:
        return ErrorClass.INVALID_REQUEST
    if 500 <= status_code < 600:
        return ErrorClass.SERVER_ERROR

    return ErrorClass.OTHER


def classify_exception(exc: BaseException) -> ErrorClass:
    """Classify a transport-level exception.

    Timeouts (httpx or the per-attempt ``asyncio`` deadline) map to
    ``TIMEOUT``; every other httpx/OS level failure maps to ``NETWORK``.

    Args:
        exc: Exception raised while performing the request

    Returns:
        ErrorClass for the exception
    """
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ErrorClass.TIMEOUT
    if isinstance(exc, (httpx.TransportError, OSError)):
        return ErrorClass.NETWORK
    if isinstance(exc, httpx.HTTPError):
        return ErrorClass.NETWORK
    return ErrorClass.OTHER


def is_retryable(error_class: ErrorClass) -> bool:
    """Check whether an error class is retried with backoff."""
    return error_class in _RETRYABLE_CLASSES


def is_local(error_class: ErrorClass) -> bool:
    """Check whether an error class is a local admission rejection."""
    return error_class in _LOCAL_CLASSES


def extract_error_message(body: Any) -> str | None:
    """Extract a readable error message from a decoded response body.

    Supports ``{"error": {"message": ...}}``, ``{"error": "..."}``,
    ``{"message": ...}`` and ``{"detail": ...}`` envelopes.

    Args:
        body: Decoded JSON body (any shape)

    Returns:
        Error message if found, None otherwise
    """
    if not isinstance(body, dict) or not body:
        return None

    if "error" in body:
        error = body["error"]
        if isinstance(error, dict):
            msg = error.get("message")
            if isinstance(msg, str):
                return msg
        elif isinstance(error, str):
            return error

    if "message" in body:
        msg = body["message"]
        if isinstance(msg, str):
            return msg

    if "detail" in body:
        detail = body["detail"]
        if isinstance(detail, str):
            return detail
        if isinstance(detail, list) and detail:
            return str(detail[0])

    return None
