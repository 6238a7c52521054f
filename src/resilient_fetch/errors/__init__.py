"""
Error hierarchy for resilient-fetch.

Provides typed fetch errors and the classification that decides
whether a failure is retried.
"""

from resilient_fetch.errors.base import (
    CircuitOpenError,
    ErrorContext,
    FetchError,
    MalformedResponseError,
    RateLimitedError,
    RemoteError,
    TransportError,
    ValidationError,
)
from resilient_fetch.errors.classification import (
    ErrorClass,
    classify_exception,
    classify_http_status,
    extract_error_message,
    is_local,
    is_retryable,
)

__all__ = [
    "CircuitOpenError",
    # Classification
    "ErrorClass",
    "ErrorContext",
    # Base errors
    "FetchError",
    "MalformedResponseError",
    "RateLimitedError",
    "RemoteError",
    "TransportError",
    "ValidationError",
    "classify_exception",
    "classify_http_status",
    "extract_error_message",
    "is_local",
    "is_retryable",
]
