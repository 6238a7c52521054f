"""
Base error classes for resilient-fetch.

Provides a layered error hierarchy:
- FetchError: Base class for every classified fetch failure
- CircuitOpenError: Local circuit breaker rejected the call
- RateLimitedError: Local token bucket rejected the call
- RemoteError: Upstream answered with an HTTP error status
- TransportError: Timeout, connection or other network failure
- MalformedResponseError: Body could not be decoded
- ValidationError: Request could not be built (programming/config error)
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from typing import Any

from resilient_fetch.errors.classification import (
    ErrorClass,
    classify_http_status,
    extract_error_message,
    is_local,
    is_retryable,
)


@dataclass
class ErrorContext:
    """Structured error context for diagnostics."""

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'circuit', 'rate_limit', 'remote', 'transport')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class FetchError(Exception):
    """Base class for all classified fetch failures.

    Every failure returned by :class:`~resilient_fetch.ResilientFetcher`
    is an instance of this class, so callers can treat any of them as
    "data unavailable this cycle".

    Attributes:
        message: Human-readable error message
        error_class: Classification driving retry decisions
        context: Structured error context
        key: Cache key of the fetch that failed, when known
    """

    default_class: ErrorClass = ErrorClass.OTHER

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        error_class: ErrorClass | None = None,
        key: str | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        self.error_class = error_class or self.default_class
        self.key = key
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    @property
    def retryable(self) -> bool:
        """Whether the attempt loop may retry this error."""
        return is_retryable(self.error_class)

    @property
    def counts_as_failure(self) -> bool:
        """Whether this error is recorded against the circuit breaker."""
        return not is_local(self.error_class)

    def with_hint(self, hint: str) -> FetchError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self

    def for_key(self, key: str) -> FetchError:
        """Attach the cache key of the failing fetch."""
        self.key = key
        self.context.details.setdefault("key", key)
        return self


class CircuitOpenError(FetchError):
    """Raised when the circuit is open and the call is rejected locally."""

    default_class = ErrorClass.CIRCUIT_OPEN

    def __init__(
        self,
        message: str = "Circuit breaker is OPEN. API is temporarily unavailable.",
        *,
        time_until_retry: float | None = None,
        key: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="circuit")
        if time_until_retry is not None:
            ctx.details["time_until_retry"] = time_until_retry
        super().__init__(message, ctx, key=key)
        self.time_until_retry = time_until_retry


class RateLimitedError(FetchError):
    """Raised when the local token bucket has no credit for the call."""

    default_class = ErrorClass.LOCAL_RATE_LIMITED

    def __init__(
        self,
        message: str = "Local rate limit exhausted",
        *,
        retry_after: float | None = None,
        key: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="rate_limit")
        if retry_after is not None:
            ctx.details["retry_after"] = retry_after
        super().__init__(message, ctx, key=key)
        self.retry_after = retry_after


class RemoteError(FetchError):
    """Upstream returned an HTTP error status.

    Attributes:
        status_code: HTTP status code
        body: Decoded error body, if any
        retry_after: Retry-After header value in seconds, if present
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        error_class: ErrorClass | None = None,
        body: Any = None,
        retry_after: float | None = None,
        url: str | None = None,
        key: str | None = None,
    ) -> None:
        error_class = error_class or classify_http_status(status_code)
        ctx = ErrorContext(source="remote")
        ctx.details["status_code"] = status_code
        ctx.details["error_class"] = error_class.value
        if url:
            ctx.details["url"] = url

        super().__init__(message, ctx, error_class=error_class, key=key)

        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after
        self.url = url

    @classmethod
    def from_response(
        cls,
        status_code: int,
        body: Any = None,
        headers: dict[str, str] | None = None,
        url: str | None = None,
    ) -> RemoteError:
        """Create a RemoteError from an HTTP error response.

        Args:
            status_code: HTTP status code
            body: Decoded body, if it was JSON
            headers: Response headers
            url: Requested URL

        Returns:
            RemoteError with the status classified
        """
        message = extract_error_message(body) or f"HTTP {status_code}"

        retry_after = None
        if headers:
            retry_after_str = headers.get("retry-after") or headers.get("Retry-After")
            if retry_after_str:
                with contextlib.suppress(ValueError):
                    retry_after = float(retry_after_str)

        return cls(
            message,
            status_code=status_code,
            body=body,
            retry_after=retry_after,
            url=url,
        )


class TransportError(FetchError):
    """Timeout, connection reset, DNS failure or other network error."""

    default_class = ErrorClass.NETWORK

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        error_class: ErrorClass | None = None,
        cause: BaseException | None = None,
        key: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="transport")
        if url:
            ctx.details["url"] = url
        super().__init__(message, ctx, error_class=error_class, key=key)
        self.url = url
        self.__cause__ = cause


class MalformedResponseError(FetchError):
    """Response body could not be decoded; never retried."""

    default_class = ErrorClass.MALFORMED_RESPONSE

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        cause: BaseException | None = None,
        key: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="decode")
        if url:
            ctx.details["url"] = url
        super().__init__(message, ctx, key=key)
        self.url = url
        self.__cause__ = cause


class ValidationError(FetchError):
    """Request could not be constructed.

    This is a programming or configuration error: it is raised to the
    caller immediately and is never retried, cached or replaced by a
    stale fallback.
    """

    default_class = ErrorClass.INVALID_REQUEST

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        actual: Any = None,
    ) -> None:
        ctx = ErrorContext(source="validation")
        if field:
            ctx.details["field"] = field
        if actual is not None:
            ctx.details["actual"] = actual
        super().__init__(message, ctx)
        self.field = field
        self.actual = actual
