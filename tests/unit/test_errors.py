"""
Tests for error classification and the error hierarchy.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from resilient_fetch.errors import (
    CircuitOpenError,
    ErrorClass,
    FetchError,
    MalformedResponseError,
    RateLimitedError,
    RemoteError,
    TransportError,
    ValidationError,
    classify_exception,
    classify_http_status,
    extract_error_message,
    is_retryable,
)


class TestClassifyHttpStatus:
    """Tests for HTTP status classification."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (400, ErrorClass.INVALID_REQUEST),
            (401, ErrorClass.AUTHENTICATION),
            (403, ErrorClass.PERMISSION_DENIED),
            (404, ErrorClass.NOT_FOUND),
            (429, ErrorClass.RATE_LIMITED),
            (500, ErrorClass.SERVER_ERROR),
            (502, ErrorClass.SERVER_ERROR),
            (503, ErrorClass.OVERLOADED),
            (504, ErrorClass.TIMEOUT),
        ],
    )
    def test_known_statuses(self, status: int, expected: ErrorClass) -> None:
        """Test the standard status mapping."""
        assert classify_http_status(status) == expected

    def test_unlisted_statuses(self) -> None:
        """Test unlisted 4xx are client errors and unlisted 5xx are server errors."""
        assert classify_http_status(418) == ErrorClass.INVALID_REQUEST
        assert classify_http_status(599) == ErrorClass.SERVER_ERROR
        assert classify_http_status(302) == ErrorClass.OTHER

    def test_retryable_statuses(self) -> None:
        """Test which statuses are retried."""
        retried = {s for s in (400, 401, 403, 404, 429, 500, 502, 503, 504)
                   if is_retryable(classify_http_status(s))}
        assert retried == {429, 500, 502, 503, 504}


class TestClassifyException:
    """Tests for transport exception classification."""

    def test_timeouts(self) -> None:
        """Test httpx and asyncio timeouts map to TIMEOUT."""
        assert classify_exception(httpx.ReadTimeout("slow")) == ErrorClass.TIMEOUT
        assert classify_exception(asyncio.TimeoutError()) == ErrorClass.TIMEOUT

    def test_network(self) -> None:
        """Test connection failures map to NETWORK."""
        assert classify_exception(httpx.ConnectError("refused")) == ErrorClass.NETWORK
        assert classify_exception(ConnectionResetError()) == ErrorClass.NETWORK

    def test_other(self) -> None:
        """Test unrelated exceptions map to OTHER."""
        assert classify_exception(RuntimeError("boom")) == ErrorClass.OTHER


class TestExtractErrorMessage:
    """Tests for error body message extraction."""

    def test_nested_error(self) -> None:
        """Test the {"error": {"message": ...}} envelope."""
        assert extract_error_message({"error": {"message": "bad key"}}) == "bad key"

    def test_flat_envelopes(self) -> None:
        """Test flat error, message and detail envelopes."""
        assert extract_error_message({"error": "quota"}) == "quota"
        assert extract_error_message({"message": "gone"}) == "gone"
        assert extract_error_message({"detail": "nope"}) == "nope"

    def test_unknown_shape(self) -> None:
        """Test non-dict or unknown bodies yield None."""
        assert extract_error_message("oops") is None
        assert extract_error_message({"status": "fail"}) is None


class TestErrorHierarchy:
    """Tests for FetchError subclasses."""

    def test_all_are_fetch_errors(self) -> None:
        """Test every error kind is a FetchError."""
        for error in (
            CircuitOpenError(),
            RateLimitedError(),
            RemoteError("x", status_code=500),
            TransportError("x"),
            MalformedResponseError("x"),
            ValidationError("x"),
        ):
            assert isinstance(error, FetchError)

    def test_local_rejections_do_not_count(self) -> None:
        """Test local admission errors are not breaker failures."""
        assert CircuitOpenError().counts_as_failure is False
        assert RateLimitedError().counts_as_failure is False
        assert TransportError("x").counts_as_failure is True

    def test_retryability(self) -> None:
        """Test retryability follows the error class."""
        assert TransportError("x").retryable is True
        assert TransportError("x", error_class=ErrorClass.TIMEOUT).retryable is True
        assert MalformedResponseError("x").retryable is False
        assert CircuitOpenError().retryable is False

    def test_remote_error_from_response(self) -> None:
        """Test building a RemoteError from a response."""
        error = RemoteError.from_response(
            429,
            {"error": {"message": "slow down"}},
            headers={"retry-after": "30"},
            url="https://api.example.com/news",
        )

        assert error.status_code == 429
        assert error.error_class == ErrorClass.RATE_LIMITED
        assert error.retry_after == 30.0
        assert error.message == "slow down"
        assert error.context.details["url"] == "https://api.example.com/news"

    def test_remote_error_without_body(self) -> None:
        """Test fallback message and unparsable Retry-After."""
        error = RemoteError.from_response(503, None, headers={"Retry-After": "soon"})
        assert error.message == "HTTP 503"
        assert error.retry_after is None

    def test_circuit_open_details(self) -> None:
        """Test circuit open error carries the retry time."""
        error = CircuitOpenError(time_until_retry=12.5, key="markets")
        assert error.time_until_retry == 12.5
        assert error.key == "markets"
        assert "[circuit]" in str(error)

    def test_for_key_and_hint(self) -> None:
        """Test attaching a key and a hint."""
        error = TransportError("reset").for_key("news:latest").with_hint("check VPN")
        assert error.key == "news:latest"
        assert error.context.details["key"] == "news:latest"
        assert "check VPN" in str(error.context)

    def test_transport_error_cause(self) -> None:
        """Test the underlying exception is chained."""
        cause = httpx.ConnectError("refused")
        error = TransportError("connect failed", cause=cause)
        assert error.__cause__ is cause

    def test_validation_error_fields(self) -> None:
        """Test validation error records the offending field."""
        error = ValidationError("bad url", field="url", actual="")
        assert error.field == "url"
        assert error.error_class == ErrorClass.INVALID_REQUEST
        assert error.retryable is False
