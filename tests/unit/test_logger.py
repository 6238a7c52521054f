"""
Tests for structured logging and credential masking.
"""

from __future__ import annotations

import json
import logging

import pytest

from resilient_fetch.telemetry import (
    FetchLogger,
    JsonFormatter,
    LogContext,
    LogLevel,
    SensitiveDataMasker,
    TextFormatter,
    clear_log_context,
    get_log_context,
    set_log_context,
)


def make_record(msg: str, **fields) -> logging.LogRecord:
    record = logging.LogRecord("resilient_fetch.test", logging.WARNING, __file__, 1, msg, None, None)
    if fields:
        record.extra_fields = fields
    return record


@pytest.fixture(autouse=True)
def _reset_context():
    clear_log_context()
    yield
    clear_log_context()


class TestSensitiveDataMasker:
    """Tests for SensitiveDataMasker."""

    def test_mask_bearer(self) -> None:
        """Test bearer tokens are masked."""
        masker = SensitiveDataMasker()
        assert "abc123" not in masker.mask("Authorization: Bearer abc123")

    def test_mask_query_key(self) -> None:
        """Test API keys in query strings are masked."""
        masker = SensitiveDataMasker()
        masked = masker.mask("https://api.example.com/latest?apikey=s3cret&q=vote")
        assert "s3cret" not in masked
        assert "q=vote" in masked

    def test_mask_dict(self) -> None:
        """Test credential-like keys are redacted and cache keys kept."""
        masker = SensitiveDataMasker()
        masked = masker.mask_dict(
            {
                "X-ACCESS-KEY": "s3cret",
                "cache_key": "news:latest:q=vote",
                "nested": {"token": "t"},
                "attempt": 2,
            }
        )
        assert masked["X-ACCESS-KEY"] == "***REDACTED***"
        assert masked["cache_key"] == "news:latest:q=vote"
        assert masked["nested"]["token"] == "***REDACTED***"
        assert masked["attempt"] == 2


class TestLogContext:
    """Tests for request-scoped context."""

    def test_round_trip(self) -> None:
        """Test setting and reading the context."""
        set_log_context(LogContext(request_id="r1", endpoint="news", extra={"cycle": 3}))

        context = get_log_context()

        assert context.request_id == "r1"
        assert context.endpoint == "news"
        assert context.extra == {"cycle": 3}

    def test_with_extra(self) -> None:
        """Test extending a context keeps existing fields."""
        context = LogContext(endpoint="news").with_extra(cycle=1)
        assert context.to_dict() == {"endpoint": "news", "cycle": 1}

    def test_cleared(self) -> None:
        """Test clearing yields an empty context."""
        set_log_context(LogContext(request_id="r1"))
        clear_log_context()
        assert get_log_context().to_dict() == {}


class TestFormatters:
    """Tests for JSON and text formatters."""

    def test_json_formatter(self) -> None:
        """Test JSON output carries fields, context and masking."""
        set_log_context(LogContext(endpoint="markets"))
        formatter = JsonFormatter(include_timestamp=False)

        output = json.loads(
            formatter.format(make_record("Retrying request", attempt=1, api_key="k"))
        )

        assert output["level"] == "WARNING"
        assert output["message"] == "Retrying request"
        assert output["attempt"] == 1
        assert output["api_key"] == "***REDACTED***"
        assert output["context"] == {"endpoint": "markets"}

    def test_json_formatter_keeps_cache_key(self) -> None:
        """Test the key field of fetch and eviction logs is not redacted."""
        formatter = JsonFormatter(include_timestamp=False)

        output = json.loads(
            formatter.format(
                make_record("Cache hit", endpoint="markets", key="markets:active", api_key="k")
            )
        )

        assert output["key"] == "markets:active"
        assert output["endpoint"] == "markets"
        assert output["api_key"] == "***REDACTED***"

    def test_text_formatter(self) -> None:
        """Test text output appends key=value fields."""
        formatter = TextFormatter(include_context=False)

        output = formatter.format(make_record("Circuit breaker opened", failure_count=3))

        assert "Circuit breaker opened" in output
        assert output.endswith("failure_count=3")


class TestFetchLogger:
    """Tests for FetchLogger."""

    def test_fields_reach_records(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test keyword fields are attached to the log record."""
        logger = FetchLogger(logging.getLogger("resilient_fetch.test.fields"))

        with caplog.at_level(logging.INFO, logger="resilient_fetch.test.fields"):
            logger.info("Cache cleared", endpoint="news")

        record = caplog.records[-1]
        assert record.getMessage() == "Cache cleared"
        assert record.extra_fields == {"endpoint": "news"}

    def test_level_conversion(self) -> None:
        """Test LogLevel maps to logging constants."""
        assert LogLevel.WARNING.to_logging_level() == logging.WARNING
