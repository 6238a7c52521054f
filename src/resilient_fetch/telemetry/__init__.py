"""
Telemetry module for resilient-fetch.

Provides structured logging with request-scoped context.
"""

from resilient_fetch.telemetry.logger import (
    FetchLogger,
    JsonFormatter,
    LogContext,
    LogLevel,
    SensitiveDataMasker,
    TextFormatter,
    clear_log_context,
    configure_logging,
    get_log_context,
    get_logger,
    set_log_context,
)

__all__ = [
    "FetchLogger",
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "SensitiveDataMasker",
    "TextFormatter",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "get_logger",
    "set_log_context",
]
