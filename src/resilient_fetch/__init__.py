"""
resilient-fetch: resilience layer for unreliable, quota-limited JSON APIs.

Combines a circuit breaker, a token-bucket rate limiter and a tiered
fresh/stale cache behind one fetch operation that returns typed data or
a classified error, and never crashes the caller's workflow.
"""
from __future__ import annotations

from resilient_fetch.batch import BatchResult, BatchRunner
from resilient_fetch.cache import (
    CacheConfig,
    CacheKeyGenerator,
    CacheLookup,
    CacheStats,
    EvictionPolicy,
    TieredCache,
)
from resilient_fetch.client import ApiClient, ApiClientBuilder
from resilient_fetch.errors import (
    CircuitOpenError,
    ErrorClass,
    FetchError,
    MalformedResponseError,
    RateLimitedError,
    RemoteError,
    TransportError,
    ValidationError,
)
from resilient_fetch.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    FetcherConfig,
    FetchResult,
    ResilientFetcher,
    ResultSource,
    RetryConfig,
    RetryPolicy,
    TokenBucket,
    TokenBucketConfig,
)
from resilient_fetch.telemetry import configure_logging, get_logger
from resilient_fetch.transport import HttpTransport, RequestSpec, Transport

__version__ = "0.1.0"

__all__ = [
    # Client
    "ApiClient",
    "ApiClientBuilder",
    # Batch
    "BatchResult",
    "BatchRunner",
    # Cache
    "CacheConfig",
    "CacheKeyGenerator",
    "CacheLookup",
    "CacheStats",
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerConfig",
    # Errors
    "CircuitOpenError",
    "CircuitState",
    "ErrorClass",
    "EvictionPolicy",
    "FetchError",
    "FetchResult",
    "FetcherConfig",
    # Transport
    "HttpTransport",
    "MalformedResponseError",
    "RateLimitedError",
    "RemoteError",
    "RequestSpec",
    "ResilientFetcher",
    "ResultSource",
    "RetryConfig",
    "RetryPolicy",
    "TieredCache",
    "TokenBucket",
    "TokenBucketConfig",
    "Transport",
    "TransportError",
    "ValidationError",
    # Telemetry
    "configure_logging",
    "get_logger",
    # Version
    "__version__",
]
