"""
Resilience module for resilient-fetch.

Provides resilience patterns for upstream API calls:
- Token bucket rate limiting
- Circuit breaker
- Retry with exponential backoff and jitter
- The resilient fetcher combining them with the tiered cache
"""

from resilient_fetch.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitStats,
)
from resilient_fetch.resilience.fetcher import (
    FetcherConfig,
    FetchResult,
    ResilientFetcher,
    ResultSource,
)
from resilient_fetch.resilience.rate_limiter import TokenBucket, TokenBucketConfig
from resilient_fetch.resilience.retry import RetryConfig, RetryPolicy, RetryResult
from resilient_fetch.resilience.signals import (
    CircuitBreakerSnapshot,
    FetcherStatus,
    RateLimiterSnapshot,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerSnapshot",
    "CircuitState",
    "CircuitStats",
    # Fetcher
    "FetchResult",
    "FetcherConfig",
    "FetcherStatus",
    "RateLimiterSnapshot",
    "ResilientFetcher",
    "ResultSource",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    "RetryResult",
    # Rate limiter
    "TokenBucket",
    "TokenBucketConfig",
]
