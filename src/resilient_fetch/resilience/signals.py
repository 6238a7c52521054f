"""
Resilience signals and snapshots.

Point-in-time views of breaker, bucket and cache state, used for status
reporting instead of reaching into private fields.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from resilient_fetch.cache.tiered import CacheStats


@dataclass
class RateLimiterSnapshot:
    """Snapshot of rate limiter state.

    Attributes:
        tokens_available: Available tokens after lazy refill
        max_tokens: Bucket capacity
        refill_rate: Token refill rate per second
        is_throttled: Whether a single-token request would be rejected now
        seconds_until_full: Time until the bucket is back at capacity
        daily_usage: Tokens consumed since the last daily reset
        daily_quota: Daily cap, or None when the bucket has none
        next_reset_at: Epoch seconds of the next daily reset (None without a quota)
    """

    tokens_available: float
    max_tokens: float
    refill_rate: float
    is_throttled: bool = False
    seconds_until_full: float = 0.0
    daily_usage: float = 0.0
    daily_quota: int | None = None
    next_reset_at: float | None = None

    @property
    def utilization(self) -> float:
        """Get utilization ratio (0.0 to 1.0)."""
        if self.max_tokens == 0:
            return 0.0
        return 1.0 - (self.tokens_available / self.max_tokens)

    @property
    def quota_percentage(self) -> float | None:
        """Share of the daily quota used, in percent."""
        if self.daily_quota is None:
            return None
        if self.daily_quota == 0:
            return 100.0
        return self.daily_usage / self.daily_quota * 100

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "tokens_available": self.tokens_available,
            "max_tokens": self.max_tokens,
            "refill_rate": self.refill_rate,
            "is_throttled": self.is_throttled,
            "seconds_until_full": self.seconds_until_full,
            "utilization": self.utilization,
            "daily_usage": self.daily_usage,
            "daily_quota": self.daily_quota,
            "quota_percentage": self.quota_percentage,
            "next_reset_at": self.next_reset_at,
        }


@dataclass
class CircuitBreakerSnapshot:
    """Snapshot of circuit breaker state.

    Attributes:
        state: Current state ("CLOSED", "OPEN", "HALF_OPEN")
        failure_count: Consecutive failure count
        failure_threshold: Threshold for opening
        last_failure_time: Clock reading of the last recorded failure
        cooldown_remaining_ms: Remaining cooldown in milliseconds while OPEN
    """

    state: str
    failure_count: int
    failure_threshold: int
    last_failure_time: float | None = None
    cooldown_remaining_ms: float | None = None

    @property
    def is_open(self) -> bool:
        """Check if circuit is open."""
        return self.state == "OPEN"

    @property
    def is_closed(self) -> bool:
        """Check if circuit is closed."""
        return self.state == "CLOSED"

    @property
    def is_half_open(self) -> bool:
        """Check if circuit is half-open."""
        return self.state == "HALF_OPEN"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "state": self.state,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_failure_time": self.last_failure_time,
            "cooldown_remaining_ms": self.cooldown_remaining_ms,
            "is_open": self.is_open,
        }


@dataclass
class FetcherStatus:
    """Combined status of one fetcher's breaker, bucket and cache.

    Attributes:
        circuit_breaker: Circuit breaker state
        rate_limiter: Rate limiter state
        cache: Cache statistics
        name: Endpoint name the fetcher serves
        timestamp: Wall-clock time the snapshot was taken
    """

    circuit_breaker: CircuitBreakerSnapshot
    rate_limiter: RateLimiterSnapshot
    cache: CacheStats
    name: str | None = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_healthy(self) -> bool:
        """True when the circuit is not open and the bucket is not empty."""
        if self.circuit_breaker.is_open:
            return False
        return not self.rate_limiter.is_throttled

    @property
    def health_score(self) -> float:
        """Calculate a health score (0.0 to 1.0).

        Averages the breaker state, the remaining rate-limit headroom and
        the cache hit rate (the latter only once the cache has seen reads).
        """
        scores: list[float] = []

        if self.circuit_breaker.is_closed:
            scores.append(1.0)
        elif self.circuit_breaker.is_half_open:
            scores.append(0.5)
        else:
            scores.append(0.0)

        if self.rate_limiter.is_throttled:
            scores.append(0.0)
        else:
            scores.append(1.0 - self.rate_limiter.utilization)

        if self.cache.hits + self.cache.misses > 0:
            scores.append(self.cache.hit_rate)

        return sum(scores) / len(scores)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "circuit_breaker": self.circuit_breaker.to_dict(),
            "rate_limiter": self.rate_limiter.to_dict(),
            "cache": self.cache.to_dict(),
            "timestamp": self.timestamp,
            "is_healthy": self.is_healthy,
            "health_score": self.health_score,
        }
