"""
Rate limiter using token bucket algorithm.

Admission is non-blocking: callers ask for credit and decide for
themselves whether to wait, serve from cache or fail.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from resilient_fetch.resilience.signals import RateLimiterSnapshot

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass
class TokenBucketConfig:
    """Configuration for a token bucket.

    Attributes:
        capacity: Maximum tokens in the bucket (burst size)
        refill_rate_per_second: Tokens added per second (0 = never refills)
        initial_tokens: Tokens at construction (defaults to capacity)
        daily_quota: Hard cap on tokens consumed per day (None = no cap)
        reset_hour: UTC hour (0-23) at which the daily usage resets
    """

    capacity: float = 100.0
    refill_rate_per_second: float = 10.0
    initial_tokens: float | None = None
    daily_quota: int | None = None
    reset_hour: int = 0

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError(f"capacity must be positive, got {self.capacity}")
        if self.refill_rate_per_second < 0:
            raise ValueError(
                "refill_rate_per_second must be non-negative, "
                f"got {self.refill_rate_per_second}"
            )
        if self.initial_tokens is not None and not (
            0 <= self.initial_tokens <= self.capacity
        ):
            raise ValueError(
                f"initial_tokens must be within [0, {self.capacity}], "
                f"got {self.initial_tokens}"
            )
        if self.daily_quota is not None and self.daily_quota < 0:
            raise ValueError(f"daily_quota must be non-negative, got {self.daily_quota}")
        if not 0 <= self.reset_hour <= 23:
            raise ValueError(f"reset_hour must be within [0, 23], got {self.reset_hour}")

    @classmethod
    def default(cls) -> TokenBucketConfig:
        """Create default configuration (market data limits)."""
        return cls()

    @classmethod
    def market_data(cls) -> TokenBucketConfig:
        """100 requests burst, 10 per second sustained."""
        return cls(capacity=100, refill_rate_per_second=10)

    @classmethod
    def news(cls) -> TokenBucketConfig:
        """Daily-quota news API: 10 burst, 200 requests per UTC day."""
        return cls(capacity=10, refill_rate_per_second=0.001, daily_quota=200)

    @classmethod
    def polling(cls) -> TokenBucketConfig:
        """Polling aggregator: 20 burst, one token every 100 seconds."""
        return cls(capacity=20, refill_rate_per_second=0.01)

    @classmethod
    def social(cls) -> TokenBucketConfig:
        """Social sentiment API: 15 burst, one token every 200 seconds."""
        return cls(capacity=15, refill_rate_per_second=0.005)

    @classmethod
    def events(cls, limit: int = 100) -> TokenBucketConfig:
        """Event discovery: ``limit`` burst, refilling ``limit / 10`` per second."""
        return cls(capacity=limit, refill_rate_per_second=limit / 10)

    @classmethod
    def from_rps(cls, rps: float, burst_multiplier: float = 1.5) -> TokenBucketConfig:
        """Create config from requests per second.

        Args:
            rps: Sustained requests per second
            burst_multiplier: Multiplier for burst size

        Returns:
            TokenBucketConfig instance
        """
        return cls(
            capacity=max(1.0, math.floor(rps * burst_multiplier)),
            refill_rate_per_second=rps,
        )

    @classmethod
    def from_env(cls, prefix: str = "RESILIENT_FETCH") -> TokenBucketConfig:
        """Create configuration from environment variables."""
        import os

        capacity = float(os.getenv(f"{prefix}_RATE_CAPACITY", "100"))
        refill = float(os.getenv(f"{prefix}_RATE_REFILL_PER_SEC", "10"))
        quota = os.getenv(f"{prefix}_DAILY_QUOTA")

        return cls(
            capacity=capacity,
            refill_rate_per_second=refill,
            daily_quota=int(quota) if quota else None,
            reset_hour=int(os.getenv(f"{prefix}_QUOTA_RESET_HOUR", "0")),
        )


class TokenBucket:
    """Token bucket rate limiter.

    Refill is computed lazily on every call from the elapsed clock time;
    no background timer runs. Token count always stays within
    ``[0, capacity]``.

    With a ``daily_quota`` the bucket also counts consumed tokens per UTC
    day and rejects once the quota is used up, whatever the token count.

    Example:
        >>> bucket = TokenBucket(TokenBucketConfig(capacity=10, refill_rate_per_second=10))
        >>> if not bucket.try_consume():
        ...     print(f"retry in {bucket.wait_time():.2f}s")
    """

    def __init__(
        self,
        config: TokenBucketConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize token bucket.

        Args:
            config: Bucket configuration
            clock: Monotonic clock in seconds
            wall_clock: Epoch seconds, used for the daily quota reset
        """
        self._config = config or TokenBucketConfig()
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = threading.RLock()

        self._capacity = float(self._config.capacity)
        self._rate = float(self._config.refill_rate_per_second)
        self._tokens = float(
            self._config.initial_tokens
            if self._config.initial_tokens is not None
            else self._capacity
        )
        self._last_refill = clock()
        self._daily_usage = 0.0
        self._quota_resets_at = self._next_reset(wall_clock())

    @property
    def config(self) -> TokenBucketConfig:
        """Get configuration."""
        return self._config

    @property
    def capacity(self) -> float:
        """Bucket capacity."""
        return self._capacity

    @property
    def refill_rate(self) -> float:
        """Tokens added per second."""
        return self._rate

    def _refill(self) -> None:
        """Refill tokens based on elapsed time. Caller holds the lock."""
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._last_refill = now
        if self._rate > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)

    def _next_reset(self, now: float) -> float:
        """Epoch seconds of the first quota reset after ``now``."""
        current = datetime.fromtimestamp(now, tz=timezone.utc)
        reset = current.replace(
            hour=self._config.reset_hour, minute=0, second=0, microsecond=0
        )
        if reset <= current:
            reset += timedelta(days=1)
        return reset.timestamp()

    def _roll_quota(self) -> None:
        """Zero daily usage once the reset time has passed. Caller holds the lock."""
        now = self._wall_clock()
        if now >= self._quota_resets_at:
            self._daily_usage = 0.0
            self._quota_resets_at = self._next_reset(now)

    def _quota_exhausted(self, tokens: float) -> bool:
        quota = self._config.daily_quota
        return quota is not None and self._daily_usage + tokens > quota

    def try_consume(self, tokens: float = 1) -> bool:
        """Consume tokens if available, without waiting.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True if consumed, False if the daily quota is used up or tokens
            are insufficient (state left unchanged)
        """
        if tokens < 0:
            raise ValueError(f"tokens must be non-negative, got {tokens}")
        with self._lock:
            self._refill()
            self._roll_quota()
            if self._quota_exhausted(tokens):
                return False
            if self._tokens >= tokens:
                self._tokens -= tokens
                self._daily_usage += tokens
                return True
            return False

    def peek(self) -> float:
        """Get currently available tokens without consuming any."""
        with self._lock:
            self._refill()
            return self._tokens

    def wait_time(self, tokens: float = 1) -> float:
        """Seconds until ``tokens`` would be available.

        Returns 0 when they are available now and ``inf`` when the bucket
        never refills (or ``tokens`` exceeds the capacity). While the daily
        quota is used up this is the time until the quota resets.
        """
        with self._lock:
            self._refill()
            self._roll_quota()
            if self._quota_exhausted(tokens):
                return max(0.0, self._quota_resets_at - self._wall_clock())
            deficit = tokens - self._tokens
            if deficit <= 0:
                return 0.0
            if self._rate <= 0 or tokens > self._capacity:
                return math.inf
            return deficit / self._rate

    def reset(self) -> None:
        """Refill to capacity, restart the refill clock and clear daily usage."""
        with self._lock:
            self._tokens = self._capacity
            self._last_refill = self._clock()
            self._daily_usage = 0.0
            self._quota_resets_at = self._next_reset(self._wall_clock())

    def snapshot(self) -> RateLimiterSnapshot:
        """Get a point-in-time view of the bucket."""
        with self._lock:
            self._refill()
            self._roll_quota()
            tokens = self._tokens
            missing = self._capacity - tokens
            if missing <= 0:
                until_full = 0.0
            elif self._rate > 0:
                until_full = missing / self._rate
            else:
                until_full = math.inf
            return RateLimiterSnapshot(
                tokens_available=tokens,
                max_tokens=self._capacity,
                refill_rate=self._rate,
                is_throttled=tokens < 1 or self._quota_exhausted(1),
                seconds_until_full=until_full,
                daily_usage=self._daily_usage,
                daily_quota=self._config.daily_quota,
                next_reset_at=(
                    self._quota_resets_at if self._config.daily_quota is not None else None
                ),
            )

    def __repr__(self) -> str:
        return (
            f"TokenBucket(capacity={self._capacity}, "
            f"refill_rate={self._rate}/s, tokens={self._tokens:.2f})"
        )
