"""
Tiered in-memory cache with freshness windows.

Every entry moves through three tiers as it ages:

- fresh: ``age <= ttl``
- stale: ``ttl < age <= ttl + stale_grace`` (served only as a fallback)
- expired: older than that; deleted the next time it is touched

Capacity is bounded; inserting a new key into a full cache evicts
exactly one entry chosen by the configured :class:`EvictionPolicy`.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from resilient_fetch.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = get_logger(__name__)

_MINUTE_MS = 60_000


class EvictionPolicy(str, Enum):
    """Which entry to drop when the cache is full."""

    LRU = "lru"
    """Least recently touched."""

    LFU = "lfu"
    """Lowest hit count."""

    TTL = "ttl"
    """Least remaining time-to-live."""


class Freshness(str, Enum):
    """Age tier of a cache entry."""

    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


@dataclass
class CacheConfig:
    """Cache configuration.

    Attributes:
        max_size: Maximum number of entries
        default_ttl_ms: Freshness window for entries written without a TTL
        stale_grace_ms: Extra window after the TTL during which an entry
            may still be served as a fallback
        eviction_policy: Policy applied when inserting into a full cache
    """

    max_size: int = 1000
    default_ttl_ms: float = 15 * _MINUTE_MS
    stale_grace_ms: float = 60 * _MINUTE_MS
    eviction_policy: EvictionPolicy = EvictionPolicy.LRU

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {self.max_size}")
        if self.default_ttl_ms < 0 or self.stale_grace_ms < 0:
            raise ValueError("default_ttl_ms and stale_grace_ms must be non-negative")
        self.eviction_policy = EvictionPolicy(self.eviction_policy)

    @classmethod
    def default(cls) -> CacheConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def news(cls) -> CacheConfig:
        """Larger cache for article listings."""
        return cls(max_size=2000)

    @classmethod
    def short_ttl(cls) -> CacheConfig:
        """Quickly moving data such as prices: 1 minute fresh, 5 minutes stale."""
        return cls(default_ttl_ms=_MINUTE_MS, stale_grace_ms=5 * _MINUTE_MS)

    @classmethod
    def from_env(cls, prefix: str = "RESILIENT_FETCH") -> CacheConfig:
        """Create configuration from environment variables."""
        import os

        return cls(
            max_size=int(os.getenv(f"{prefix}_CACHE_MAX_SIZE", "1000")),
            default_ttl_ms=float(
                os.getenv(f"{prefix}_CACHE_TTL_MS", str(15 * _MINUTE_MS))
            ),
            stale_grace_ms=float(
                os.getenv(f"{prefix}_CACHE_STALE_GRACE_MS", str(60 * _MINUTE_MS))
            ),
            eviction_policy=EvictionPolicy(
                os.getenv(f"{prefix}_CACHE_EVICTION_POLICY", "lru").lower()
            ),
        )


@dataclass
class CacheEntry(Generic[T]):
    """A cache entry with metadata.

    Attributes:
        value: Cached value
        written_at: Clock reading (seconds) of the last write
        ttl_ms: Freshness window in milliseconds
        hit_count: Number of reads that found this entry
        last_accessed_at: Clock reading of the last read or write
        sequence: Insertion order, used to break eviction ties
    """

    value: T
    written_at: float
    ttl_ms: float
    hit_count: int = 0
    last_accessed_at: float = 0.0
    sequence: int = 0

    def age_ms(self, now: float) -> float:
        """Age in milliseconds at clock reading ``now``."""
        return (now - self.written_at) * 1000.0

    def remaining_ttl_ms(self, now: float) -> float:
        """Remaining freshness in milliseconds (negative once stale)."""
        return self.ttl_ms - self.age_ms(now)

    def freshness(self, now: float, stale_grace_ms: float) -> Freshness:
        """Classify this entry's age tier."""
        age = self.age_ms(now)
        if age <= self.ttl_ms:
            return Freshness.FRESH
        if age <= self.ttl_ms + stale_grace_ms:
            return Freshness.STALE
        return Freshness.EXPIRED


class LookupStatus(str, Enum):
    """Outcome tag of a cache read."""

    FRESH = "fresh"
    STALE = "stale"
    ABSENT = "absent"


@dataclass(frozen=True)
class CacheLookup(Generic[T]):
    """Result of :meth:`TieredCache.get`: ``Fresh(value) | Stale(value) | Absent``.

    Example:
        >>> hit = cache.get("markets:active")
        >>> if hit.is_fresh:
        ...     return hit.value
        >>> if hit.is_stale:
        ...     log_degraded(hit.age_ms)
    """

    status: LookupStatus
    value: T | None = None
    age_ms: float | None = None

    @classmethod
    def fresh(cls, value: T, age_ms: float) -> CacheLookup[T]:
        return cls(LookupStatus.FRESH, value, age_ms)

    @classmethod
    def stale(cls, value: T, age_ms: float) -> CacheLookup[T]:
        return cls(LookupStatus.STALE, value, age_ms)

    @classmethod
    def absent(cls) -> CacheLookup[Any]:
        return cls(LookupStatus.ABSENT)

    @property
    def is_fresh(self) -> bool:
        return self.status == LookupStatus.FRESH

    @property
    def is_stale(self) -> bool:
        return self.status == LookupStatus.STALE

    @property
    def found(self) -> bool:
        """True for fresh and stale reads."""
        return self.status != LookupStatus.ABSENT


class FallbackSource(str, Enum):
    """Where :meth:`TieredCache.get_with_fallback` got its value."""

    CACHE = "cache"
    FRESH = "fresh"
    STALE = "stale"


@dataclass
class FallbackResult(Generic[T]):
    """Value returned by :meth:`TieredCache.get_with_fallback`.

    Attributes:
        value: The data
        source: Fresh cache hit, freshly fetched, or stale fallback
        attempts: Number of fetch attempts made (0 for a cache hit)
    """

    value: T
    source: FallbackSource
    attempts: int = 0

    @property
    def from_cache(self) -> bool:
        """True when the value came from the cache rather than the fetch."""
        return self.source != FallbackSource.FRESH


@dataclass
class RefreshResult(Generic[T]):
    """Value returned by :meth:`TieredCache.refresh_if_stale`."""

    value: T
    refreshed: bool


@dataclass
class PreloadSpec(Generic[T]):
    """One key to warm with :meth:`TieredCache.preload`.

    Higher ``priority`` values are loaded first.
    """

    key: str
    fetch_fn: Callable[[], Awaitable[T]]
    ttl_ms: float | None = None
    priority: int = 0


@dataclass
class PreloadResult:
    """Outcome of :meth:`TieredCache.preload`.

    Keys that were already fresh count as successful.
    """

    successful: int = 0
    failed: int = 0
    errors: dict[str, Exception] = field(default_factory=dict)


@dataclass
class CacheStats:
    """Cache statistics.

    Attributes:
        hits: Reads that returned a fresh or stale value
        stale_hits: Subset of hits that were stale
        misses: Reads that found nothing (including expired entries)
        sets: Writes
        evictions: Entries dropped for capacity
        expirations: Entries dropped for age
        size: Current number of entries
        max_size: Capacity
        stale_keys: Entries currently in the stale tier
        eviction_policy: Configured policy
    """

    hits: int = 0
    stale_hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    max_size: int = 0
    stale_keys: int = 0
    eviction_policy: str = EvictionPolicy.LRU.value
    average_hit_count: float = 0.0
    oldest_entry_age_ms: float = 0.0

    @property
    def total_requests(self) -> int:
        """Get total number of reads."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Get cache hit rate (0.0 to 1.0)."""
        total = self.total_requests
        if total == 0:
            return 0.0
        return self.hits / total

    @property
    def miss_rate(self) -> float:
        """Get cache miss rate (0.0 to 1.0)."""
        total = self.total_requests
        if total == 0:
            return 0.0
        return self.misses / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "stale_hits": self.stale_hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "max_size": self.max_size,
            "stale_keys": self.stale_keys,
            "eviction_policy": self.eviction_policy,
            "average_hit_count": self.average_hit_count,
            "oldest_entry_age_ms": self.oldest_entry_age_ms,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
            "miss_rate": self.miss_rate,
        }


@dataclass
class CacheHealth:
    """Maintenance signals derived from :class:`CacheStats`."""

    near_capacity: bool = False
    needs_cleanup: bool = False
    low_hit_rate: bool = False
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return not (self.near_capacity or self.needs_cleanup or self.low_hit_rate)


class TieredCache(Generic[T]):
    """Bounded key/value cache with fresh and stale tiers.

    All reads and writes run under one re-entrant lock; none of them
    await while holding it.

    Example:
        >>> cache = TieredCache(CacheConfig(max_size=2))
        >>> cache.set("a", 1)
        >>> cache.get("a").value
        1
    """

    NEAR_CAPACITY_RATIO = 0.9
    STALE_RATIO_LIMIT = 0.2
    MIN_HIT_RATE = 0.5

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            config: Cache configuration
            clock: Monotonic clock in seconds
            sleep: Awaitable sleep used by :meth:`get_with_fallback`
            name: Name used in log records
        """
        self._config = config or CacheConfig()
        self._clock = clock
        self._sleep = sleep
        self._name = name
        self._lock = threading.RLock()
        # Ordered least to most recently touched
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._sequence = itertools.count()
        self._stats = CacheStats(
            max_size=self._config.max_size,
            eviction_policy=self._config.eviction_policy.value,
        )

    @property
    def config(self) -> CacheConfig:
        """Get configuration."""
        return self._config

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def keys(self) -> list[str]:
        """Keys currently stored, least recently touched first."""
        with self._lock:
            return list(self._entries)

    def _remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def get(self, key: str) -> CacheLookup[T]:
        """Read a key.

        Any read that finds an entry counts as an access (hit count, last
        access time and recency are updated) even when the entry turns out
        to be expired and is deleted.

        Args:
            key: Cache key

        Returns:
            Fresh or stale lookup carrying the value, or absent
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return CacheLookup.absent()

            now = self._clock()
            entry.hit_count += 1
            entry.last_accessed_at = now
            self._entries.move_to_end(key)

            freshness = entry.freshness(now, self._config.stale_grace_ms)
            age_ms = entry.age_ms(now)

            if freshness == Freshness.EXPIRED:
                self._remove(key)
                self._stats.expirations += 1
                self._stats.misses += 1
                logger.debug("Cache entry expired", cache=self._name, key=key, age_ms=age_ms)
                return CacheLookup.absent()

            self._stats.hits += 1
            if freshness == Freshness.STALE:
                self._stats.stale_hits += 1
                return CacheLookup.stale(entry.value, age_ms)
            return CacheLookup.fresh(entry.value, age_ms)

    def set(self, key: str, value: T, ttl_ms: float | None = None) -> None:
        """Write a key.

        Rewriting an existing key replaces its value and write time, keeps
        its hit count and insertion order, and counts as a touch. Writing a
        new key into a full cache evicts one entry first.

        Args:
            key: Cache key
            value: Value to cache
            ttl_ms: Freshness window (defaults to ``default_ttl_ms``)
        """
        ttl = self._config.default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl < 0:
            raise ValueError(f"ttl_ms must be non-negative, got {ttl}")

        with self._lock:
            now = self._clock()
            self._stats.sets += 1

            existing = self._entries.get(key)
            if existing is not None:
                existing.value = value
                existing.written_at = now
                existing.ttl_ms = ttl
                existing.last_accessed_at = now
                self._entries.move_to_end(key)
                return

            if len(self._entries) >= self._config.max_size:
                self._evict_one(now)

            self._entries[key] = CacheEntry(
                value=value,
                written_at=now,
                ttl_ms=ttl,
                last_accessed_at=now,
                sequence=next(self._sequence),
            )

    def _evict_one(self, now: float) -> None:
        """Evict one entry per the configured policy. Caller holds the lock."""
        if not self._entries:
            return

        policy = self._config.eviction_policy
        if policy == EvictionPolicy.LRU:
            victim = next(iter(self._entries))
        elif policy == EvictionPolicy.LFU:
            victim = min(
                self._entries,
                key=lambda k: (self._entries[k].hit_count, self._entries[k].sequence),
            )
        else:
            victim = min(
                self._entries,
                key=lambda k: (
                    self._entries[k].remaining_ttl_ms(now),
                    self._entries[k].sequence,
                ),
            )

        self._remove(victim)
        self._stats.evictions += 1
        logger.debug(
            "Cache entry evicted",
            cache=self._name,
            key=victim,
            policy=policy.value,
        )

    def has(self, key: str) -> bool:
        """Check whether a key holds a fresh or stale value.

        Does not count as an access; an expired entry is deleted.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            now = self._clock()
            if entry.freshness(now, self._config.stale_grace_ms) == Freshness.EXPIRED:
                self._remove(key)
                self._stats.expirations += 1
                return False
            return True

    def delete(self, key: str) -> bool:
        """Delete a key.

        Returns:
            True if deleted, False if not found
        """
        with self._lock:
            if key in self._entries:
                self._remove(key)
                return True
            return False

    def clear(self) -> None:
        """Remove all entries. Statistics are kept."""
        with self._lock:
            self._entries.clear()

    def evict_expired(self) -> int:
        """Delete every entry past its stale window.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            grace = self._config.stale_grace_ms
            expired = [
                k
                for k, e in self._entries.items()
                if e.freshness(now, grace) == Freshness.EXPIRED
            ]
            for key in expired:
                self._remove(key)
            self._stats.expirations += len(expired)

        if expired:
            logger.debug("Evicted expired entries", cache=self._name, count=len(expired))
        return len(expired)

    def get_stale(self, key: str) -> T | None:
        """Return the value only if it is in the stale tier.

        Does not count as an access.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            now = self._clock()
            if entry.freshness(now, self._config.stale_grace_ms) != Freshness.STALE:
                return None
            age_ms = entry.age_ms(now)
            value = entry.value

        logger.warning("Returning stale data", cache=self._name, key=key, age_ms=age_ms)
        return value

    async def get_with_fallback(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        *,
        ttl_ms: float | None = None,
        allow_stale: bool = True,
        max_retries: int = 3,
        retry_delay_ms: float = 1000,
    ) -> FallbackResult[T]:
        """Serve a fresh hit, else fetch with linear backoff, else serve stale.

        ``fetch_fn`` is attempted up to ``max_retries`` times (at least
        once), sleeping ``retry_delay_ms * attempt`` between attempts. A
        successful fetch is written to the cache.

        Args:
            key: Cache key
            fetch_fn: Async producer of a fresh value
            ttl_ms: TTL for the written value
            allow_stale: Whether a stale entry may be returned on failure
            max_retries: Maximum fetch attempts
            retry_delay_ms: Base of the linear delay between attempts

        Returns:
            FallbackResult with the value and where it came from

        Raises:
            Exception: The last fetch error when no fallback is available
        """
        cached = self.get(key)
        if cached.is_fresh:
            return FallbackResult(cached.value, FallbackSource.CACHE)  # type: ignore[arg-type]

        attempts = max(1, max_retries)
        errors: list[Exception] = []
        for attempt in range(1, attempts + 1):
            try:
                value = await fetch_fn()
            except Exception as e:
                errors.append(e)
                logger.warning(
                    "Failed to fetch fresh data",
                    cache=self._name,
                    key=key,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )
                if attempt < attempts:
                    await self._sleep(retry_delay_ms * attempt / 1000.0)
            else:
                self.set(key, value, ttl_ms)
                return FallbackResult(value, FallbackSource.FRESH, attempt)

        if allow_stale:
            stale = self.get_stale(key)
            if stale is not None:
                return FallbackResult(stale, FallbackSource.STALE, attempts)

        raise errors[-1]

    async def refresh_if_stale(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        ttl_ms: float | None = None,
    ) -> RefreshResult[T]:
        """Refetch a key that is absent or stale.

        A fresh entry is returned untouched. If the refetch fails and a
        stale value exists, the stale value is returned instead of the
        error.
        """
        cached = self.get(key)
        if cached.is_fresh:
            return RefreshResult(cached.value, refreshed=False)  # type: ignore[arg-type]

        try:
            value = await fetch_fn()
        except Exception as e:
            if cached.is_stale:
                logger.warning(
                    "Refresh failed, returning stale data",
                    cache=self._name,
                    key=key,
                    error=str(e),
                )
                return RefreshResult(cached.value, refreshed=False)  # type: ignore[arg-type]
            raise

        self.set(key, value, ttl_ms)
        return RefreshResult(value, refreshed=True)

    async def preload(self, specs: list[PreloadSpec[Any]]) -> PreloadResult:
        """Warm the cache, highest priority first.

        Keys that are already fresh are not refetched. A failing key is
        recorded in the result and does not stop the remaining keys.
        """
        result = PreloadResult()
        for spec in sorted(specs, key=lambda s: s.priority, reverse=True):
            if self.get(spec.key).is_fresh:
                result.successful += 1
                continue
            try:
                value = await spec.fetch_fn()
            except Exception as e:
                result.failed += 1
                result.errors[spec.key] = e
                logger.warning(
                    "Failed to preload key", cache=self._name, key=spec.key, error=str(e)
                )
                continue
            self.set(spec.key, value, spec.ttl_ms)
            result.successful += 1
            logger.debug("Preloaded key", cache=self._name, key=spec.key)

        logger.info(
            "Cache preload completed",
            cache=self._name,
            successful=result.successful,
            failed=result.failed,
        )
        return result

    def stats(self) -> CacheStats:
        """Get a copy of the cache statistics with current tier counts."""
        with self._lock:
            now = self._clock()
            grace = self._config.stale_grace_ms
            entries = list(self._entries.values())
            stale_keys = sum(
                1 for e in entries if e.freshness(now, grace) == Freshness.STALE
            )
            total_hits = sum(e.hit_count for e in entries)
            oldest = max((e.age_ms(now) for e in entries), default=0.0)
            return CacheStats(
                hits=self._stats.hits,
                stale_hits=self._stats.stale_hits,
                misses=self._stats.misses,
                sets=self._stats.sets,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
                size=len(entries),
                max_size=self._config.max_size,
                stale_keys=stale_keys,
                eviction_policy=self._config.eviction_policy.value,
                average_hit_count=total_hits / len(entries) if entries else 0.0,
                oldest_entry_age_ms=oldest,
            )

    def reset_stats(self) -> None:
        """Zero the hit/miss/set/eviction counters."""
        with self._lock:
            self._stats = CacheStats(
                max_size=self._config.max_size,
                eviction_policy=self._config.eviction_policy.value,
            )

    def health(self) -> CacheHealth:
        """Derive maintenance recommendations from the current statistics.

        The hit-rate check only applies once the cache has served reads.
        """
        stats = self.stats()
        health = CacheHealth(
            near_capacity=stats.size >= stats.max_size * self.NEAR_CAPACITY_RATIO,
            needs_cleanup=stats.stale_keys > stats.size * self.STALE_RATIO_LIMIT,
            low_hit_rate=(
                stats.total_requests > 0 and stats.hit_rate < self.MIN_HIT_RATE
            ),
        )
        if health.near_capacity:
            health.recommendations.append(
                "Cache is near capacity, consider increasing max_size or reducing TTL"
            )
        if health.needs_cleanup:
            health.recommendations.append(
                "High number of stale entries, run evict_expired()"
            )
        if health.low_hit_rate:
            health.recommendations.append(
                "Low hit rate, consider adjusting TTL or cache key strategy"
            )
        return health

    def __repr__(self) -> str:
        return (
            f"TieredCache(size={len(self._entries)}/{self._config.max_size}, "
            f"policy={self._config.eviction_policy.value})"
        )
