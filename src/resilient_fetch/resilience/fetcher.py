"""
Resilient fetcher combining cache, circuit breaker, rate limiter and retry.

One :class:`ResilientFetcher` serves one upstream endpoint. A fetch runs:

0. Fresh cache hit: return it.
1. Circuit check: when the breaker rejects, serve stale data or fail
   with :class:`~resilient_fetch.errors.CircuitOpenError`.
2. Rate-limit check: when no token is available, serve stale data or
   fail with :class:`~resilient_fetch.errors.RateLimitedError`.
3. Attempt loop with a fixed per-attempt timeout and exponential
   backoff between retryable failures.
4. Fallback: on failure, any cached value for the key is preferred over
   the error.

Every upstream failure is returned as a classified error inside
:class:`FetchResult`; only programming errors (a request that cannot be
built, a decoder raising something unexpected) propagate.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import httpx
import pydantic

from resilient_fetch.cache.tiered import CacheConfig, CacheLookup, CacheStats, TieredCache
from resilient_fetch.errors import (
    CircuitOpenError,
    ErrorClass,
    FetchError,
    MalformedResponseError,
    RateLimitedError,
    TransportError,
    ValidationError,
    classify_exception,
)
from resilient_fetch.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from resilient_fetch.resilience.rate_limiter import TokenBucket, TokenBucketConfig
from resilient_fetch.resilience.retry import RetryConfig, RetryPolicy
from resilient_fetch.resilience.signals import (
    CircuitBreakerSnapshot,
    FetcherStatus,
    RateLimiterSnapshot,
)
from resilient_fetch.telemetry import get_logger
from resilient_fetch.transport.http import HttpTransport, RequestSpec, Transport

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    RequestLike = RequestSpec | Callable[[], RequestSpec]

T = TypeVar("T")

logger = get_logger(__name__)


class ResultSource(str, Enum):
    """Where a :class:`FetchResult` value came from."""

    CACHE = "cache"
    NETWORK = "network"
    NONE = "none"


@dataclass
class FetchResult(Generic[T]):
    """Outcome of one :meth:`ResilientFetcher.fetch`.

    Attributes:
        key: Cache key that was fetched
        value: The data, when any was available
        error: Classified error, set only when no value could be served
        source: Cache, network, or none (error)
        from_fallback: Value was served from cache because the upstream
            call was rejected or failed
        stale: Served value was past its TTL
        attempts: Network attempts made
        fallback_reason: Error that the fallback value replaced
    """

    key: str
    value: T | None = None
    error: FetchError | None = None
    source: ResultSource = ResultSource.NONE
    from_fallback: bool = False
    stale: bool = False
    attempts: int = 0
    fallback_reason: FetchError | None = None

    @property
    def ok(self) -> bool:
        """True when a value is available."""
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def value_or(self, default: T) -> T:
        """Return the value, or ``default`` when the fetch failed."""
        if self.error is not None:
            return default
        return self.value  # type: ignore[return-value]


@dataclass
class FetcherConfig:
    """Combined configuration for one endpoint.

    Attributes:
        circuit_breaker: Circuit breaker configuration
        rate_limit: Token bucket configuration
        cache: Cache configuration
        retry: Retry configuration
        request_timeout_s: Absolute timeout of every network attempt
    """

    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    rate_limit: TokenBucketConfig = field(default_factory=TokenBucketConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    request_timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if self.request_timeout_s <= 0:
            raise ValueError(
                f"request_timeout_s must be positive, got {self.request_timeout_s}"
            )

    @classmethod
    def default(cls) -> FetcherConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def market_data(cls) -> FetcherConfig:
        """Prices and markets: high request budget, short cache lifetime."""
        return cls(
            rate_limit=TokenBucketConfig.market_data(),
            cache=CacheConfig.short_ttl(),
        )

    @classmethod
    def news(cls) -> FetcherConfig:
        """Daily-quota news API with a large, long-lived cache."""
        return cls(
            rate_limit=TokenBucketConfig.news(),
            cache=CacheConfig.news(),
        )

    @classmethod
    def polling(cls) -> FetcherConfig:
        """Polling aggregator."""
        return cls(rate_limit=TokenBucketConfig.polling())

    @classmethod
    def social(cls) -> FetcherConfig:
        """Social sentiment API."""
        return cls(rate_limit=TokenBucketConfig.social())

    @classmethod
    def events(cls, limit: int = 100) -> FetcherConfig:
        """Event discovery with a caller-chosen request budget."""
        return cls(
            rate_limit=TokenBucketConfig.events(limit),
            cache=CacheConfig.short_ttl(),
        )

    @classmethod
    def from_env(cls, prefix: str = "RESILIENT_FETCH") -> FetcherConfig:
        """Create configuration from ``{prefix}_*`` environment variables."""
        import os

        return cls(
            circuit_breaker=CircuitBreakerConfig.from_env(prefix),
            rate_limit=TokenBucketConfig.from_env(prefix),
            cache=CacheConfig.from_env(prefix),
            retry=RetryConfig.from_env(prefix),
            request_timeout_s=float(os.getenv(f"{prefix}_REQUEST_TIMEOUT_SECS", "10")),
        )


class ResilientFetcher:
    """Fetches JSON from one endpoint with caching, admission control and retry.

    The fetcher owns its circuit breaker, token bucket and cache; they are
    never shared with other endpoints. Clock, sleep and jitter source are
    injectable so that tests run without real waiting.

    Example:
        >>> fetcher = ResilientFetcher(FetcherConfig.market_data(), name="markets")
        >>> result = await fetcher.fetch(
        ...     "markets:active",
        ...     RequestSpec(url="https://gamma-api.example.com/markets", params={"active": "true"}),
        ... )
        >>> if result.ok:
        ...     render(result.value)
    """

    def __init__(
        self,
        config: FetcherConfig | None = None,
        transport: Transport | None = None,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Combined configuration
            transport: Transport performing the GET (an
                :class:`HttpTransport` is created lazily when omitted)
            name: Endpoint name used in log records
            clock: Monotonic clock in seconds shared by breaker, bucket and cache
            sleep: Awaitable sleep used between retries
            rng: Jitter source
        """
        self._config = config or FetcherConfig()
        self._name = name
        self._transport = transport
        self._owns_transport = transport is None

        self._breaker = CircuitBreaker(self._config.circuit_breaker, clock=clock, name=name)
        self._bucket = TokenBucket(self._config.rate_limit, clock=clock)
        self._cache: TieredCache[Any] = TieredCache(
            self._config.cache, clock=clock, sleep=sleep, name=name
        )
        self._retry = RetryPolicy(self._config.retry, rng=rng, sleep=sleep)

    @property
    def name(self) -> str:
        """Get endpoint name."""
        return self._name

    @property
    def config(self) -> FetcherConfig:
        """Get configuration."""
        return self._config

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def rate_limiter(self) -> TokenBucket:
        return self._bucket

    @property
    def cache(self) -> TieredCache[Any]:
        return self._cache

    @property
    def transport(self) -> Transport:
        """Transport used for network attempts (created on first use)."""
        return self._get_transport()

    def _get_transport(self) -> Transport:
        if self._transport is None:
            self._transport = HttpTransport(timeout=self._config.request_timeout_s)
        return self._transport

    async def close(self) -> None:
        """Close the transport if this fetcher created it."""
        if self._owns_transport and isinstance(self._transport, HttpTransport):
            await self._transport.close()
        if self._owns_transport:
            self._transport = None

    async def __aenter__(self) -> ResilientFetcher:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @staticmethod
    def _resolve_request(request: RequestLike) -> RequestSpec:
        """Build the request, raising :class:`ValidationError` on bad input."""
        try:
            spec = request() if callable(request) else request
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid request: {e}") from e

        if not isinstance(spec, RequestSpec):
            raise ValidationError(
                "Request builder must return a RequestSpec",
                field="request",
                actual=type(spec).__name__,
            )
        return spec

    async def fetch(
        self,
        key: str,
        request: RequestLike,
        *,
        ttl_ms: float | None = None,
        max_retries: int | None = None,
        allow_stale: bool = True,
        decoder: Callable[[Any], T] | None = None,
    ) -> FetchResult[T]:
        """Fetch a value, preferring cached data over errors.

        Args:
            key: Cache key for the value
            request: Request to send, or a zero-argument builder of one
            ttl_ms: Cache TTL for a fresh value (cache default when None)
            max_retries: Override of the configured retry limit
            allow_stale: Whether cached data may replace an error
            decoder: Turns decoded JSON into the returned value

        Returns:
            FetchResult carrying either a value or a classified error

        Raises:
            ValidationError: If the request cannot be built or its URL cannot be sent
        """
        spec = self._resolve_request(request)
        if not key:
            raise ValidationError("Cache key must not be empty", field="key", actual=key)

        cached = self._cache.get(key)
        if cached.is_fresh:
            logger.debug("Cache hit", endpoint=self._name, key=key, age_ms=cached.age_ms)
            return FetchResult(key=key, value=cached.value, source=ResultSource.CACHE)

        if not self._breaker.allow():
            error = CircuitOpenError(
                time_until_retry=self._breaker.time_until_retry(), key=key
            )
            return self._fallback_from(cached, error, allow_stale, attempts=0)

        if not self._bucket.try_consume():
            error = RateLimitedError(retry_after=self._bucket.wait_time(), key=key)
            return self._fallback_from(cached, error, allow_stale, attempts=0)

        policy = self._retry if max_retries is None else self._retry.with_max_retries(max_retries)

        def on_retry(attempt: int, exc: Exception, delay: float) -> None:
            logger.warning(
                "Retrying request",
                endpoint=self._name,
                key=key,
                attempt=attempt,
                delay_s=round(delay, 3),
                error_class=getattr(exc, "error_class", ErrorClass.OTHER).value,
                error=str(exc),
            )

        result = await policy.execute(lambda: self._attempt(spec, decoder), on_retry)

        if result.success:
            self._breaker.on_success()
            self._cache.set(key, result.value, ttl_ms)
            return FetchResult(
                key=key,
                value=result.value,
                source=ResultSource.NETWORK,
                attempts=result.attempts,
            )

        error = result.error
        if isinstance(error, ValidationError):
            raise error
        if not isinstance(error, FetchError):
            raise error if error is not None else RuntimeError("Retry loop ended without a result")

        error.for_key(key)
        self._breaker.on_failure()
        logger.error(
            "Request failed" if error.retryable else "Request failed (not retryable)",
            endpoint=self._name,
            key=key,
            attempts=result.attempts,
            error_class=error.error_class.value,
            error=error.message,
        )

        return self._fallback_from(self._cache.get(key), error, allow_stale, result.attempts)

    async def _attempt(
        self, spec: RequestSpec, decoder: Callable[[Any], T] | None
    ) -> Any:
        """One network attempt with the fixed per-attempt timeout."""
        timeout = spec.timeout_s or self._config.request_timeout_s
        try:
            payload = await asyncio.wait_for(
                self._get_transport().get_json(spec), timeout=timeout
            )
        except FetchError:
            raise
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise ValidationError(
                f"Invalid request URL: {e}", field="url", actual=spec.url
            ) from e
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise TransportError(
                f"Request timed out after {timeout}s",
                url=spec.url,
                error_class=ErrorClass.TIMEOUT,
                cause=e,
            ) from e
        except (httpx.HTTPError, OSError) as e:
            raise TransportError(
                f"{type(e).__name__}: {e}",
                url=spec.url,
                error_class=classify_exception(e),
                cause=e,
            ) from e

        if decoder is None:
            return payload
        try:
            return decoder(payload)
        except (ValueError, TypeError, KeyError) as e:
            raise MalformedResponseError(
                f"Response rejected by decoder: {e}", url=spec.url, cause=e
            ) from e

    def _fallback_from(
        self,
        cached: CacheLookup[Any],
        error: FetchError,
        allow_stale: bool,
        attempts: int,
    ) -> FetchResult[Any]:
        """Serve cached data in place of ``error`` when allowed and present."""
        key = error.key or ""
        if allow_stale and cached.found:
            logger.warning(
                "Serving cached data after failure",
                endpoint=self._name,
                key=key,
                stale=cached.is_stale,
                age_ms=cached.age_ms,
                error_class=error.error_class.value,
            )
            return FetchResult(
                key=key,
                value=cached.value,
                source=ResultSource.CACHE,
                from_fallback=True,
                stale=cached.is_stale,
                attempts=attempts,
                fallback_reason=error,
            )

        if error.error_class in (ErrorClass.CIRCUIT_OPEN, ErrorClass.LOCAL_RATE_LIMITED):
            logger.warning(
                "Request rejected locally",
                endpoint=self._name,
                key=key,
                error_class=error.error_class.value,
            )
        return FetchResult(key=key, error=error, attempts=attempts)

    async def fetch_value(
        self,
        key: str,
        request: RequestLike,
        *,
        ttl_ms: float | None = None,
        max_retries: int | None = None,
        allow_stale: bool = True,
        decoder: Callable[[Any], T] | None = None,
    ) -> T:
        """Like :meth:`fetch` but returns the value or raises the error."""
        result = await self.fetch(
            key,
            request,
            ttl_ms=ttl_ms,
            max_retries=max_retries,
            allow_stale=allow_stale,
            decoder=decoder,
        )
        return result.unwrap()

    def get_circuit_state(self) -> CircuitState:
        """Current circuit breaker state."""
        return self._breaker.state

    def get_circuit_snapshot(self) -> CircuitBreakerSnapshot:
        return self._breaker.snapshot()

    def get_rate_limit_status(self) -> RateLimiterSnapshot:
        return self._bucket.snapshot()

    def get_cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def get_status(self) -> FetcherStatus:
        """Combined breaker, bucket and cache status."""
        return FetcherStatus(
            circuit_breaker=self._breaker.snapshot(),
            rate_limiter=self._bucket.snapshot(),
            cache=self._cache.stats(),
            name=self._name,
        )

    def reset_circuit(self) -> None:
        """Force the circuit back to CLOSED."""
        self._breaker.reset()
        logger.info("Circuit breaker manually reset", endpoint=self._name)

    def reset_rate_limiter(self) -> None:
        """Refill the token bucket."""
        self._bucket.reset()
        logger.info("Rate limiter manually reset", endpoint=self._name)

    def clear_cache(self) -> None:
        """Drop every cached entry."""
        self._cache.clear()
        logger.info("Cache cleared", endpoint=self._name)

    def invalidate(self, key: str) -> bool:
        """Drop one cached entry."""
        return self._cache.delete(key)

    def __repr__(self) -> str:
        return (
            f"ResilientFetcher(name={self._name!r}, "
            f"circuit={self._breaker.state.value}, cache_size={len(self._cache)})"
        )
