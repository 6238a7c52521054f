"""
Core ApiClient implementation.

A thin adapter over :class:`ResilientFetcher`: it supplies URL building,
cache-key generation and caller credentials, and nothing else.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

from resilient_fetch.batch import BatchResult, BatchRunner
from resilient_fetch.cache.key import CacheKeyGenerator
from resilient_fetch.errors import FetchError
from resilient_fetch.resilience.fetcher import FetcherConfig, FetchResult, ResilientFetcher
from resilient_fetch.telemetry import get_logger
from resilient_fetch.transport.http import RequestSpec

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from resilient_fetch.client.builder import ApiClientBuilder

T = TypeVar("T")

logger = get_logger(__name__)


class ApiClient:
    """Client for one upstream JSON API.

    Example:
        >>> client = ApiClient(
        ...     "https://newsdata.example.com/api/1",
        ...     ResilientFetcher(FetcherConfig.news(), name="news"),
        ...     headers={"X-ACCESS-KEY": api_key},
        ...     key_prefix="news",
        ... )
        >>> result = await client.get("/latest", {"q": "election"})
    """

    def __init__(
        self,
        base_url: str,
        fetcher: ResilientFetcher | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        key_prefix: str | None = None,
        max_concurrent: int = 10,
        health_path: str = "/health",
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL of the API
            fetcher: Fetcher guarding this API (a default one is created when omitted)
            headers: Headers sent with every request, credentials included
            key_prefix: Cache key prefix (defaults to the fetcher name)
            max_concurrent: Concurrency limit of :meth:`get_many`
            health_path: Path requested by :meth:`health_check`
        """
        self._base_url = base_url.rstrip("/")
        self._fetcher = fetcher or ResilientFetcher(FetcherConfig.default())
        self._headers = dict(headers or {})
        self._keys = CacheKeyGenerator(prefix=key_prefix or self._fetcher.name)
        self._runner = BatchRunner(self._fetcher, max_concurrent=max_concurrent)
        self._health_path = health_path

    @classmethod
    def builder(cls) -> ApiClientBuilder:
        """Get a builder for advanced configuration."""
        from resilient_fetch.client.builder import ApiClientBuilder

        return ApiClientBuilder()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def fetcher(self) -> ResilientFetcher:
        return self._fetcher

    def url_for(self, path: str) -> str:
        """Absolute URL for a path."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def key_for(self, path: str, params: Mapping[str, Any] | None = None) -> str:
        """Cache key for a path and query."""
        return self._keys.generate(path, params)

    def request_for(
        self, path: str, params: Mapping[str, Any] | None = None
    ) -> RequestSpec:
        """Build the request for a path and query; ``None`` params are dropped."""
        return RequestSpec(
            url=self.url_for(path),
            headers=self._headers,
            params={k: v for k, v in (params or {}).items() if v is not None},
        )

    async def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        ttl_ms: float | None = None,
        max_retries: int | None = None,
        allow_stale: bool = True,
        decoder: Callable[[Any], T] | None = None,
    ) -> FetchResult[T]:
        """Fetch one resource through the fetcher.

        Args:
            path: Path relative to the base URL
            params: Query parameters
            ttl_ms: Cache TTL for a fresh value
            max_retries: Override of the retry limit
            allow_stale: Whether cached data may replace an error
            decoder: Turns decoded JSON into the returned value

        Returns:
            FetchResult with a value or a classified error
        """
        return await self._fetcher.fetch(
            self.key_for(path, params),
            lambda: self.request_for(path, params),
            ttl_ms=ttl_ms,
            max_retries=max_retries,
            allow_stale=allow_stale,
            decoder=decoder,
        )

    async def get_many(
        self,
        paths: Sequence[str],
        params: Mapping[str, Any] | None = None,
        *,
        ttl_ms: float | None = None,
        max_retries: int | None = None,
        allow_stale: bool = True,
        decoder: Callable[[Any], T] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> BatchResult[T]:
        """Fetch several paths sharing the same query.

        Results are keyed by cache key and ordered like ``paths``.
        """
        path_by_key = {self.key_for(path, params): path for path in paths}
        return await self._runner.run_batch(
            [self.key_for(path, params) for path in paths],
            lambda key: self.request_for(path_by_key[key], params),
            ttl_ms=ttl_ms,
            max_retries=max_retries,
            allow_stale=allow_stale,
            decoder=decoder,
            on_progress=on_progress,
        )

    async def health_check(self, timeout_s: float = 5.0) -> bool:
        """Request the health path directly, bypassing breaker, bucket and cache.

        Returns:
            True if the API answered with a decodable success response
        """
        request = RequestSpec(
            url=self.url_for(self._health_path),
            headers=self._headers,
            timeout_s=timeout_s,
        )
        try:
            await asyncio.wait_for(
                self._fetcher.transport.get_json(request), timeout=timeout_s
            )
        except (FetchError, asyncio.TimeoutError) as e:
            logger.warning(
                "Health check failed",
                endpoint=self._fetcher.name,
                url=request.url,
                error=str(e) or type(e).__name__,
            )
            return False
        return True

    def get_status(self) -> dict[str, Any]:
        """Combined fetcher status as a dictionary."""
        return self._fetcher.get_status().to_dict()

    async def close(self) -> None:
        await self._fetcher.close()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
