"""
Batch runner fanning many keys through one fetcher.

Fetches run concurrently up to a limit; a failure for one key never
aborts the others.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from resilient_fetch.errors import ErrorContext, FetchError
from resilient_fetch.resilience.fetcher import FetchResult, ResilientFetcher
from resilient_fetch.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from resilient_fetch.transport.http import RequestSpec

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass
class BatchResult(Generic[T]):
    """Result of a batch run.

    Attributes:
        results: One FetchResult per key, in input order
        total_time_ms: Total execution time in milliseconds
    """

    results: list[FetchResult[T]] = field(default_factory=list)
    total_time_ms: float = 0.0

    def __len__(self) -> int:
        return len(self.results)

    @property
    def successful_count(self) -> int:
        """Get count of keys that produced a value (fallbacks included)."""
        return sum(1 for r in self.results if r.ok)

    @property
    def failed_count(self) -> int:
        """Get count of keys that produced an error."""
        return sum(1 for r in self.results if not r.ok)

    @property
    def fallback_count(self) -> int:
        """Get count of values served from cache after a failure."""
        return sum(1 for r in self.results if r.from_fallback)

    @property
    def all_successful(self) -> bool:
        """Check if every key produced a value."""
        return all(r.ok for r in self.results)

    def values(self) -> dict[str, T]:
        """Values of successful keys."""
        return {r.key: r.value for r in self.results if r.ok}  # type: ignore[misc]

    def errors(self) -> dict[str, FetchError]:
        """Errors of failed keys."""
        return {r.key: r.error for r in self.results if r.error is not None}


class BatchRunner:
    """Runs :meth:`ResilientFetcher.fetch` for many keys concurrently.

    Example:
        >>> runner = BatchRunner(fetcher, max_concurrent=10)
        >>> batch = await runner.run_batch(
        ...     ["event-1", "event-2"],
        ...     lambda key: RequestSpec(url=f"/events/{key.split(':')[-1]}"),
        ... )
        >>> print(batch.successful_count, batch.failed_count)
    """

    def __init__(self, fetcher: ResilientFetcher, max_concurrent: int = 10) -> None:
        """Initialize batch runner.

        Args:
            fetcher: Fetcher every key goes through
            max_concurrent: Maximum concurrent fetches
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self._fetcher = fetcher
        self._max_concurrent = max_concurrent

    @property
    def max_concurrent(self) -> int:
        """Get maximum concurrent fetches."""
        return self._max_concurrent

    async def run_batch(
        self,
        keys: Sequence[str],
        request_for: Callable[[str], RequestSpec],
        *,
        ttl_ms: float | None = None,
        max_retries: int | None = None,
        allow_stale: bool = True,
        decoder: Callable[[Any], T] | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> BatchResult[T]:
        """Fetch every key.

        Args:
            keys: Cache keys to fetch
            request_for: Builds the request for a key
            ttl_ms: Cache TTL for fresh values
            max_retries: Override of the fetcher's retry limit
            allow_stale: Whether cached data may replace errors
            decoder: Turns decoded JSON into the returned value
            on_progress: Callback(completed, total) after each key

        Returns:
            BatchResult with one FetchResult per key, in input order
        """
        start_time = time.perf_counter()
        total = len(keys)
        results: list[FetchResult[T] | None] = [None] * total
        semaphore = asyncio.Semaphore(self._max_concurrent)
        completed = 0

        async def fetch_one(index: int, key: str) -> None:
            nonlocal completed
            async with semaphore:
                try:
                    results[index] = await self._fetcher.fetch(
                        key,
                        lambda: request_for(key),
                        ttl_ms=ttl_ms,
                        max_retries=max_retries,
                        allow_stale=allow_stale,
                        decoder=decoder,
                    )
                except FetchError as e:
                    results[index] = FetchResult(key=key, error=e.for_key(key))
                except Exception as e:
                    logger.exception(
                        "Unexpected error in batch fetch",
                        endpoint=self._fetcher.name,
                        key=key,
                    )
                    error = FetchError(
                        f"{type(e).__name__}: {e}",
                        ErrorContext(source="batch"),
                        key=key,
                    )
                    error.__cause__ = e
                    results[index] = FetchResult(key=key, error=error)

                completed += 1
                if on_progress:
                    on_progress(completed, total)

        await asyncio.gather(*(fetch_one(i, key) for i, key in enumerate(keys)))

        batch = BatchResult[T](
            results=[r for r in results if r is not None],
            total_time_ms=(time.perf_counter() - start_time) * 1000,
        )
        logger.info(
            "Batch completed",
            endpoint=self._fetcher.name,
            total=total,
            successful=batch.successful_count,
            failed=batch.failed_count,
            fallbacks=batch.fallback_count,
            total_time_ms=round(batch.total_time_ms, 1),
        )
        return batch
