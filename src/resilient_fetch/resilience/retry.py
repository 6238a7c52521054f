"""
Retry policy with exponential backoff and jitter.

Delay before retry ``n`` (0-based) is
``min(2**n * base_delay, max_delay) + uniform(0, max_jitter)``.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from resilient_fetch.errors import FetchError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry policy.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay_ms: Delay before the first retry, doubled per attempt
        max_delay_ms: Cap on the exponential part of the delay
        max_jitter_ms: Upper bound of the uniform jitter added to every delay
    """

    max_retries: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 30_000
    max_jitter_ms: float = 1000
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0 or self.max_jitter_ms < 0:
            raise ValueError("retry delays must be non-negative")

    @classmethod
    def default(cls) -> RetryConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Create a config that disables retries."""
        return cls(max_retries=0)

    @classmethod
    def from_env(cls, prefix: str = "RESILIENT_FETCH") -> RetryConfig:
        """Create configuration from environment variables."""
        import os

        return cls(
            max_retries=int(os.getenv(f"{prefix}_MAX_RETRIES", "3")),
            base_delay_ms=float(os.getenv(f"{prefix}_BASE_DELAY_MS", "1000")),
            max_delay_ms=float(os.getenv(f"{prefix}_MAX_DELAY_MS", "30000")),
            max_jitter_ms=float(os.getenv(f"{prefix}_MAX_JITTER_MS", "1000")),
        )


@dataclass
class RetryResult:
    """Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        value: The result value (if success)
        error: The last error (if failed)
        attempts: Number of attempts made
        total_delay_ms: Total delay from retries in milliseconds
    """

    success: bool
    value: Any = None
    error: Exception | None = None
    attempts: int = 0
    total_delay_ms: float = 0.0


class RetryPolicy:
    """Retry policy with exponential backoff and additive jitter.

    Only classified, retryable :class:`FetchError` instances are retried.
    Anything else ends the loop on the first attempt.

    Example:
        >>> policy = RetryPolicy(RetryConfig(max_retries=3))
        >>> result = await policy.execute(async_operation)
        >>> if not result.success:
        ...     print(f"Failed after {result.attempts} attempts")
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize retry policy.

        Args:
            config: Retry configuration
            rng: Jitter source (a fresh random.Random when omitted)
            sleep: Awaitable sleep used between attempts
        """
        self._config = config or RetryConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        """Get configuration."""
        return self._config

    def with_max_retries(self, max_retries: int) -> RetryPolicy:
        """Copy of this policy with a different retry limit."""
        config = RetryConfig(
            max_retries=max_retries,
            base_delay_ms=self._config.base_delay_ms,
            max_delay_ms=self._config.max_delay_ms,
            max_jitter_ms=self._config.max_jitter_ms,
            exponential_base=self._config.exponential_base,
        )
        return RetryPolicy(config, rng=self._rng, sleep=self._sleep)

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a retry attempt.

        Args:
            attempt: Attempt that just failed (0-based)

        Returns:
            Delay in seconds
        """
        base_delay_ms = min(
            self._config.base_delay_ms * (self._config.exponential_base ** attempt),
            self._config.max_delay_ms,
        )
        jitter_ms = (
            self._rng.uniform(0, self._config.max_jitter_ms)
            if self._config.max_jitter_ms > 0
            else 0.0
        )
        return (base_delay_ms + jitter_ms) / 1000.0

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Check if an error should trigger a retry.

        Args:
            error: The exception that occurred
            attempt: Attempt that just failed (0-based)

        Returns:
            True if should retry
        """
        if attempt >= self._config.max_retries:
            return False
        if isinstance(error, FetchError):
            return error.retryable
        return False

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> RetryResult:
        """Execute an operation with retry.

        Args:
            operation: Async operation to execute
            on_retry: Optional callback ``(attempt, error, delay)`` called
                before each sleep

        Returns:
            RetryResult with success status and value/error
        """
        total_delay = 0.0
        attempt = 0

        while True:
            try:
                result = await operation()
            except Exception as e:
                attempt += 1

                if not self.should_retry(e, attempt - 1):
                    return RetryResult(
                        success=False,
                        error=e,
                        attempts=attempt,
                        total_delay_ms=total_delay * 1000,
                    )

                delay = self.calculate_delay(attempt - 1)
                total_delay += delay

                if on_retry:
                    on_retry(attempt, e, delay)

                await self._sleep(delay)
            else:
                return RetryResult(
                    success=True,
                    value=result,
                    attempts=attempt + 1,
                    total_delay_ms=total_delay * 1000,
                )
