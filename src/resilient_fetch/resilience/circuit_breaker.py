"""
Circuit breaker for fault isolation.

Implements the circuit breaker pattern with three states:
- Closed: Normal operation, requests pass through
- Open: Circuit tripped, requests are rejected without a network attempt
- Half-Open: Cooldown elapsed, trial requests test whether the service recovered

The breaker is a pure gate: callers ask :meth:`CircuitBreaker.allow`
before a call and report the outcome with :meth:`on_success` or
:meth:`on_failure`. Half-open admits every caller that asks; whichever
outcome is reported first decides the next state.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from resilient_fetch.resilience.signals import CircuitBreakerSnapshot
from resilient_fetch.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that trip the circuit
        reset_timeout_ms: Time since the last failure before a trial request is allowed
    """

    failure_threshold: int = 5
    reset_timeout_ms: float = 60_000

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError(
                f"failure_threshold must be at least 1, got {self.failure_threshold}"
            )
        if self.reset_timeout_ms < 0:
            raise ValueError(
                f"reset_timeout_ms must be non-negative, got {self.reset_timeout_ms}"
            )

    @property
    def reset_timeout_seconds(self) -> float:
        """Reset timeout in seconds."""
        return self.reset_timeout_ms / 1000.0

    @classmethod
    def default(cls) -> CircuitBreakerConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "RESILIENT_FETCH") -> CircuitBreakerConfig:
        """Create configuration from environment variables."""
        import os

        failure_threshold = int(os.getenv(f"{prefix}_FAILURE_THRESHOLD", "5"))
        reset_timeout_ms = float(os.getenv(f"{prefix}_RESET_TIMEOUT_MS", "60000"))

        return cls(
            failure_threshold=failure_threshold,
            reset_timeout_ms=reset_timeout_ms,
        )


@dataclass
class CircuitStats:
    """Statistics for circuit breaker."""

    allowed_requests: int = 0
    rejected_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    state_changes: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None


class CircuitBreaker:
    """Circuit breaker for fault isolation.

    Example:
        >>> breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3))
        >>> if breaker.allow():
        ...     try:
        ...         data = await call_upstream()
        ...     except Exception:
        ...         breaker.on_failure()
        ...     else:
        ...         breaker.on_success()
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str | None = None,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            config: Circuit breaker configuration
            clock: Monotonic clock in seconds
            name: Endpoint name used in log records
        """
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._name = name
        self._lock = threading.RLock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None

        self._stats = CircuitStats()

    @property
    def config(self) -> CircuitBreakerConfig:
        """Get configuration."""
        return self._config

    @property
    def state(self) -> CircuitState:
        """Get current circuit state.

        Reading the state never transitions it; only :meth:`allow` moves
        OPEN to HALF_OPEN.
        """
        return self._state

    @property
    def failure_count(self) -> int:
        """Current consecutive failure count."""
        return self._failure_count

    @property
    def is_closed(self) -> bool:
        """Check if circuit is closed (normal operation)."""
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        """Check if circuit is open (failing fast)."""
        return self._state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        """Check if circuit is half-open (testing)."""
        return self._state == CircuitState.HALF_OPEN

    def _cooldown_elapsed(self, now: float) -> bool:
        if self._last_failure_time is None:
            return True
        return now - self._last_failure_time >= self._config.reset_timeout_seconds

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state. Caller holds the lock."""
        if new_state == self._state:
            return

        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0

        if new_state == CircuitState.OPEN:
            logger.warning(
                "Circuit breaker opened",
                breaker=self._name,
                from_state=old_state.value,
                failure_count=self._failure_count,
                reset_timeout_ms=self._config.reset_timeout_ms,
            )
        else:
            logger.info(
                "Circuit breaker state changed",
                breaker=self._name,
                from_state=old_state.value,
                to_state=new_state.value,
            )

    def allow(self) -> bool:
        """Check whether a call may proceed.

        Returns:
            True in CLOSED and HALF_OPEN. In OPEN, True only once the reset
            timeout has elapsed since the last failure (moving to HALF_OPEN).
        """
        with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._cooldown_elapsed(self._clock()):
                    self._stats.rejected_requests += 1
                    return False
                self._transition_to(CircuitState.HALF_OPEN)

            self._stats.allowed_requests += 1
            return True

    def on_success(self) -> None:
        """Record a successful call.

        HALF_OPEN closes the circuit; CLOSED resets the consecutive
        failure counter. A late success reported while OPEN is ignored.
        """
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.last_success_time = self._clock()

            if self._state == CircuitState.OPEN:
                return
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0

    def on_failure(self) -> None:
        """Record a failed call.

        CLOSED counts the failure and opens at the threshold; HALF_OPEN
        reopens immediately. Either way the failure time is refreshed.
        """
        with self._lock:
            now = self._clock()
            self._stats.failed_requests += 1
            self._stats.last_failure_time = now
            self._last_failure_time = now
            self._failure_count += 1

            if self._state == CircuitState.HALF_OPEN:
                # A failed trial request trips straight back to open
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._config.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

    def time_until_retry(self) -> float | None:
        """Get time until the circuit admits a trial request.

        Returns:
            Seconds until retry, or None if not open
        """
        with self._lock:
            if self._state != CircuitState.OPEN or self._last_failure_time is None:
                return None
            elapsed = self._clock() - self._last_failure_time
            return max(0.0, self._config.reset_timeout_seconds - elapsed)

    def reset(self) -> None:
        """Reset circuit breaker to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._last_failure_time = None

    def snapshot(self) -> CircuitBreakerSnapshot:
        """Get a point-in-time view of the breaker."""
        with self._lock:
            remaining = self.time_until_retry()
            return CircuitBreakerSnapshot(
                state=self._state.value,
                failure_count=self._failure_count,
                failure_threshold=self._config.failure_threshold,
                last_failure_time=self._last_failure_time,
                cooldown_remaining_ms=remaining * 1000 if remaining is not None else None,
            )

    def get_stats(self) -> CircuitStats:
        """Get circuit breaker statistics.

        Returns:
            CircuitStats with current statistics
        """
        with self._lock:
            return CircuitStats(
                allowed_requests=self._stats.allowed_requests,
                rejected_requests=self._stats.rejected_requests,
                successful_requests=self._stats.successful_requests,
                failed_requests=self._stats.failed_requests,
                state_changes=self._stats.state_changes,
                last_failure_time=self._stats.last_failure_time,
                last_success_time=self._stats.last_success_time,
            )

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(state={self._state.value}, "
            f"failures={self._failure_count}/{self._config.failure_threshold})"
        )
