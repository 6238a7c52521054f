"""Root pytest fixtures for resilient-fetch tests."""

from __future__ import annotations

import random
from typing import Any

import pytest

from resilient_fetch.errors import ErrorClass, RemoteError, TransportError
from resilient_fetch.transport.http import RequestSpec


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


class RecordingSleep:
    """Awaitable sleep that records delays and advances a fake clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._clock is not None:
            self._clock.advance(delay)


class ScriptedTransport:
    """Transport returning (or raising) scripted outcomes in order.

    Once the script is exhausted the last outcome repeats.
    """

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[RequestSpec] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def get_json(self, request: RequestSpec) -> Any:
        self.requests.append(request)
        index = min(len(self.requests), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    """Recording sleep advancing the fake clock."""
    return RecordingSleep(clock)


@pytest.fixture
def rng() -> random.Random:
    """Seeded jitter source."""
    return random.Random(42)


@pytest.fixture
def request_spec() -> RequestSpec:
    """A plain market data request."""
    return RequestSpec(url="https://api.example.com/markets", params={"active": "true"})


@pytest.fixture
def scripted() -> type[ScriptedTransport]:
    """The scripted transport class, for building per-test scripts."""
    return ScriptedTransport


@pytest.fixture
def timeout_error() -> Any:
    """Factory for classified timeout errors."""

    def make() -> TransportError:
        return TransportError("Request timed out", error_class=ErrorClass.TIMEOUT)

    return make


@pytest.fixture
def http_error() -> Any:
    """Factory for RemoteError with a given status."""

    def make(status_code: int) -> RemoteError:
        return RemoteError.from_response(
            status_code, {"error": {"message": f"status {status_code}"}}
        )

    return make
