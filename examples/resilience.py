#!/usr/bin/env python3
"""
Resilience patterns example.

This example shows what a caller sees when an upstream API misbehaves:
- Retries with exponential backoff on transient errors
- The circuit breaker opening after repeated failures
- Stale cached data served instead of an error

A scripted transport stands in for the network so the example runs offline.

Usage:
    python examples/resilience.py
"""

import asyncio
from typing import Any

from resilient_fetch import (
    CircuitBreakerConfig,
    FetcherConfig,
    RemoteError,
    RequestSpec,
    ResilientFetcher,
    RetryConfig,
    TransportError,
    configure_logging,
)
from resilient_fetch.errors import ErrorClass


class FlakyTransport:
    """Succeeds once, then fails every request."""

    def __init__(self) -> None:
        self.calls = 0

    async def get_json(self, request: RequestSpec) -> Any:
        self.calls += 1
        if self.calls == 1:
            return [{"id": "market-1", "price": 0.52}]
        if self.calls % 2:
            raise TransportError("Request timed out", error_class=ErrorClass.TIMEOUT)
        raise RemoteError.from_response(503, {"message": "maintenance"})


async def main() -> None:
    """Run the resilience walkthrough."""
    configure_logging("WARNING", format="text")

    config = FetcherConfig(
        circuit_breaker=CircuitBreakerConfig(failure_threshold=2, reset_timeout_ms=30_000),
        retry=RetryConfig(max_retries=1, base_delay_ms=50, max_jitter_ms=10),
    )
    transport = FlakyTransport()
    request = RequestSpec(url="https://gamma-api.example.com/markets", params={"active": "true"})

    async with ResilientFetcher(config, transport, name="markets") as fetcher:
        # 1. A successful fetch fills the cache (1 second TTL here)
        result = await fetcher.fetch("markets:active", request, ttl_ms=1000)
        print(f"First fetch: {result.value} (source={result.source.value})")

        # 2. Let the entry go stale, then fail: stale data wins over the error
        await asyncio.sleep(1.1)
        result = await fetcher.fetch("markets:active", request)
        print(
            f"Upstream failing: value={result.value} stale={result.stale} "
            f"reason={result.fallback_reason}"
        )

        # 3. Another failure trips the breaker; a key without cache gets the error
        await fetcher.fetch("markets:closed", request)
        print(f"Circuit state: {fetcher.get_circuit_state().value}")

        result = await fetcher.fetch("markets:new", request)
        print(f"Rejected locally: {type(result.error).__name__} (attempts={result.attempts})")

        # 4. Status for dashboards
        status = fetcher.get_status()
        print(f"Healthy: {status.is_healthy}, score: {status.health_score:.2f}")
        print(f"Network calls made: {transport.calls}")


if __name__ == "__main__":
    asyncio.run(main())
