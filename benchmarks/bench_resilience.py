#!/usr/bin/env python3
"""
Resilience layer performance benchmarks.

Measures the per-call overhead of the breaker, bucket, cache and fetcher.
"""

import asyncio
import time
from typing import Any

from resilient_fetch import (
    CacheConfig,
    CircuitBreaker,
    FetcherConfig,
    RequestSpec,
    ResilientFetcher,
    TieredCache,
    TokenBucket,
    TokenBucketConfig,
)


class InstantTransport:
    """Transport answering immediately with a fixed payload."""

    async def get_json(self, request: RequestSpec) -> Any:
        return {"ok": True}


def _result(name: str, iterations: int, elapsed: float) -> dict[str, Any]:
    return {
        "name": name,
        "iterations": iterations,
        "elapsed_seconds": elapsed,
        "throughput_ops": iterations / elapsed,
        "latency_us": (elapsed / iterations) * 1_000_000,
    }


async def benchmark_baseline(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark a bare transport call."""
    transport = InstantTransport()
    request = RequestSpec(url="https://api.example.com/markets")

    start = time.perf_counter()
    for _ in range(iterations):
        await transport.get_json(request)
    return _result("Baseline (transport only)", iterations, time.perf_counter() - start)


async def benchmark_circuit_breaker(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark breaker gate overhead (closed state)."""
    breaker = CircuitBreaker()

    start = time.perf_counter()
    for _ in range(iterations):
        if breaker.allow():
            breaker.on_success()
    return _result("CircuitBreaker (closed)", iterations, time.perf_counter() - start)


async def benchmark_token_bucket(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark token consumption with an effectively unlimited bucket."""
    bucket = TokenBucket(TokenBucketConfig(capacity=iterations, refill_rate_per_second=iterations))

    start = time.perf_counter()
    for _ in range(iterations):
        bucket.try_consume()
    return _result("TokenBucket (try_consume)", iterations, time.perf_counter() - start)


async def benchmark_cache_hits(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark fresh cache reads."""
    cache: TieredCache[int] = TieredCache(CacheConfig(max_size=100))
    for i in range(100):
        cache.set(f"k{i}", i)

    start = time.perf_counter()
    for i in range(iterations):
        cache.get(f"k{i % 100}")
    return _result("TieredCache (fresh hits)", iterations, time.perf_counter() - start)


async def benchmark_cache_eviction(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark writes into a full LRU cache."""
    cache: TieredCache[int] = TieredCache(CacheConfig(max_size=100))

    start = time.perf_counter()
    for i in range(iterations):
        cache.set(f"k{i}", i)
    return _result("TieredCache (LRU eviction)", iterations, time.perf_counter() - start)


async def benchmark_fetcher_network(iterations: int = 2000) -> dict[str, Any]:
    """Benchmark full fetches that always miss the cache."""
    config = FetcherConfig(
        rate_limit=TokenBucketConfig(capacity=iterations, refill_rate_per_second=0),
        cache=CacheConfig(max_size=10),
    )
    fetcher = ResilientFetcher(config, InstantTransport())
    request = RequestSpec(url="https://api.example.com/markets")

    start = time.perf_counter()
    for i in range(iterations):
        await fetcher.fetch(f"m{i}", request)
    return _result("ResilientFetcher (network path)", iterations, time.perf_counter() - start)


async def benchmark_fetcher_cached(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark fetches served from a fresh cache entry."""
    fetcher = ResilientFetcher(transport=InstantTransport())
    request = RequestSpec(url="https://api.example.com/markets")
    await fetcher.fetch("m", request)

    start = time.perf_counter()
    for _ in range(iterations):
        await fetcher.fetch("m", request)
    return _result("ResilientFetcher (cache hit)", iterations, time.perf_counter() - start)


async def run_benchmarks() -> None:
    """Run all benchmarks and print results."""
    print("=" * 60)
    print("Resilience Benchmarks")
    print("=" * 60)
    print()

    benchmarks = [
        benchmark_baseline,
        benchmark_circuit_breaker,
        benchmark_token_bucket,
        benchmark_cache_hits,
        benchmark_cache_eviction,
        benchmark_fetcher_network,
        benchmark_fetcher_cached,
    ]

    baseline_latency = 0.0

    for bench in benchmarks:
        result = await bench()
        if result["name"].startswith("Baseline"):
            baseline_latency = result["latency_us"]

        overhead = ""
        if baseline_latency > 0 and not result["name"].startswith("Baseline"):
            overhead_us = result["latency_us"] - baseline_latency
            overhead = f" (+{overhead_us:.2f}µs vs baseline)"

        print(f"{result['name']}:")
        print(f"  Throughput: {result['throughput_ops']:.0f} ops/sec")
        print(f"  Latency: {result['latency_us']:.2f} µs/op{overhead}")
        print()


if __name__ == "__main__":
    asyncio.run(run_benchmarks())
