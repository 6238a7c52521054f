#!/usr/bin/env python3
"""
Basic fetch example.

This example demonstrates the simplest way to put an API behind
resilient-fetch: build a client, fetch, and read the result.

Usage:
    export NEWSDATA_API_KEY="your-api-key"
    python examples/basic_fetch.py
"""

import asyncio
import os

from resilient_fetch import ApiClient, FetcherConfig


async def main() -> None:
    """Run basic fetch example."""
    client = (
        ApiClient.builder()
        .base_url("https://newsdata.io/api/1")
        .name("news")
        .config(FetcherConfig.news())
        .header("X-ACCESS-KEY", os.environ.get("NEWSDATA_API_KEY", ""))
        .build()
    )

    async with client:
        # Method 1: FetchResult, never raises for upstream failures
        result = await client.get(
            "/latest",
            {"q": "election", "language": "en"},
            decoder=lambda body: body.get("results", []),
        )
        if result.ok:
            print(f"Articles: {len(result.value)} (source={result.source.value})")
        else:
            print(f"Unavailable this cycle: {result.error}")
        print()

        # Method 2: the same call again is served from the cache
        again = await client.get("/latest", {"q": "election", "language": "en"})
        print(f"Second call source: {again.source.value}")
        print()

        # Method 3: many keys at once with bounded concurrency
        batch = await client.get_many(
            ["/latest", "/archive"],
            {"q": "polls"},
            on_progress=lambda done, total: print(f"  {done}/{total} done"),
        )
        print(f"Batch: {batch.successful_count} ok, {batch.failed_count} failed")
        print()

        stats = client.fetcher.get_cache_stats()
        print(f"Cache: {stats.size} entries, hit rate {stats.hit_rate:.0%}")


if __name__ == "__main__":
    asyncio.run(main())
