"""
Tests for ApiClient and ApiClientBuilder.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from resilient_fetch.client import ApiClient, ApiClientBuilder
from resilient_fetch.resilience import FetcherConfig, ResilientFetcher, ResultSource
from resilient_fetch.transport import RequestSpec


class TestApiClient:
    """Tests for ApiClient request building and fetching."""

    def test_url_and_key(self, scripted) -> None:
        """Test URLs are joined to the base and keys use the prefix."""
        client = ApiClient(
            "https://newsdata.example.com/api/1/",
            ResilientFetcher(transport=scripted({}), name="news"),
        )

        assert client.base_url == "https://newsdata.example.com/api/1"
        assert client.url_for("/latest") == "https://newsdata.example.com/api/1/latest"
        assert client.url_for("https://other.example.com/x") == "https://other.example.com/x"
        assert client.key_for("/latest", {"q": "vote"}) == "news:latest:q=vote"

    def test_request_for(self, scripted) -> None:
        """Test request building carries headers and drops None params."""
        client = ApiClient(
            "https://api.example.com",
            ResilientFetcher(transport=scripted({})),
            headers={"X-ACCESS-KEY": "secret"},
            key_prefix="events",
        )

        request = client.request_for("events", {"city": "Leeds", "page": None})

        assert request.url == "https://api.example.com/events"
        assert request.headers == {"X-ACCESS-KEY": "secret"}
        assert request.params == {"city": "Leeds"}
        assert client.key_for("events") == "events:events:"

    @pytest.mark.asyncio
    async def test_get(self, scripted, clock, sleep) -> None:
        """Test get fetches through the fetcher and caches by key."""
        transport = scripted({"results": [1]})
        fetcher = ResilientFetcher(transport=transport, name="news", clock=clock, sleep=sleep)
        client = ApiClient("https://api.example.com", fetcher)

        first = await client.get("latest", {"q": "vote"}, decoder=lambda body: body["results"])
        second = await client.get("latest", {"q": "vote"})

        assert first.value == [1]
        assert first.key == "news:latest:q=vote"
        assert second.source == ResultSource.CACHE
        assert transport.calls == 1
        assert transport.requests[0].params == {"q": "vote"}

    @pytest.mark.asyncio
    async def test_get_many(self, scripted, clock, sleep) -> None:
        """Test several paths are fetched with one shared query."""
        transport = scripted({"ok": True})
        fetcher = ResilientFetcher(transport=transport, name="events", clock=clock, sleep=sleep)
        client = ApiClient("https://api.example.com", fetcher)

        batch = await client.get_many(["/events/1", "/events/2"], {"lang": "en"})

        assert batch.all_successful
        assert [r.key for r in batch.results] == [
            "events:events/1:lang=en",
            "events:events/2:lang=en",
        ]
        assert sorted(r.url for r in transport.requests) == [
            "https://api.example.com/events/1",
            "https://api.example.com/events/2",
        ]

    @pytest.mark.asyncio
    async def test_health_check(self, scripted, http_error) -> None:
        """Test health check reports success and classified failures."""
        transport = scripted({"status": "ok"}, http_error(503))
        client = ApiClient("https://api.example.com", ResilientFetcher(transport=transport))

        assert await client.health_check() is True
        assert await client.health_check() is False
        assert transport.requests[0].url == "https://api.example.com/health"
        assert client.fetcher.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_health_check_timeout(self) -> None:
        """Test a hung health endpoint reports False."""

        class HangingTransport:
            async def get_json(self, request: RequestSpec) -> Any:
                await asyncio.sleep(10)

        client = ApiClient("https://api.example.com", ResilientFetcher(transport=HangingTransport()))

        assert await client.health_check(timeout_s=0.01) is False

    def test_status(self, scripted) -> None:
        """Test status dictionary."""
        client = ApiClient("https://api.example.com", ResilientFetcher(transport=scripted({}), name="x"))
        status = client.get_status()
        assert status["name"] == "x"
        assert status["circuit_breaker"]["state"] == "CLOSED"


class TestApiClientBuilder:
    """Tests for ApiClientBuilder."""

    def test_build(self, scripted) -> None:
        """Test the builder wires name, config, headers and transport."""
        transport = scripted({})
        client = (
            ApiClient.builder()
            .base_url("https://api.example.com")
            .name("news")
            .config(FetcherConfig.news())
            .header("X-ACCESS-KEY", "k")
            .bearer_token("t")
            .timeout(2.0)
            .transport(transport)
            .max_concurrent(4)
            .build()
        )

        assert client.fetcher.name == "news"
        assert client.fetcher.transport is transport
        assert client.fetcher.config.rate_limit.capacity == 10
        assert client.fetcher.config.request_timeout_s == 2.0
        assert client.request_for("x").headers == {
            "X-ACCESS-KEY": "k",
            "Authorization": "Bearer t",
        }
        assert client.key_for("latest") == "news:latest:"

    def test_timeout_does_not_mutate_config(self) -> None:
        """Test the caller's config is left untouched."""
        config = FetcherConfig()
        ApiClientBuilder().base_url("https://api.example.com").config(config).timeout(1.0).build()
        assert config.request_timeout_s == 10.0

    def test_key_prefix(self) -> None:
        """Test an explicit key prefix overrides the name."""
        client = ApiClientBuilder().base_url("https://a.example.com").name("n").key_prefix("p").build()
        assert client.key_for("x") == "p:x:"

    def test_missing_base_url(self) -> None:
        """Test building without a base URL raises."""
        with pytest.raises(ValueError, match="base_url"):
            ApiClientBuilder().build()
