"""
Builder for fluent ApiClient construction.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

from resilient_fetch.resilience.fetcher import FetcherConfig, ResilientFetcher

if TYPE_CHECKING:
    from resilient_fetch.client.core import ApiClient
    from resilient_fetch.transport.http import Transport


class ApiClientBuilder:
    """Builder for creating ApiClient instances with custom configuration.

    Example:
        >>> client = (
        ...     ApiClientBuilder()
        ...     .base_url("https://newsdata.example.com/api/1")
        ...     .name("news")
        ...     .config(FetcherConfig.news())
        ...     .header("X-ACCESS-KEY", api_key)
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        """Initialize the builder."""
        self._base_url: str | None = None
        self._name: str = "default"
        self._config: FetcherConfig | None = None
        self._headers: dict[str, str] = {}
        self._key_prefix: str | None = None
        self._timeout: float | None = None
        self._transport: Transport | None = None
        self._max_concurrent: int = 10
        self._health_path: str = "/health"

    def base_url(self, url: str) -> ApiClientBuilder:
        """Set the API base URL."""
        self._base_url = url
        return self

    def name(self, name: str) -> ApiClientBuilder:
        """Set the endpoint name used in logs and as the default key prefix."""
        self._name = name
        return self

    def config(self, config: FetcherConfig) -> ApiClientBuilder:
        """Set the fetcher configuration."""
        self._config = config
        return self

    def header(self, name: str, value: str) -> ApiClientBuilder:
        """Add a header sent with every request."""
        self._headers[name] = value
        return self

    def bearer_token(self, token: str) -> ApiClientBuilder:
        """Send ``Authorization: Bearer <token>`` with every request."""
        return self.header("Authorization", f"Bearer {token}")

    def key_prefix(self, prefix: str) -> ApiClientBuilder:
        """Set the cache key prefix."""
        self._key_prefix = prefix
        return self

    def timeout(self, seconds: float) -> ApiClientBuilder:
        """Set the per-attempt request timeout."""
        self._timeout = seconds
        return self

    def transport(self, transport: Transport) -> ApiClientBuilder:
        """Use a custom transport."""
        self._transport = transport
        return self

    def max_concurrent(self, limit: int) -> ApiClientBuilder:
        """Set the batch concurrency limit."""
        self._max_concurrent = limit
        return self

    def health_path(self, path: str) -> ApiClientBuilder:
        """Set the path requested by ``health_check``."""
        self._health_path = path
        return self

    def build(self) -> ApiClient:
        """Build the client.

        Raises:
            ValueError: If no base URL was set
        """
        from resilient_fetch.client.core import ApiClient

        if not self._base_url:
            raise ValueError("base_url is required")

        config = self._config or FetcherConfig.default()
        if self._timeout is not None:
            config = dataclasses.replace(config, request_timeout_s=self._timeout)

        fetcher = ResilientFetcher(config, self._transport, name=self._name)

        return ApiClient(
            self._base_url,
            fetcher,
            headers=self._headers,
            key_prefix=self._key_prefix,
            max_concurrent=self._max_concurrent,
            health_path=self._health_path,
        )
