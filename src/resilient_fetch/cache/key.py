"""
Cache key generation utilities.

Provides deterministic cache keys for GET requests so that callers
asking for the same resource with the same query share one entry.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode


class CacheKeyGenerator:
    """Generates deterministic ``prefix:endpoint:query`` cache keys.

    Query parameters are sorted by name; list values are sorted and
    comma-joined; ``None`` values are dropped. Queries that would push the
    key past ``max_length`` are replaced by a SHA-256 digest.

    Example:
        >>> generator = CacheKeyGenerator(prefix="news")
        >>> generator.generate("latest", {"q": "election", "country": ["us", "gb"]})
        'news:latest:country=gb%2Cus&q=election'
    """

    def __init__(self, prefix: str = "fetch", max_length: int = 250) -> None:
        """Initialize key generator.

        Args:
            prefix: Key prefix, usually the provider name
            max_length: Longest key emitted before the query is hashed
        """
        self._prefix = prefix
        self._max_length = max_length

    @property
    def prefix(self) -> str:
        return self._prefix

    def generate(self, endpoint: str, params: Mapping[str, Any] | None = None) -> str:
        """Generate a cache key.

        Args:
            endpoint: Endpoint path or logical name
            params: Query parameters

        Returns:
            Cache key string
        """
        endpoint = endpoint.strip("/")
        query = urlencode(self._normalize_params(params or {}))
        key = f"{self._prefix}:{endpoint}:{query}"

        if len(key) > self._max_length:
            key = f"{self._prefix}:{endpoint}:{self._hash_string(query)[:16]}"

        return key

    def _normalize_params(self, params: Mapping[str, Any]) -> list[tuple[str, str]]:
        """Sort parameters and render values as strings.

        Args:
            params: Raw query parameters

        Returns:
            Sorted (name, value) pairs
        """
        normalized: list[tuple[str, str]] = []
        for name in sorted(params):
            value = params[name]
            if value is None:
                continue
            if isinstance(value, (list, tuple, set, frozenset)):
                value = ",".join(sorted(self._render(v) for v in value))
            else:
                value = self._render(value)
            normalized.append((name, value))
        return normalized

    @staticmethod
    def _render(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @staticmethod
    def _hash_string(content: str) -> str:
        """Hash a string using SHA-256."""
        return hashlib.sha256(content.encode()).hexdigest()
