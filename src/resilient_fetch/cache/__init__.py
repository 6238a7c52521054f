"""
Caching module for resilient-fetch.

Provides a bounded in-memory cache with fresh and stale tiers.
"""

from resilient_fetch.cache.key import CacheKeyGenerator
from resilient_fetch.cache.tiered import (
    CacheConfig,
    CacheEntry,
    CacheHealth,
    CacheLookup,
    CacheStats,
    EvictionPolicy,
    FallbackResult,
    FallbackSource,
    Freshness,
    LookupStatus,
    PreloadResult,
    PreloadSpec,
    RefreshResult,
    TieredCache,
)

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheHealth",
    "CacheKeyGenerator",
    "CacheLookup",
    "CacheStats",
    "EvictionPolicy",
    "FallbackResult",
    "FallbackSource",
    "Freshness",
    "LookupStatus",
    "PreloadResult",
    "PreloadSpec",
    "RefreshResult",
    "TieredCache",
]
