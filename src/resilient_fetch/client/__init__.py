"""
Client module - thin per-API adapters over the resilient fetcher.
"""

from resilient_fetch.client.builder import ApiClientBuilder
from resilient_fetch.client.core import ApiClient

__all__ = [
    "ApiClient",
    "ApiClientBuilder",
]
