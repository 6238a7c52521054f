"""
Batch processing module for resilient-fetch.

Provides concurrent fan-out of many keys through one fetcher.
"""

from resilient_fetch.batch.runner import BatchResult, BatchRunner

__all__ = [
    "BatchResult",
    "BatchRunner",
]
