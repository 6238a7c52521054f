"""
Transport layer - HTTP client for upstream APIs.

Provides httpx-based transport with:
- JSON GET requests
- Timeout management
- Proxy configuration
- Error classification of every failure
"""

from resilient_fetch.transport.http import HttpTransport, RequestSpec, Transport

__all__ = [
    "HttpTransport",
    "RequestSpec",
    "Transport",
]
