"""
HTTP transport using httpx for async GET requests.

Provides:
- The :class:`RequestSpec` model describing one outbound GET
- The :class:`Transport` protocol the fetcher depends on
- :class:`HttpTransport`, the httpx-backed implementation that maps every
  failure onto the ``resilient_fetch.errors`` taxonomy
"""

from __future__ import annotations

import importlib.util
import json
import os
from contextlib import suppress
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from resilient_fetch.errors import (
    ErrorClass,
    MalformedResponseError,
    RemoteError,
    TransportError,
    ValidationError,
)
from resilient_fetch.telemetry import SensitiveDataMasker, get_logger

logger = get_logger(__name__)

# Default timeouts
_DEFAULT_TIMEOUT = 10.0
_DEFAULT_CONNECT_TIMEOUT = 5.0

_UA_VERSION: str | None = None
_masker = SensitiveDataMasker()


def _http2_enabled() -> bool:
    """Enable HTTP/2 only when optional dependency is present."""
    return importlib.util.find_spec("h2") is not None


def _trust_env_enabled() -> bool:
    """Use env proxy settings only when explicitly enabled."""
    return os.getenv("RESILIENT_FETCH_HTTP_TRUST_ENV", "0") == "1"


def _get_ua_version() -> str:
    """Get package version for User-Agent (cached)."""
    global _UA_VERSION
    if _UA_VERSION is None:
        from importlib.metadata import PackageNotFoundError, version

        try:
            _UA_VERSION = version("resilient-fetch")
        except PackageNotFoundError:
            _UA_VERSION = "0.1.0"
    return _UA_VERSION


class RequestSpec(BaseModel):
    """One outbound GET request.

    Credentials are carried only as caller-supplied headers; the library
    never looks them up itself.
    """

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Absolute URL, or a path relative to the transport base URL")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Extra request headers (credentials included)"
    )
    params: dict[str, Any] = Field(default_factory=dict, description="Query parameters")
    timeout_s: float | None = Field(
        default=None,
        gt=0,
        description="Per-request transport timeout; the transport default applies when unset",
    )

    @field_validator("url")
    @classmethod
    def _url_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("url must not be empty")
        return value


@runtime_checkable
class Transport(Protocol):
    """Anything that can perform a GET and return decoded JSON.

    Implementations raise :class:`~resilient_fetch.errors.FetchError`
    subclasses for every failure they can classify.
    """

    async def get_json(self, request: RequestSpec) -> Any: ...


class HttpTransport:
    """HTTP transport for JSON APIs.

    Uses httpx for async requests. The client is created lazily and
    reused until :meth:`close`.

    Example:
        >>> async with HttpTransport(base_url="https://gamma-api.example.com") as transport:
        ...     markets = await transport.get_json(RequestSpec(url="/markets"))
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        proxy: str | None = None,
        limits: httpx.Limits | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize HTTP transport.

        Args:
            base_url: Base URL prepended to relative request URLs
            timeout: Request timeout in seconds
            headers: Headers sent with every request
            proxy: Proxy URL
            limits: Connection pool limits
            client: Pre-built client to use instead of creating one
        """
        self._base_url = base_url or ""

        self._timeout = timeout
        if self._timeout is None:
            env_timeout = os.getenv("RESILIENT_FETCH_REQUEST_TIMEOUT_SECS")
            if env_timeout:
                self._timeout = float(env_timeout)
        if self._timeout is None:
            self._timeout = _DEFAULT_TIMEOUT

        if proxy is not None:
            self._proxy = proxy
        elif _trust_env_enabled():
            self._proxy = os.getenv("RESILIENT_FETCH_PROXY_URL")
        else:
            self._proxy = None

        self._default_headers = dict(headers or {})
        self._limits = limits
        self._client = client
        self._owns_client = client is None

    @property
    def timeout(self) -> float:
        """Default request timeout in seconds."""
        return self._timeout

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            timeout = httpx.Timeout(
                self._timeout,
                connect=min(_DEFAULT_CONNECT_TIMEOUT, self._timeout),
            )

            kwargs: dict[str, Any] = {
                "base_url": self._base_url,
                "timeout": timeout,
                "proxy": self._proxy,
                "http2": _http2_enabled(),
                "trust_env": _trust_env_enabled(),
            }
            if self._limits is not None:
                kwargs["limits"] = self._limits

            self._client = httpx.AsyncClient(**kwargs)
            self._owns_client = True

        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _build_headers(self, extra_headers: dict[str, str] | None = None) -> dict[str, str]:
        """Build request headers.

        Args:
            extra_headers: Additional headers to include

        Returns:
            Complete headers dictionary
        """
        headers = {
            "Accept": "application/json",
            "User-Agent": f"resilient-fetch/{_get_ua_version()}",
        }
        headers.update(self._default_headers)
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _describe_url(self, request: RequestSpec) -> str:
        if request.url.startswith(("http://", "https://")):
            return request.url
        return f"{self._base_url}{request.url}"

    async def get(self, request: RequestSpec) -> httpx.Response:
        """Perform a GET and return the raw response.

        Args:
            request: Request to send

        Returns:
            HTTP response with a status below 400

        Raises:
            ValidationError: If the URL is relative without a base URL, or not http(s)
            TransportError: On timeouts, connection and other network errors
            RemoteError: On HTTP error statuses (4xx, 5xx)
        """
        client = self._get_client()
        url = self._describe_url(request)
        kwargs: dict[str, Any] = {
            "headers": self._build_headers(request.headers),
            "params": request.params or None,
        }
        if request.timeout_s is not None:
            kwargs["timeout"] = request.timeout_s

        logger.debug("HTTP GET", url=_masker.mask(url))

        try:
            response = await client.get(request.url, **kwargs)
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise ValidationError(
                f"Invalid request URL: {e}", field="url", actual=request.url
            ) from e
        except httpx.TimeoutException as e:
            raise TransportError(
                f"Request timed out: {e}",
                url=url,
                error_class=ErrorClass.TIMEOUT,
                cause=e,
            ) from e
        except httpx.ConnectError as e:
            raise TransportError(
                f"Connection failed: {e}",
                url=url,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"HTTP error: {e}",
                url=url,
                cause=e,
            ) from e

        if response.status_code >= 400:
            body = None
            with suppress(ValueError):
                body = response.json()

            raise RemoteError.from_response(
                status_code=response.status_code,
                body=body,
                headers=dict(response.headers),
                url=url,
            )

        return response

    async def get_json(self, request: RequestSpec) -> Any:
        """Perform a GET and decode the JSON body.

        Raises:
            MalformedResponseError: If the body is not valid JSON
        """
        response = await self.get(request)
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedResponseError(
                f"Response body is not valid JSON: {e}",
                url=self._describe_url(request),
                cause=e,
            ) from e

    async def __aenter__(self) -> HttpTransport:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
