"""
Integration test helper utilities.

Shared payload builders and mock setup for HTTP-level tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    import pytest_httpx

API_BASE = "https://gamma-api.example.com"


def mock_markets_response(count: int = 2, active: bool = True) -> list[dict[str, Any]]:
    """Create a mock market listing."""
    return [
        {
            "id": f"market-{i}",
            "question": f"Will outcome {i} happen?",
            "active": active,
            "outcomePrices": ["0.45", "0.55"],
        }
        for i in range(count)
    ]


def mock_error_response(message: str = "Something went wrong") -> dict[str, Any]:
    """Create a mock error envelope."""
    return {"error": {"message": message, "code": "upstream_error"}}


def setup_mock_markets(
    httpx_mock: pytest_httpx.HTTPXMock,
    count: int = 2,
    times: int = 1,
) -> list[dict[str, Any]]:
    """Register ``times`` successful market listings and return the payload."""
    payload = mock_markets_response(count)
    for _ in range(times):
        httpx_mock.add_response(method="GET", json=payload)
    return payload


def setup_mock_error(
    httpx_mock: pytest_httpx.HTTPXMock,
    status_code: int,
    times: int = 1,
    headers: dict[str, str] | None = None,
) -> None:
    """Register ``times`` error responses with the given status."""
    for _ in range(times):
        httpx_mock.add_response(
            method="GET",
            status_code=status_code,
            json=mock_error_response(f"status {status_code}"),
            headers=headers,
        )


@pytest.fixture
def api_base() -> str:
    """Base URL of the mocked API."""
    return API_BASE


@pytest.fixture
def mock_markets():
    """Register successful market listings."""
    return setup_mock_markets


@pytest.fixture
def mock_error():
    """Register error responses."""
    return setup_mock_error
