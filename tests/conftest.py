"""Pytest configuration and fixtures."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from devdocs_mcp.sources.devdocs import clear_index_cache


def make_response(
    url: str,
    *,
    status: int = 200,
    json=None,
    text: str | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """Build an httpx.Response bound to a GET request for ``url``."""
    request = httpx.Request("GET", url)
    if json is not None:
        return httpx.Response(status, json=json, headers=headers, request=request)
    return httpx.Response(status, text=text or "", headers=headers, request=request)


def _route_key(url: str, params: dict | None):
    if not params:
        return url
    return (url, tuple(sorted(params.items())))


class FakeUpstream:
    """URL-keyed canned responses; unknown URLs answer 404.

    Each route is the keyword arguments of ``make_response`` plus optional
    ``exc`` (raised instead of answering) and ``delay`` (seconds). A route
    added with ``params`` only answers requests carrying exactly those
    query parameters and takes precedence over the bare URL route.
    """

    def __init__(self):
        self.routes: dict = {}
        self.calls: list[tuple[str, dict | None]] = []
        self.headers: list[dict | None] = []

    def add(self, url: str, params: dict | None = None, **route) -> None:
        self.routes[_route_key(url, params)] = route

    def count(self, url: str) -> int:
        return sum(1 for called, _ in self.calls if called == url)

    def params(self, url: str) -> dict | None:
        for called, params in self.calls:
            if called == url:
                return params
        return None

    def all_params(self, url: str) -> list[dict | None]:
        return [params for called, params in self.calls if called == url]

    async def get(self, url, params=None, headers=None):
        self.calls.append((url, params))
        self.headers.append(headers)
        route = dict(
            self.routes.get(_route_key(url, params))
            or self.routes.get(url)
            or {"status": 404, "text": "Not Found"}
        )
        delay = route.pop("delay", 0)
        if delay:
            await asyncio.sleep(delay)
        exc = route.pop("exc", None)
        if exc is not None:
            raise exc
        return make_response(url, **route)


@pytest.fixture
def upstream():
    """Patch the shared httpx.AsyncClient so every fetch hits FakeUpstream."""
    fake = FakeUpstream()

    mock_client = AsyncMock()
    mock_client.get = AsyncMock(side_effect=fake.get)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)

    with patch(
        "devdocs_mcp.sources.http.httpx.AsyncClient",
        MagicMock(return_value=mock_client),
    ):
        yield fake


@pytest.fixture(autouse=True)
def _reset_devdocs_index():
    """The devdocs.io index cache is process-wide; isolate every test."""
    clear_index_cache()
    yield
    clear_index_cache()
