"""Shared upstream fetch with status-to-error mapping.

Every adapter goes through ``fetch`` so that timeouts, transport errors and
HTTP statuses surface as the same structured ``AdapterError`` kinds no
matter which registry answered.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from devdocs_mcp.config import settings
from devdocs_mcp.errors import AdapterError, ErrorKind
from devdocs_mcp.models import Ecosystem, Operation

_NOT_FOUND_STATUSES = (404, 410)
_INVALID_STATUSES = (400, 422)


def _status_error(
    response: httpx.Response,
    url: str,
    ecosystem: Ecosystem,
    operation: Operation | str,
) -> AdapterError:
    status = response.status_code

    if status in _NOT_FOUND_STATUSES:
        kind, message = ErrorKind.NOT_FOUND, f"not found upstream: {url}"
    elif status == 429:
        kind = ErrorKind.RATE_LIMITED
        message = f"rate limited: {url}"
        retry_after = response.headers.get("retry-after")
        if retry_after:
            message += f" (retry after {retry_after}s)"
    elif status in _INVALID_STATUSES:
        kind, message = ErrorKind.INVALID_INPUT, f"upstream rejected request: {url}"
    else:
        kind, message = (
            ErrorKind.UPSTREAM_UNAVAILABLE,
            f"upstream returned HTTP {status}: {url}",
        )

    return AdapterError(
        kind,
        message,
        ecosystem=ecosystem,
        operation=operation,
        upstream_status=status,
    )


async def fetch(
    url: str,
    *,
    ecosystem: Ecosystem,
    operation: Operation | str,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """GET ``url`` and return the response, raising ``AdapterError`` on failure.

    Only 2xx responses are returned. The whole exchange (connect, redirects,
    body) is bounded by ``settings.http_timeout``.
    """
    request_headers = {"User-Agent": settings.user_agent}
    if headers:
        request_headers.update(headers)
    logger.debug(f"{ecosystem.value}: GET {url} {params or ''}")

    try:
        async with httpx.AsyncClient(
            timeout=settings.http_timeout, follow_redirects=True
        ) as client:
            response = await asyncio.wait_for(
                client.get(url, params=params, headers=request_headers),
                timeout=settings.http_timeout,
            )
    except (httpx.TimeoutException, asyncio.TimeoutError) as e:
        logger.warning(f"{ecosystem.value}: timeout fetching {url}")
        raise AdapterError(
            ErrorKind.UPSTREAM_UNAVAILABLE,
            f"timed out after {settings.http_timeout}s: {url}",
            ecosystem=ecosystem,
            operation=operation,
        ) from e
    except httpx.HTTPError as e:
        logger.warning(f"{ecosystem.value}: transport error fetching {url}: {e}")
        raise AdapterError(
            ErrorKind.UPSTREAM_UNAVAILABLE,
            f"could not reach upstream: {e}",
            ecosystem=ecosystem,
            operation=operation,
        ) from e

    if not response.is_success:
        error = _status_error(response, url, ecosystem, operation)
        logger.debug(f"{ecosystem.value}: HTTP {response.status_code} for {url}")
        raise error

    return response


async def fetch_json(
    url: str,
    *,
    ecosystem: Ecosystem,
    operation: Operation | str,
    params: dict[str, Any] | None = None,
) -> Any:
    """Fetch and decode a JSON document; undecodable bodies are ParseFailure."""
    response = await fetch(
        url,
        ecosystem=ecosystem,
        operation=operation,
        params=params,
        headers={"Accept": "application/json"},
    )
    try:
        return response.json()
    except ValueError as e:
        raise AdapterError(
            ErrorKind.PARSE_FAILURE,
            f"invalid JSON from {url}: {e}",
            ecosystem=ecosystem,
            operation=operation,
            upstream_status=response.status_code,
        ) from e


async def fetch_text(
    url: str,
    *,
    ecosystem: Ecosystem,
    operation: Operation | str,
    params: dict[str, Any] | None = None,
) -> str:
    """Fetch an HTML page and return its decoded text."""
    response = await fetch(
        url,
        ecosystem=ecosystem,
        operation=operation,
        params=params,
        headers={"Accept": "text/html,application/xhtml+xml"},
    )
    return response.text
