"""DevDocs MCP Server - tool surface over the documentation router."""

import asyncio
import json
import sys
from typing import Any

from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from devdocs_mcp.config import settings
from devdocs_mcp.errors import AdapterError, ErrorKind
from devdocs_mcp.models import Ecosystem, Operation
from devdocs_mcp.router import get_router

# Configure logging (stdout carries the stdio protocol)
logger.remove()
logger.add(sys.stderr, level=settings.log_level)

mcp = FastMCP(
    name="devdocs",
    instructions=(
        "Package documentation lookup and search across ecosystems: "
        "Rust crates (crates.io + docs.rs), npm, PyPI, Go (pkg.go.dev) and "
        "devdocs.io. Use the lookup_* tools for one package or item, the "
        "search_* tools to find packages, and the *_devdocs_* tools for "
        "language and framework references. Failures come back as "
        '{"error": {...}} with a kind and a retryable flag.'
    ),
)

# Grace period (seconds) given to a cancelled call to unwind
_CANCEL_GRACE_PERIOD = 2.0

_READ_ONLY = ToolAnnotations(
    readOnlyHint=True,
    openWorldHint=True,
    idempotentHint=True,
)


def _dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


async def _with_timeout(coro, action: str):
    """Run ``coro`` bounded by ``settings.tool_timeout``.

    ``asyncio.wait`` returns at the deadline even if the task is slow to
    honour cancellation; the task then gets a short grace period and is
    abandoned. Raises ``TimeoutError`` on expiry.
    """
    timeout = settings.tool_timeout
    if timeout <= 0:
        return await coro

    task = asyncio.create_task(coro)
    try:
        done, _pending = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        # The caller went away; abandon the in-flight upstream requests
        task.cancel()
        raise

    if done:
        # Propagate any exception raised by the task
        return task.result()

    task.cancel()
    logger.warning(f"Tool '{action}' timed out after {timeout}s, cancelling...")
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=_CANCEL_GRACE_PERIOD)
    except (asyncio.CancelledError, asyncio.TimeoutError):
        pass
    except Exception as e:
        logger.debug(f"Tool '{action}' raised while cancelling: {e}")

    raise TimeoutError(f"'{action}' timed out after {timeout}s")


async def _call(
    action: str,
    operation: Operation,
    ecosystem: Ecosystem | str,
    **params: Any,
) -> str:
    """Dispatch one tool call and serialize the result or the error."""
    params = {k: v for k, v in params.items() if v is not None}
    try:
        result = await _with_timeout(
            get_router().dispatch(operation, ecosystem, params), action
        )
    except AdapterError as e:
        logger.info(f"{action}: {e.kind.value}: {e.message}")
        return _dumps({"error": e.to_dict()})
    except TimeoutError as e:
        error = AdapterError(
            ErrorKind.UPSTREAM_UNAVAILABLE,
            f"{e}. Increase TOOL_TIMEOUT or retry later.",
            ecosystem=Ecosystem.parse(ecosystem),
            operation=operation,
        )
        return _dumps({"error": error.to_dict()})
    return _dumps(result.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Rust
# ---------------------------------------------------------------------------


@mcp.tool(annotations=_READ_ONLY)
async def lookup_crate(crate_name: str, version: str | None = None) -> str:
    """Look up a Rust crate: description, features and top-level modules.

    Uses crates.io metadata and the docs.rs page for the given version
    (latest stable when omitted).
    """
    return await _call(
        "lookup_crate",
        Operation.LOOKUP,
        Ecosystem.RUST,
        name=crate_name,
        version=version,
    )


@mcp.tool(annotations=_READ_ONLY)
async def search_crates(query: str, limit: int | None = None) -> str:
    """Search crates.io. Results keep crates.io's own ranking."""
    return await _call(
        "search_crates", Operation.SEARCH, Ecosystem.RUST, query=query, limit=limit
    )


@mcp.tool(annotations=_READ_ONLY)
async def lookup_item(
    crate_name: str, item_path: str, version: str | None = None
) -> str:
    """Documentation for one item in a crate, e.g. ``de::Deserialize``.

    Paths may start with the crate name. Struct, enum, trait, fn, macro and
    the other rustdoc item kinds are tried in turn, then modules, then
    methods/fields/variants on a parent type (``Type::method``).
    """
    return await _call(
        "lookup_item",
        Operation.LOOKUP_ITEM,
        Ecosystem.RUST,
        name=crate_name,
        item_path=item_path,
        version=version,
    )


# ---------------------------------------------------------------------------
# devdocs.io
# ---------------------------------------------------------------------------


@mcp.tool(annotations=_READ_ONLY)
async def list_devdocs_documentations() -> str:
    """List every documentation set available on devdocs.io (slug, name, release)."""
    return await _call(
        "list_devdocs_documentations", Operation.LIST, Ecosystem.DEVDOCS
    )


@mcp.tool(annotations=_READ_ONLY)
async def get_devdocs_documentation(slug: str, entry: str | None = None) -> str:
    """Fetch a devdocs.io page.

    ``slug`` is a documentation slug (``python~3.12``) or a bare name
    (``python``) resolved to its first listed version. ``entry`` is an
    entry path or name from the documentation's index; ``#anchor`` narrows
    the page to one section. Omit it for the documentation's index page.
    """
    return await _call(
        "get_devdocs_documentation",
        Operation.LOOKUP,
        Ecosystem.DEVDOCS,
        name=slug,
        item_path=entry,
    )


@mcp.tool(annotations=_READ_ONLY)
async def search_devdocs_documentation(
    slug: str, query: str, limit: int | None = None
) -> str:
    """Search entry titles of one devdocs.io documentation.

    Exact title matches rank first, then prefix matches, then substrings.
    """
    return await _call(
        "search_devdocs_documentation",
        Operation.SEARCH,
        Ecosystem.DEVDOCS,
        slug=slug,
        query=query,
        limit=limit,
    )


# ---------------------------------------------------------------------------
# npm / PyPI
# ---------------------------------------------------------------------------


@mcp.tool(annotations=_READ_ONLY)
async def lookup_npm_package(package_name: str, version: str | None = None) -> str:
    """Look up an npm package: metadata, dependencies and README.

    ``version`` may be an exact version or a dist-tag such as ``next``.
    """
    return await _call(
        "lookup_npm_package",
        Operation.LOOKUP,
        Ecosystem.NPM,
        name=package_name,
        version=version,
    )


@mcp.tool(annotations=_READ_ONLY)
async def search_npm_packages(query: str, limit: int | None = None) -> str:
    """Search the npm registry."""
    return await _call(
        "search_npm_packages",
        Operation.SEARCH,
        Ecosystem.NPM,
        query=query,
        limit=limit,
    )


@mcp.tool(annotations=_READ_ONLY)
async def lookup_pypi_package(package_name: str, version: str | None = None) -> str:
    """Look up a PyPI project: metadata, requirements and long description."""
    return await _call(
        "lookup_pypi_package",
        Operation.LOOKUP,
        Ecosystem.PYPI,
        name=package_name,
        version=version,
    )


@mcp.tool(annotations=_READ_ONLY)
async def search_pypi_packages(query: str, limit: int | None = None) -> str:
    """Search PyPI projects (parsed from the pypi.org search page)."""
    return await _call(
        "search_pypi_packages",
        Operation.SEARCH,
        Ecosystem.PYPI,
        query=query,
        limit=limit,
    )


# ---------------------------------------------------------------------------
# Go
# ---------------------------------------------------------------------------


@mcp.tool(annotations=_READ_ONLY)
async def lookup_go_package(package_name: str, version: str | None = None) -> str:
    """Look up a Go package on pkg.go.dev: overview and exported symbol index.

    ``package_name`` is an import path such as ``net/http`` or
    ``github.com/gorilla/mux``.
    """
    return await _call(
        "lookup_go_package",
        Operation.LOOKUP,
        Ecosystem.GO,
        name=package_name,
        version=version,
    )


@mcp.tool(annotations=_READ_ONLY)
async def search_go_packages(query: str, limit: int | None = None) -> str:
    """Search Go packages on pkg.go.dev."""
    return await _call(
        "search_go_packages",
        Operation.SEARCH,
        Ecosystem.GO,
        query=query,
        limit=limit,
    )


@mcp.tool(annotations=_READ_ONLY)
async def lookup_go_symbol(
    package_name: str, symbol_name: str, version: str | None = None
) -> str:
    """Documentation for one exported symbol (``Client``, ``Client.Do``)."""
    return await _call(
        "lookup_go_symbol",
        Operation.LOOKUP_ITEM,
        Ecosystem.GO,
        name=package_name,
        item_path=symbol_name,
        version=version,
    )


@mcp.tool(annotations=_READ_ONLY)
async def lookup_go_item(
    package_name: str, item_path: str, version: str | None = None
) -> str:
    """Same as lookup_go_symbol; accepts ``Type.Method`` or ``Type::Method``."""
    return await _call(
        "lookup_go_item",
        Operation.LOOKUP_ITEM,
        Ecosystem.GO,
        name=package_name,
        item_path=item_path,
        version=version,
    )


# ---------------------------------------------------------------------------
# Generic
# ---------------------------------------------------------------------------


@mcp.tool(annotations=_READ_ONLY)
async def lookup_docs(
    ecosystem: str,
    name: str,
    version: str | None = None,
    item: str | None = None,
) -> str:
    """Look up documentation in any ecosystem.

    ecosystem: rust | npm | pypi | go | devdocs (aliases such as crates,
    js, python, golang are accepted). ``item`` selects an item or symbol
    (rust, go) or a page entry (devdocs).
    """
    operation = Operation.LOOKUP
    if item and Ecosystem.parse(ecosystem) is not Ecosystem.DEVDOCS:
        operation = Operation.LOOKUP_ITEM
    return await _call(
        "lookup_docs",
        operation,
        ecosystem,
        name=name,
        version=version,
        item_path=item,
    )


@mcp.tool(annotations=_READ_ONLY)
async def search_docs(
    ecosystem: str,
    query: str,
    limit: int | None = None,
    page: int | None = None,
    slug: str | None = None,
) -> str:
    """Search packages (or, for devdocs, entries of the documentation ``slug``).

    ``limit`` defaults to DEFAULT_LIMIT and is capped at PAGE_SIZE; ``page``
    is 1-based.
    """
    return await _call(
        "search_docs",
        Operation.SEARCH,
        ecosystem,
        query=query,
        limit=limit,
        page=page,
        slug=slug,
    )


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
