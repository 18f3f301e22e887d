"""Provider router: validates a call and hands it to one adapter.

``DocRouter.dispatch(operation, ecosystem, params)`` is the single entry
point used by the tool surface. Invalid calls (unknown ecosystem,
unsupported operation for that ecosystem, missing or empty parameters,
out-of-range limit/page) fail with ``InvalidInput`` before any adapter is
touched. Adapter failures propagate unchanged in kind; anything else that
escapes an adapter is reported as ``ParseFailure``. Nothing is retried here.
"""

from __future__ import annotations

from typing import Any, Protocol

from loguru import logger
from pydantic import ValidationError

from devdocs_mcp.config import settings
from devdocs_mcp.errors import AdapterError, ErrorKind, invalid_input
from devdocs_mcp.models import (
    DocumentResult,
    Ecosystem,
    Operation,
    PackageQuery,
    SearchQuery,
    SearchResultPage,
    ToolResult,
)
from devdocs_mcp.ranking import paginate

# ---------------------------------------------------------------------------
# Adapter protocol
# ---------------------------------------------------------------------------


class Adapter(Protocol):
    """Minimal surface every ecosystem adapter implements."""

    ecosystem: Ecosystem

    async def lookup(self, query: PackageQuery) -> DocumentResult: ...

    async def search(self, query: SearchQuery) -> SearchResultPage: ...


# Required (non-empty) parameters per supported (ecosystem, operation)
SUPPORTED: dict[tuple[Ecosystem, Operation], tuple[str, ...]] = {
    (Ecosystem.RUST, Operation.LOOKUP): ("name",),
    (Ecosystem.RUST, Operation.SEARCH): ("query",),
    (Ecosystem.RUST, Operation.LOOKUP_ITEM): ("name", "item_path"),
    (Ecosystem.NPM, Operation.LOOKUP): ("name",),
    (Ecosystem.NPM, Operation.SEARCH): ("query",),
    (Ecosystem.PYPI, Operation.LOOKUP): ("name",),
    (Ecosystem.PYPI, Operation.SEARCH): ("query",),
    (Ecosystem.GO, Operation.LOOKUP): ("name",),
    (Ecosystem.GO, Operation.SEARCH): ("query",),
    (Ecosystem.GO, Operation.LOOKUP_ITEM): ("name", "item_path"),
    (Ecosystem.DEVDOCS, Operation.LIST): (),
    (Ecosystem.DEVDOCS, Operation.LOOKUP): ("name",),
    (Ecosystem.DEVDOCS, Operation.SEARCH): ("slug", "query"),
}


def default_adapters() -> dict[Ecosystem, Adapter]:
    from devdocs_mcp.sources.crates import CratesAdapter
    from devdocs_mcp.sources.devdocs import DevDocsAdapter
    from devdocs_mcp.sources.golang import GoAdapter
    from devdocs_mcp.sources.npm import NpmAdapter
    from devdocs_mcp.sources.pypi import PypiAdapter

    adapters: list[Adapter] = [
        CratesAdapter(),
        NpmAdapter(),
        PypiAdapter(),
        GoAdapter(),
        DevDocsAdapter(),
    ]
    return {adapter.ecosystem: adapter for adapter in adapters}


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _text_param(params: dict[str, Any], key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


def _int_param(
    params: dict[str, Any],
    key: str,
    ecosystem: Ecosystem,
    operation: Operation,
) -> int | None:
    value = params.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise invalid_input(f"'{key}' must be an integer", ecosystem, operation)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise invalid_input(
            f"'{key}' must be an integer, got {value!r}", ecosystem, operation
        ) from None
    if number < 1:
        raise invalid_input(f"'{key}' must be at least 1", ecosystem, operation)
    return number


def _cap(page: SearchResultPage, limit: int) -> SearchResultPage:
    """Hold an adapter's page to the requested limit."""
    if len(page.items) <= limit:
        return page
    return paginate(
        page.items,
        ecosystem=page.ecosystem,
        limit=limit,
        page=page.page,
        total=max(page.total_estimated, len(page.items)),
        upstream_paged=True,
    )


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class DocRouter:
    """Selects exactly one adapter per call by ecosystem."""

    def __init__(self, adapters: dict[Ecosystem, Adapter] | None = None):
        self.adapters = adapters if adapters is not None else default_adapters()

    async def dispatch(
        self,
        operation: Operation | str,
        ecosystem: Ecosystem | str,
        params: dict[str, Any] | None = None,
    ) -> ToolResult:
        """Validate the call, run it on the matching adapter, return the result.

        Raises ``AdapterError`` for every failure.
        """
        params = params or {}
        op, eco = self._validate_target(operation, ecosystem)

        for key in SUPPORTED[(eco, op)]:
            if _text_param(params, key) is None:
                raise invalid_input(
                    f"'{key}' is required for {op.value} on {eco.value}", eco, op
                )

        call = self._prepare(op, eco, params)
        adapter = self.adapters.get(eco)
        if adapter is None:
            raise invalid_input(f"no adapter configured for {eco.value}", eco, op)

        try:
            return await call(adapter)
        except AdapterError:
            raise
        except Exception as e:
            logger.exception(f"{eco.value} adapter failed during {op.value}")
            raise AdapterError(
                ErrorKind.PARSE_FAILURE,
                f"unexpected {type(e).__name__} while handling the "
                f"{eco.value} response",
                ecosystem=eco,
                operation=op,
            ) from e

    @staticmethod
    def _validate_target(
        operation: Operation | str, ecosystem: Ecosystem | str
    ) -> tuple[Operation, Ecosystem]:
        eco = Ecosystem.parse(ecosystem) if ecosystem else None
        try:
            op = Operation(operation)
        except ValueError:
            raise invalid_input(
                f"unknown operation '{operation}'", eco, str(operation)
            ) from None
        if eco is None:
            known = ", ".join(e.value for e in Ecosystem)
            raise invalid_input(
                f"unknown ecosystem '{ecosystem}' (expected one of: {known})",
                None,
                op,
            )
        if (eco, op) not in SUPPORTED:
            raise invalid_input(
                f"operation '{op.value}' is not supported for ecosystem '{eco.value}'",
                eco,
                op,
            )
        return op, eco

    @staticmethod
    def _prepare(op: Operation, eco: Ecosystem, params: dict[str, Any]):
        """Build the typed query and return a coroutine factory for the call."""
        try:
            if op is Operation.LIST:
                return lambda adapter: adapter.list_documentations()

            if op is Operation.SEARCH:
                requested = _int_param(params, "limit", eco, op)
                limit = settings.resolve_limit(requested)
                query = SearchQuery(
                    ecosystem=eco,
                    term=_text_param(params, "query"),
                    limit=limit,
                    page=_int_param(params, "page", eco, op) or 1,
                    slug=_text_param(params, "slug"),
                )

                async def run_search(adapter: Adapter) -> SearchResultPage:
                    return _cap(await adapter.search(query), limit)

                return run_search

            query = PackageQuery(
                ecosystem=eco,
                package_name=_text_param(params, "name"),
                version=_text_param(params, "version"),
                item_path=_text_param(params, "item_path"),
            )
        except ValidationError as e:
            raise invalid_input(
                f"invalid parameters: {e.errors()[0].get('msg', e)}", eco, op
            ) from None

        if op is Operation.LOOKUP_ITEM:
            return lambda adapter: adapter.lookup_item(query)
        return lambda adapter: adapter.lookup(query)


# Lazily shared instance for the tool surface
_router: DocRouter | None = None


def get_router() -> DocRouter:
    global _router
    if _router is None:
        _router = DocRouter()
    return _router
