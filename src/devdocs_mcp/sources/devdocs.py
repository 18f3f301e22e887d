"""devdocs.io documentation sets.

The list of documentations (``docs.json``) and each documentation's entry
index (``index.json``) are static files. They are fetched lazily on first
use, published whole, and shared read-only by all concurrent calls for the
life of the process (or ``devdocs_index_ttl`` seconds when set).
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from loguru import logger

from devdocs_mcp.config import settings
from devdocs_mcp.errors import not_found, parse_failure
from devdocs_mcp.models import (
    Docset,
    DocsetList,
    DocumentResult,
    Ecosystem,
    Operation,
    PackageQuery,
    SearchHit,
    SearchQuery,
    SearchResultPage,
)
from devdocs_mcp.normalize import anchor_section, parse_html, render, soup_sections
from devdocs_mcp.ranking import paginate, rank_by_title
from devdocs_mcp.sources.http import fetch_json, fetch_text

ECOSYSTEM = Ecosystem.DEVDOCS

# ---------------------------------------------------------------------------
# Process-wide index cache
# ---------------------------------------------------------------------------

_docsets: list[dict[str, Any]] | None = None
_docsets_loaded_at: float = 0.0
_entries: dict[str, tuple[float, list[dict[str, Any]]]] = {}
_locks: dict[str, asyncio.Lock] = {}


def _get_lock(key: str) -> asyncio.Lock:
    """Lazily create one lock per index so only one fetch is in flight."""
    lock = _locks.get(key)
    if lock is None:
        lock = _locks[key] = asyncio.Lock()
    return lock


def _is_fresh(loaded_at: float) -> bool:
    ttl = settings.devdocs_index_ttl
    return ttl <= 0 or time.monotonic() - loaded_at < ttl


def clear_index_cache() -> None:
    """Forget every cached index (tests, or a forced refresh)."""
    global _docsets, _docsets_loaded_at
    _docsets = None
    _docsets_loaded_at = 0.0
    _entries.clear()
    _locks.clear()


async def load_docsets(operation: Operation = Operation.LIST) -> list[dict[str, Any]]:
    """The parsed ``docs.json`` list, fetched at most once while fresh."""
    global _docsets, _docsets_loaded_at

    if _docsets is not None and _is_fresh(_docsets_loaded_at):
        return _docsets

    async with _get_lock("docs.json"):
        if _docsets is not None and _is_fresh(_docsets_loaded_at):
            return _docsets

        data = await fetch_json(
            f"{settings.devdocs_url}/docs.json",
            ecosystem=ECOSYSTEM,
            operation=operation,
        )
        if not isinstance(data, list):
            raise parse_failure(
                "devdocs.io docs.json is not a list", ECOSYSTEM, operation
            )
        docsets = [d for d in data if isinstance(d, dict) and d.get("slug")]
        _docsets, _docsets_loaded_at = docsets, time.monotonic()
        logger.info(f"Loaded devdocs.io index: {len(docsets)} documentations")
        return docsets


async def load_entries(
    docset: dict[str, Any], operation: Operation
) -> list[dict[str, Any]]:
    """Entry index (name, path, type) of one documentation."""
    slug = docset["slug"]
    cached = _entries.get(slug)
    if cached is not None and _is_fresh(cached[0]):
        return cached[1]

    async with _get_lock(slug):
        cached = _entries.get(slug)
        if cached is not None and _is_fresh(cached[0]):
            return cached[1]

        url = f"{settings.devdocs_documents_url}/{slug}/index.json"
        if docset.get("mtime"):
            url += f"?{docset['mtime']}"
        data = await fetch_json(url, ecosystem=ECOSYSTEM, operation=operation)
        raw = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(raw, list):
            raise parse_failure(
                f"devdocs.io index for '{slug}' has no entries", ECOSYSTEM, operation
            )
        entries = [
            e
            for e in raw
            if isinstance(e, dict) and e.get("name") and e.get("path") is not None
        ]
        _entries[slug] = (time.monotonic(), entries)
        logger.debug(f"Loaded {len(entries)} devdocs.io entries for {slug}")
        return entries


async def resolve_docset(name: str, operation: Operation) -> dict[str, Any]:
    """Exact slug, else the first versioned slug (``python`` -> ``python~3.12``)."""
    wanted = name.strip().lower()
    docsets = await load_docsets(operation)
    for docset in docsets:
        if docset["slug"].lower() == wanted:
            return docset
    for docset in docsets:
        if docset["slug"].lower().startswith(f"{wanted}~"):
            return docset
    raise not_found(f"no devdocs.io documentation '{name}'", ECOSYSTEM, operation)


def _entry_path(entry: str, entries: list[dict[str, Any]]) -> tuple[str, str | None]:
    """(page path, fragment) for an entry path or an entry name."""
    for candidate in entries:
        if candidate["name"] == entry:
            entry = candidate["path"]
            break
    path, _, fragment = entry.partition("#")
    path = path.strip("/").removesuffix(".html")
    return path, fragment or None


def _entry_title(path: str, fragment: str | None, entries: list[dict[str, Any]]):
    full = f"{path}#{fragment}" if fragment else path
    for candidate in entries:
        if candidate["path"] == full:
            return candidate["name"]
    for candidate in entries:
        if candidate["path"] == path:
            return candidate["name"]
    return None


def _version(docset: dict[str, Any]) -> str | None:
    return docset.get("release") or docset.get("version") or None


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class DevDocsAdapter:
    """Documentation sets published on devdocs.io."""

    ecosystem = ECOSYSTEM

    async def list_documentations(self) -> DocsetList:
        docsets = await load_docsets(Operation.LIST)
        items = [
            Docset(
                slug=d["slug"],
                name=d.get("name") or d["slug"],
                version=d.get("version") or "",
                release=d.get("release") or "",
                url=f"{settings.devdocs_url}/{d['slug']}/",
            )
            for d in docsets
        ]
        return DocsetList(items=items, total=len(items))

    async def lookup(self, query: PackageQuery) -> DocumentResult:
        docset = await resolve_docset(query.package_name, Operation.LOOKUP)
        slug = docset["slug"]
        entries = await load_entries(docset, Operation.LOOKUP)

        path, fragment = _entry_path((query.item_path or "").strip(), entries)
        html = await fetch_text(
            f"{settings.devdocs_documents_url}/{slug}/{path or 'index'}.html",
            ecosystem=self.ecosystem,
            operation=Operation.LOOKUP,
        )
        # Links inside documents are relative to the documentation root
        root = f"{settings.devdocs_url}/{slug}/"
        url = f"{root}{path}"
        soup = parse_html(html)

        if fragment:
            nodes = anchor_section(soup, fragment)
            if nodes is None:
                raise not_found(
                    f"no section '#{fragment}' on devdocs.io page {slug}/{path}",
                    self.ecosystem,
                    Operation.LOOKUP,
                )
            url = f"{url}#{fragment}"
            body, sections = render(nodes, root), []
        else:
            body, sections = render(soup.contents, root), soup_sections(soup)

        title = _entry_title(path, fragment, entries) or docset.get("name") or slug
        return DocumentResult(
            title=title,
            url=url,
            body=body,
            sections=sections,
            source=self.ecosystem,
            version=_version(docset),
        )

    async def search(self, query: SearchQuery) -> SearchResultPage:
        docset = await resolve_docset(query.slug or "", Operation.SEARCH)
        slug = docset["slug"]
        entries = await load_entries(docset, Operation.SEARCH)

        ranked = rank_by_title(entries, query.term, key=lambda e: e["name"])
        hits = [
            SearchHit(
                name=entry["name"],
                description=entry.get("type") or "",
                url=f"{settings.devdocs_url}/{slug}/{entry['path']}",
                score=score,
                ecosystem=self.ecosystem,
                version=_version(docset),
            )
            for entry, score in ranked
        ]
        return paginate(
            hits, ecosystem=self.ecosystem, limit=query.limit, page=query.page
        )
