"""Rust crates: metadata from crates.io, rendered docs from docs.rs."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from bs4 import Tag
from loguru import logger

from devdocs_mcp.config import settings
from devdocs_mcp.errors import (
    AdapterError,
    ErrorKind,
    invalid_input,
    not_found,
    parse_failure,
)
from devdocs_mcp.models import (
    DocumentResult,
    Ecosystem,
    Operation,
    PackageQuery,
    SearchHit,
    SearchQuery,
    SearchResultPage,
    Section,
)
from devdocs_mcp.normalize import parse_html, render, soup_sections
from devdocs_mcp.ranking import paginate, positional_score
from devdocs_mcp.sources.http import fetch_json, fetch_text

# rustdoc page prefixes, tried in this order for a bare item path
ITEM_TYPES = (
    "struct",
    "enum",
    "trait",
    "fn",
    "macro",
    "type",
    "constant",
    "static",
    "union",
    "attr",
    "derive",
)

# Parent page kinds that can own members, and member anchor prefixes
PARENT_TYPES = ("struct", "enum", "trait", "union")
MEMBER_ANCHORS = (
    "method",
    "tymethod",
    "structfield",
    "variant",
    "associatedconstant",
    "associatedtype",
)

_MAX_FEATURES = 40


def rustdoc_ident(crate_name: str) -> str:
    """Crate name as it appears in rustdoc paths (``-`` becomes ``_``)."""
    return crate_name.replace("-", "_")


def strip_crate_prefix(item_path: str, crate_name: str) -> str:
    path = item_path.strip()
    for prefix in (f"{crate_name}::", f"{rustdoc_ident(crate_name)}::", "crate::"):
        if path.startswith(prefix):
            return path[len(prefix) :]
    return path


def _pick_version(crate: dict[str, Any], versions: list[dict], wanted: str | None):
    known = [v.get("num") for v in versions if isinstance(v, dict)]
    if wanted:
        wanted = wanted.strip().lstrip("=v")
        if known and wanted not in known:
            return None
        return wanted
    return (
        crate.get("max_stable_version")
        or crate.get("max_version")
        or crate.get("newest_version")
        or (known[0] if known else None)
    )


# ---------------------------------------------------------------------------
# rustdoc parsing
# ---------------------------------------------------------------------------


def _text(el: Tag | None) -> str:
    if el is None:
        return ""
    return " ".join(el.get_text(" ").split())


def _item_entries(table: Tag) -> list[tuple[str, str]]:
    """(name, short description) pairs from a rustdoc ``item-table``."""
    entries: list[tuple[str, str]] = []

    if table.name == "dl":
        for dt in table.find_all("dt", recursive=False):
            dd = dt.find_next_sibling()
            desc = _text(dd) if isinstance(dd, Tag) and dd.name == "dd" else ""
            link = dt.find("a")
            name = _text(link) or _text(dt)
            if name:
                entries.append((name, desc))
        return entries

    rows = table.find_all("li", recursive=False) or table.select(".item-row")
    for row in rows:
        name_el = row.select_one(".item-name, .item-left") or row
        link = name_el.find("a")
        name = _text(link) or _text(name_el)
        desc = _text(row.select_one(".desc, .docblock-short, .item-right"))
        if name:
            entries.append((name, desc))
    return entries


def parse_crate_page(html: str, base_url: str) -> tuple[str, list[Section]]:
    """Render a crate root page: overview docblock plus item tables."""
    soup = parse_html(html)
    main = soup.find(id="main-content") or soup.body or soup

    parts: list[str] = []
    overview = main.select_one("details.top-doc .docblock") or main.select_one(
        ".docblock"
    )
    if overview is not None:
        text = render(overview, base_url)
        if text:
            parts.append(text)

    for heading in main.find_all("h2", id=True):
        table = heading.find_next_sibling()
        if not isinstance(table, Tag) or "item-table" not in (table.get("class") or []):
            continue
        entries = _item_entries(table)
        if not entries:
            continue
        title = _text(heading).rstrip("§ ").strip()
        lines = [f"### {title}", ""]
        for name, desc in entries:
            lines.append(f"- `{name}`: {desc}" if desc else f"- `{name}`")
        parts.append("\n".join(lines))

    return "\n\n".join(parts), soup_sections(main, ("h2",))


def _member_nodes(target: Tag) -> list[Tag]:
    """The doc block belonging to a member anchor on a type page."""
    parent = target.parent
    if (
        isinstance(parent, Tag)
        and parent.name == "summary"
        and isinstance(parent.parent, Tag)
        and parent.parent.name == "details"
    ):
        return [parent.parent]
    nodes = [target]
    sibling = target.find_next_sibling()
    if isinstance(sibling, Tag) and "docblock" in (sibling.get("class") or []):
        nodes.append(sibling)
    return nodes


def parse_item_page(
    html: str, url: str, anchor: str | None = None
) -> tuple[str, str, list[Section]] | None:
    """(title, body, sections) for an item page, or a member on it.

    Returns None when ``anchor`` is given but absent from the page.
    """
    soup = parse_html(html)
    main = soup.find(id="main-content") or soup.body or soup

    if anchor is None:
        title = _text(main.find("h1"))
        return title, render(main, url), soup_sections(main, ("h2", "h3"))

    target = main.find(id=anchor)
    if not isinstance(target, Tag):
        return None
    nodes = _member_nodes(target)
    header = target.select_one(".code-header") or target.find("code")
    title = _text(header) or anchor
    return title, render(nodes, url), []


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class CratesAdapter:
    """crates.io registry metadata and docs.rs rustdoc pages."""

    ecosystem = Ecosystem.RUST

    async def lookup(self, query: PackageQuery) -> DocumentResult:
        name = query.package_name.strip()
        data = await fetch_json(
            f"{settings.crates_api_url}/crates/{quote(name, safe='')}",
            ecosystem=self.ecosystem,
            operation=Operation.LOOKUP,
        )
        crate = data.get("crate") if isinstance(data, dict) else None
        if not isinstance(crate, dict):
            raise parse_failure(
                f"crates.io response for '{name}' has no crate record",
                self.ecosystem,
                Operation.LOOKUP,
            )
        versions = [v for v in data.get("versions") or [] if isinstance(v, dict)]
        canonical = crate.get("name") or name

        version = _pick_version(crate, versions, query.version)
        if version is None:
            raise not_found(
                f"crate '{canonical}' has no version '{query.version}'",
                self.ecosystem,
                Operation.LOOKUP,
            )
        info = next((v for v in versions if v.get("num") == version), {})

        ident = rustdoc_ident(canonical)
        docs_url = f"{settings.docs_rs_url}/{canonical}/{version}/{ident}/"
        docs_body, sections = await self._crate_docs(docs_url, canonical)

        body = self._metadata(crate, info, version)
        if docs_body:
            body += "\n\n## Documentation\n\n" + docs_body
        else:
            body += f"\n\nDocumentation is not available on docs.rs: {docs_url}"

        return DocumentResult(
            title=f"{canonical} {version}",
            url=docs_url,
            body=body,
            sections=sections,
            source=self.ecosystem,
            version=version,
        )

    async def _crate_docs(self, url: str, name: str) -> tuple[str, list[Section]]:
        try:
            html = await fetch_text(
                url, ecosystem=self.ecosystem, operation=Operation.LOOKUP
            )
        except AdapterError as e:
            if e.kind is not ErrorKind.NOT_FOUND:
                raise
            logger.warning(f"docs.rs has no documentation for {name}: {url}")
            return "", []
        return parse_crate_page(html, url)

    @staticmethod
    def _metadata(crate: dict[str, Any], info: dict[str, Any], version: str) -> str:
        lines = [f"# {crate.get('name')} {version}", ""]
        description = (crate.get("description") or "").strip()
        if description:
            lines += [description, ""]

        facts = [
            ("Repository", crate.get("repository")),
            ("Homepage", crate.get("homepage")),
            ("Documentation", crate.get("documentation")),
            ("License", info.get("license")),
            ("Rust version", info.get("rust_version")),
            ("Downloads", crate.get("downloads")),
        ]
        lines += [f"- {label}: {value}" for label, value in facts if value]

        keywords = crate.get("keywords") or []
        if keywords:
            lines.append(f"- Keywords: {', '.join(keywords)}")

        features = info.get("features") or {}
        if features:
            lines += ["", "## Features", ""]
            for feature, enables in list(features.items())[:_MAX_FEATURES]:
                enabled = ", ".join(enables) if enables else "(no dependencies)"
                lines.append(f"- `{feature}`: {enabled}")
            if len(features) > _MAX_FEATURES:
                lines.append(f"- ... {len(features) - _MAX_FEATURES} more")

        return "\n".join(lines).rstrip()

    async def search(self, query: SearchQuery) -> SearchResultPage:
        data = await fetch_json(
            f"{settings.crates_api_url}/crates",
            ecosystem=self.ecosystem,
            operation=Operation.SEARCH,
            params={"q": query.term, "per_page": query.limit, "page": query.page},
        )
        crates = data.get("crates") if isinstance(data, dict) else None
        if not isinstance(crates, list):
            raise parse_failure(
                "crates.io search response has no crate list",
                self.ecosystem,
                Operation.SEARCH,
            )

        hits: list[SearchHit] = []
        for i, entry in enumerate(crates):
            name = entry.get("name") if isinstance(entry, dict) else None
            if not name:
                logger.warning(f"Skipping malformed crates.io search entry: {entry!r}")
                continue
            hits.append(
                SearchHit(
                    name=name,
                    description=(entry.get("description") or "").strip(),
                    url=f"{settings.crates_site_url}/crates/{name}",
                    score=positional_score(i, len(crates)),
                    ecosystem=self.ecosystem,
                    version=entry.get("max_stable_version")
                    or entry.get("max_version")
                    or entry.get("newest_version"),
                )
            )

        total = (data.get("meta") or {}).get("total")
        return paginate(
            hits,
            ecosystem=self.ecosystem,
            limit=query.limit,
            page=query.page,
            total=total if isinstance(total, int) else None,
            upstream_paged=True,
        )

    async def lookup_item(self, query: PackageQuery) -> DocumentResult:
        crate = query.package_name.strip()
        path = strip_crate_prefix(query.item_path or "", crate)
        parts = [p for p in path.split("::") if p]
        if not parts:
            raise invalid_input(
                "item path must look like module::path::ItemName",
                self.ecosystem,
                Operation.LOOKUP_ITEM,
            )

        version = (query.version or "").strip().lstrip("=v") or "latest"
        base = f"{settings.docs_rs_url}/{crate}/{version}/{rustdoc_ident(crate)}"

        pages: dict[str, str | None] = {}
        for url, anchor in self._candidates(base, parts):
            if url not in pages:
                try:
                    pages[url] = await fetch_text(
                        url, ecosystem=self.ecosystem, operation=Operation.LOOKUP_ITEM
                    )
                except AdapterError as e:
                    if e.kind is not ErrorKind.NOT_FOUND:
                        raise
                    pages[url] = None
            html = pages[url]
            if html is None:
                continue
            found = parse_item_page(html, url, anchor)
            if found is None:
                continue
            title, body, sections = found
            return DocumentResult(
                title=title or "::".join(parts),
                url=f"{url}#{anchor}" if anchor else url,
                body=body,
                sections=sections,
                source=self.ecosystem,
                version=None if version == "latest" else version,
            )

        raise not_found(
            f"'{'::'.join(parts)}' does not resolve to an item in crate '{crate}'",
            self.ecosystem,
            Operation.LOOKUP_ITEM,
        )

    @staticmethod
    def _candidates(base: str, parts: list[str]):
        """(page url, member anchor) pairs in resolution order.

        Member candidates for one parent page are adjacent; the caller
        fetches each page once.
        """
        *module, name = parts
        prefix = "/".join([base, *module])
        for kind in ITEM_TYPES:
            yield f"{prefix}/{kind}.{name}.html", None
        yield f"{base}/{'/'.join(parts)}/index.html", None

        if module:
            *parent_module, parent = module
            parent_prefix = "/".join([base, *parent_module])
            for kind in PARENT_TYPES:
                page = f"{parent_prefix}/{kind}.{parent}.html"
                for member in MEMBER_ANCHORS:
                    yield page, f"{member}.{name}"
