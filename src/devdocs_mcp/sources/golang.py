"""Go packages from pkg.go.dev HTML pages.

pkg.go.dev has no public JSON API; package pages and search results are
parsed out of the rendered HTML. The parsing helpers are pure functions of
the page text.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from bs4 import BeautifulSoup, Tag
from loguru import logger

from devdocs_mcp.config import settings
from devdocs_mcp.errors import invalid_input, not_found, parse_failure
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
from devdocs_mcp.normalize import anchor_section, parse_html, render
from devdocs_mcp.ranking import paginate, positional_score
from devdocs_mcp.sources.http import fetch_text

# Containers pkg.go.dev wraps around one symbol's documentation
_SYMBOL_BLOCKS = (
    "Documentation-typeMethod",
    "Documentation-typeFunc",
    "Documentation-function",
    "Documentation-type",
)
_NESTED_MEMBERS = "div.Documentation-typeMethod, div.Documentation-typeFunc"

_RESULT_COUNT_RE = re.compile(r"of\s+([\d,]+)\+?", re.IGNORECASE)


def _text(el: Tag | None) -> str:
    if el is None:
        return ""
    return " ".join(el.get_text(" ").split()).strip("¶ ").strip()


def package_url(import_path: str, version: str | None = None) -> str:
    path = import_path.strip().strip("/")
    if version:
        return f"{settings.go_pkg_url}/{path}@{version.strip()}"
    return f"{settings.go_pkg_url}/{path}"


def symbol_id(item_path: str) -> str:
    """pkg.go.dev anchor id for ``Type.Method`` style paths."""
    return item_path.strip().replace("::", ".").replace("/", ".").lstrip(".")


# ---------------------------------------------------------------------------
# Package page
# ---------------------------------------------------------------------------


def _page_version(soup: BeautifulSoup) -> str | None:
    el = soup.select_one('[data-test-id="UnitHeader-version"]')
    text = _text(el)
    if not text:
        return None
    return text.split(":", 1)[-1].strip() or None


def _overview(soup: BeautifulSoup, url: str) -> str:
    section = soup.select_one("section.Documentation-overview")
    if section is not None:
        header = section.find(id="pkg-overview")
        if isinstance(header, Tag):
            header.decompose()
        return render(section, url)
    nodes = anchor_section(soup, "pkg-overview")
    if nodes:
        return render(nodes[1:], url)
    readme = soup.select_one(".UnitReadme-content, .Overview-readmeContent")
    return render(readme, url) if readme is not None else ""


def _index(soup: BeautifulSoup) -> list[Section]:
    sections: list[Section] = []
    index = soup.select_one(".Documentation-indexList") or soup.select_one(
        "#pkg-index + ul"
    )
    if index is None:
        return sections
    for link in index.select('a[href^="#"]'):
        name = _text(link)
        anchor = link.get("href")
        if name and isinstance(anchor, str) and len(anchor) > 1:
            sections.append(Section(name=name, anchor=anchor))
    return sections


def parse_package_page(html: str, url: str) -> tuple[str, list[Section], str | None]:
    """(body, exported symbol index, displayed version) of a package page."""
    soup = parse_html(html)
    overview = _overview(soup, url)
    sections = _index(soup)

    parts = []
    if overview:
        parts.append(overview)
    if sections:
        lines = ["## Index", ""]
        lines += [f"- `{s.name}`" for s in sections]
        parts.append("\n".join(lines))
    return "\n\n".join(parts), sections, _page_version(soup)


def _symbol_nodes(target: Tag) -> list[Tag]:
    block = target.find_parent("div", class_=list(_SYMBOL_BLOCKS))
    if block is not None:
        members = block.select(_NESTED_MEMBERS)
        if members and "Documentation-type" in (block.get("class") or []):
            names = []
            for member in members:
                header = member.find(id=True)
                if header is not None:
                    names.append(_text(header) or header.get("id"))
                member.decompose()
            soup = BeautifulSoup("", "html.parser")
            listing = soup.new_tag("ul")
            for name in names:
                item = soup.new_tag("li")
                item.string = name
                listing.append(item)
            return [block, listing]
        return [block]

    declaration = target.find_parent("div", class_="Documentation-declaration")
    if declaration is not None:
        nodes = [declaration]
        for sibling in declaration.find_next_siblings():
            if sibling.name in ("h3", "h4") or "Documentation-declaration" in (
                sibling.get("class") or []
            ):
                break
            nodes.append(sibling)
        return nodes

    if target.parent is not None:
        return anchor_section(target.parent, target.get("id", "")) or [target]
    return [target]


def parse_symbol(html: str, url: str, symbol: str) -> tuple[str, str] | None:
    """(title, body) of one symbol's doc block, or None if absent."""
    soup = parse_html(html)
    target = soup.find(id=symbol)
    if not isinstance(target, Tag):
        return None
    nodes = _symbol_nodes(target)
    if target.name in ("h3", "h4"):
        title = _text(target)
    else:
        title = symbol
    return title or symbol, render(nodes, url)


# ---------------------------------------------------------------------------
# Search page
# ---------------------------------------------------------------------------


class ScrapedPackage(NamedTuple):
    path: str
    synopsis: str
    version: str | None


def _import_path(snippet: Tag) -> str:
    path_el = snippet.select_one(".SearchSnippet-header-path")
    path = _text(path_el).strip("()")
    if path:
        return path
    link = snippet.select_one(".SearchSnippet-headerContainer a[href], a[href]")
    href = link.get("href") if link is not None else None
    if isinstance(href, str):
        return href.split("?", 1)[0].split("@", 1)[0].strip("/")
    return ""


def parse_search_page(html: str) -> tuple[list[ScrapedPackage], int | None]:
    """Packages listed on a pkg.go.dev search page, plus the result count.

    Raises ParseFailure when the page is not a recognizable search page.
    """
    soup = parse_html(html, strip=False)
    snippets = soup.select(".SearchSnippet")

    count_el = soup.select_one(
        ".SearchResults-resultCount, .SearchResults-summary,"
        " [data-test-id='results-total']"
    )
    total = None
    m = _RESULT_COUNT_RE.search(_text(count_el)) if count_el is not None else None
    if m:
        total = int(m.group(1).replace(",", ""))

    if not snippets:
        if soup.find("input", attrs={"name": "q"}) is not None:
            return [], total or 0
        raise parse_failure(
            "pkg.go.dev search page has an unrecognized layout",
            Ecosystem.GO,
            Operation.SEARCH,
        )

    packages: list[ScrapedPackage] = []
    for snippet in snippets:
        path = _import_path(snippet)
        if not path:
            logger.warning("Skipping pkg.go.dev search entry without an import path")
            continue
        version = _text(snippet.select_one('[data-test-id="snippet-version"]'))
        packages.append(
            ScrapedPackage(
                path=path,
                synopsis=_text(snippet.select_one(".SearchSnippet-synopsis")),
                version=version or None,
            )
        )

    if not packages:
        raise parse_failure(
            "no pkg.go.dev search entry could be parsed",
            Ecosystem.GO,
            Operation.SEARCH,
        )
    return packages, total


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class GoAdapter:
    """pkg.go.dev package pages, symbol blocks and search."""

    ecosystem = Ecosystem.GO

    async def lookup(self, query: PackageQuery) -> DocumentResult:
        path = query.package_name.strip().strip("/")
        url = package_url(path, query.version)
        html = await fetch_text(
            url, ecosystem=self.ecosystem, operation=Operation.LOOKUP
        )
        body, sections, shown_version = parse_package_page(html, url)
        if not body:
            raise parse_failure(
                f"no documentation found on the pkg.go.dev page for '{path}'",
                self.ecosystem,
                Operation.LOOKUP,
            )
        return DocumentResult(
            title=path,
            url=url,
            body=f"# {path}\n\n{body}",
            sections=sections,
            source=self.ecosystem,
            version=query.version or shown_version,
        )

    async def lookup_item(self, query: PackageQuery) -> DocumentResult:
        path = query.package_name.strip().strip("/")
        symbol = symbol_id(query.item_path or "")
        if not symbol:
            raise invalid_input(
                "symbol name must not be empty",
                self.ecosystem,
                Operation.LOOKUP_ITEM,
            )

        url = package_url(path, query.version)
        html = await fetch_text(
            url, ecosystem=self.ecosystem, operation=Operation.LOOKUP_ITEM
        )
        found = parse_symbol(html, url, symbol)
        if found is None:
            raise not_found(
                f"symbol '{symbol}' is not documented in package '{path}'",
                self.ecosystem,
                Operation.LOOKUP_ITEM,
            )
        title, body = found
        return DocumentResult(
            title=f"{path}.{symbol}",
            url=f"{url}#{symbol}",
            body=f"## {title}\n\n{body}" if body else f"## {title}",
            source=self.ecosystem,
            version=query.version,
        )

    async def search(self, query: SearchQuery) -> SearchResultPage:
        html = await fetch_text(
            f"{settings.go_pkg_url}/search",
            ecosystem=self.ecosystem,
            operation=Operation.SEARCH,
            params={"q": query.term, "limit": query.limit, "page": query.page},
        )
        packages, total = parse_search_page(html)
        hits = [
            SearchHit(
                name=pkg.path,
                description=pkg.synopsis,
                url=package_url(pkg.path),
                score=positional_score(i, len(packages)),
                ecosystem=self.ecosystem,
                version=pkg.version,
            )
            for i, pkg in enumerate(packages)
        ]
        return paginate(
            hits,
            ecosystem=self.ecosystem,
            limit=query.limit,
            page=query.page,
            total=total,
            upstream_paged=True,
        )
