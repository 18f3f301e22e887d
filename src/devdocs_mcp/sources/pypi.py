"""PyPI packages: JSON API for metadata, HTML search page for search.

PyPI has no JSON search endpoint, so search scrapes ``/search/``. That page
changes shape from time to time and is sometimes replaced by a bot
challenge; both surface as ``ParseFailure``. A recognizable results page
with zero hits is an empty page, not an error.
"""

from __future__ import annotations

import re
from typing import Any, NamedTuple
from urllib.parse import quote, urljoin

from bs4 import Tag
from loguru import logger

from devdocs_mcp.config import settings
from devdocs_mcp.errors import AdapterError, ErrorKind, parse_failure
from devdocs_mcp.models import (
    DocumentResult,
    Ecosystem,
    Operation,
    PackageQuery,
    SearchHit,
    SearchQuery,
    SearchResultPage,
)
from devdocs_mcp.normalize import clean_readme, markdown_sections, parse_html
from devdocs_mcp.ranking import paginate, positional_score
from devdocs_mcp.sources.http import fetch_json, fetch_text

# Results per page on the pypi.org search page
PYPI_PAGE_SIZE = 20
_RECENT_RELEASES = 10
_MAX_CLASSIFIERS = 30

# Bot-protection interstitials served instead of the search page
_BLOCKED_MARKERS = (
    "performing security verification",
    "enable javascript and cookies to continue",
    "just a moment...",
    "challenges.cloudflare.com",
    "cf-chl-widget",
    "_cf_chl_opt",
    "turnstile",
    "hcaptcha.com",
    "g-recaptcha",
    "client challenge",
    "ray id:",
)

_TOTAL_RE = re.compile(r"([\d,]+)\+?\s*projects?\b", re.IGNORECASE)
_NO_RESULTS_RE = re.compile(r"there were no results for", re.IGNORECASE)


def is_blocked_page(html: str) -> bool:
    """Whether a fetched page is a bot-protection challenge.

    One marker is enough on a short page; a long page needs two, since a
    lone "Ray ID" footer also shows up on real pages.
    """
    lower = html.lower()
    hits = sum(1 for marker in _BLOCKED_MARKERS if marker in lower)
    return hits >= 2 or (hits == 1 and len(html) < 2000)


# ---------------------------------------------------------------------------
# Search page parsing
# ---------------------------------------------------------------------------


class ScrapedProject(NamedTuple):
    name: str
    version: str | None
    description: str
    url: str


class ScrapedSearch(NamedTuple):
    projects: list[ScrapedProject]
    total: int | None


def _snippet_text(snippet: Tag, cls: str) -> str:
    el = snippet.select_one(f".{cls}")
    return " ".join(el.get_text(" ").split()) if el else ""


def _parse_total(soup: Tag) -> int | None:
    for strong in soup.find_all("strong"):
        parent_text = " ".join((strong.parent or strong).get_text(" ").split())
        m = _TOTAL_RE.search(parent_text)
        if m:
            return int(m.group(1).replace(",", ""))
    return None


def _is_search_page(soup: Tag, html: str) -> bool:
    if soup.find("input", attrs={"name": "q"}) is not None:
        return True
    return bool(_NO_RESULTS_RE.search(html))


def parse_search_results(html: str, base_url: str) -> ScrapedSearch:
    """Extract project entries from a PyPI search results page.

    Raises ``AdapterError(ParseFailure)`` for challenge pages, pages that do
    not look like search results, and result lists where no entry parsed.
    Individual malformed entries are skipped.
    """
    if is_blocked_page(html):
        raise parse_failure(
            "PyPI served a bot-protection page instead of search results",
            Ecosystem.PYPI,
            Operation.SEARCH,
        )

    soup = parse_html(html, strip=False)
    snippets = soup.select("a.package-snippet")
    if not snippets:
        if _is_search_page(soup, html):
            return ScrapedSearch([], _parse_total(soup) or 0)
        raise parse_failure(
            "PyPI search page has an unrecognized layout",
            Ecosystem.PYPI,
            Operation.SEARCH,
        )

    projects: list[ScrapedProject] = []
    for snippet in snippets:
        name = _snippet_text(snippet, "package-snippet__name")
        if not name:
            logger.warning("Skipping PyPI search entry without a project name")
            continue
        href = snippet.get("href")
        url = (
            urljoin(base_url, href)
            if isinstance(href, str) and href
            else f"{base_url}/project/{name}/"
        )
        projects.append(
            ScrapedProject(
                name=name,
                version=_snippet_text(snippet, "package-snippet__version") or None,
                description=_snippet_text(snippet, "package-snippet__description"),
                url=url,
            )
        )

    if not projects:
        raise parse_failure(
            "no PyPI search entry could be parsed",
            Ecosystem.PYPI,
            Operation.SEARCH,
        )
    return ScrapedSearch(projects, _parse_total(soup))


# ---------------------------------------------------------------------------
# Project rendering
# ---------------------------------------------------------------------------


def _release_time(files: list[dict[str, Any]]) -> str:
    times = [
        f.get("upload_time_iso_8601") or f.get("upload_time") or "" for f in files
    ]
    return max(times, default="")


def _short_license(info: dict[str, Any]) -> str | None:
    value = info.get("license_expression") or info.get("license")
    if not isinstance(value, str) or not value.strip():
        return None
    first = value.strip().splitlines()[0]
    return first if len(first) <= 120 else first[:117] + "..."


def render_project(data: dict[str, Any]) -> str:
    info = data.get("info") or {}
    name = info.get("name")
    version = info.get("version")
    lines = [f"# {name} {version}", ""]

    summary = (info.get("summary") or "").strip()
    if summary:
        lines += [summary, ""]

    facts = [
        ("Author", info.get("author") or info.get("author_email")),
        ("Maintainer", info.get("maintainer")),
        ("Homepage", info.get("home_page")),
        ("License", _short_license(info)),
        ("Requires Python", info.get("requires_python")),
    ]
    lines += [f"- {label}: {value}" for label, value in facts if value]

    project_urls = info.get("project_urls") or {}
    if project_urls:
        lines += ["", "## Project links", ""]
        lines += [f"- {label}: {url}" for label, url in project_urls.items()]

    classifiers = info.get("classifiers") or []
    if classifiers:
        lines += ["", "## Classifiers", ""]
        lines += [f"- {c}" for c in classifiers[:_MAX_CLASSIFIERS]]

    requires = info.get("requires_dist") or []
    if requires:
        lines += ["", "## Requirements", ""]
        lines += [f"- {r}" for r in requires]

    releases = data.get("releases") or {}
    if releases:
        recent = sorted(
            ((_release_time(files), ver) for ver, files in releases.items() if files),
            reverse=True,
        )[:_RECENT_RELEASES]
        if recent:
            lines += ["", "## Recent releases", ""]
            lines += [
                f"- {ver} ({when[:10]})" if when else f"- {ver}"
                for when, ver in recent
            ]

    description = info.get("description") or ""
    if description.strip() == "UNKNOWN":
        description = ""
    # PyPI renders descriptions without a declared type as reStructuredText
    content_type = info.get("description_content_type") or "text/x-rst"
    rendered = clean_readme(description, content_type)
    if rendered:
        lines += ["", "## Description", "", rendered]

    docs_url = project_urls.get("Documentation") or info.get("docs_url")
    if docs_url:
        lines += ["", "## Documentation", "", f"Full documentation: {docs_url}"]

    return "\n".join(lines).rstrip()


class PypiAdapter:
    """pypi.org JSON API and HTML search."""

    ecosystem = Ecosystem.PYPI

    async def lookup(self, query: PackageQuery) -> DocumentResult:
        name = quote(query.package_name.strip(), safe="")
        url = f"{settings.pypi_url}/pypi/{name}/json"
        if query.version:
            version = quote(query.version.strip(), safe="")
            url = f"{settings.pypi_url}/pypi/{name}/{version}/json"

        data = await fetch_json(
            url, ecosystem=self.ecosystem, operation=Operation.LOOKUP
        )
        info = data.get("info") if isinstance(data, dict) else None
        if not isinstance(info, dict) or not info.get("name"):
            raise parse_failure(
                f"PyPI response for '{query.package_name}' has no project info",
                self.ecosystem,
                Operation.LOOKUP,
            )

        body = render_project(data)
        version = info.get("version")
        return DocumentResult(
            title=f"{info['name']} {version}",
            url=info.get("package_url")
            or info.get("project_url")
            or f"{settings.pypi_url}/project/{info['name']}/",
            body=body,
            sections=markdown_sections(body),
            source=self.ecosystem,
            version=version,
        )

    async def _search_page(self, term: str, page: int) -> ScrapedSearch:
        html = await fetch_text(
            f"{settings.pypi_url}/search/",
            ecosystem=self.ecosystem,
            operation=Operation.SEARCH,
            params={"q": term, "page": page},
        )
        return parse_search_results(html, settings.pypi_url)

    async def search(self, query: SearchQuery) -> SearchResultPage:
        first_page = query.offset // PYPI_PAGE_SIZE + 1
        start = query.offset % PYPI_PAGE_SIZE
        scraped = await self._search_page(query.term, first_page)
        projects = list(scraped.projects)

        # The requested window runs past this PyPI page
        if start + query.limit > PYPI_PAGE_SIZE and len(projects) >= PYPI_PAGE_SIZE:
            try:
                following = await self._search_page(query.term, first_page + 1)
            except AdapterError as e:
                if e.kind is not ErrorKind.NOT_FOUND:
                    raise
                logger.debug(f"PyPI has no search page {first_page + 1}")
            else:
                projects.extend(following.projects)

        count = len(projects)
        hits = [
            SearchHit(
                name=project.name,
                description=project.description,
                url=project.url,
                score=positional_score(i, count),
                ecosystem=self.ecosystem,
                version=project.version,
            )
            for i, project in enumerate(projects)
            if i >= start
        ]
        return paginate(
            hits,
            ecosystem=self.ecosystem,
            limit=query.limit,
            page=query.page,
            total=scraped.total,
            upstream_paged=True,
        )
