"""npm packages from the public registry JSON API."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from loguru import logger

from devdocs_mcp.config import settings
from devdocs_mcp.errors import not_found, parse_failure
from devdocs_mcp.models import (
    DocumentResult,
    Ecosystem,
    Operation,
    PackageQuery,
    SearchHit,
    SearchQuery,
    SearchResultPage,
)
from devdocs_mcp.normalize import clean_readme, markdown_sections
from devdocs_mcp.ranking import paginate, positional_score
from devdocs_mcp.sources.http import fetch_json

_RECENT_VERSIONS = 10
# Placeholder the registry stores when a package was published without one
_NO_README = "ERROR: No README data found!"


def _repository_url(repository: Any) -> str | None:
    if isinstance(repository, dict):
        repository = repository.get("url")
    if not isinstance(repository, str) or not repository:
        return None
    url = repository.removeprefix("git+")
    if url.endswith(".git"):
        url = url[:-4]
    return url.replace("git://", "https://").replace("ssh://git@", "https://")


def _license(manifest: dict[str, Any]) -> str | None:
    value = manifest.get("license")
    if isinstance(value, dict):
        value = value.get("type")
    return value if isinstance(value, str) else None


def resolve_version(packument: dict[str, Any], wanted: str | None) -> str | None:
    """A concrete version from an exact version or a dist-tag, else None."""
    tags = packument.get("dist-tags") or {}
    versions = packument.get("versions") or {}
    if not wanted:
        return tags.get("latest") or (list(versions)[-1] if versions else None)
    wanted = wanted.strip().lstrip("v")
    if wanted in versions:
        return wanted
    return tags.get(wanted)


def _dependency_lines(deps: dict[str, Any]) -> list[str]:
    return [f"- **{name}**: {spec}" for name, spec in sorted(deps.items())]


def render_package(packument: dict[str, Any], version: str) -> str:
    manifest = (packument.get("versions") or {}).get(version) or {}
    name = packument.get("name") or manifest.get("name")
    lines = [f"# {name}", "", f"**Version:** {version}", ""]

    description = manifest.get("description") or packument.get("description")
    if description:
        lines += [description.strip(), ""]

    keywords = manifest.get("keywords") or packument.get("keywords") or []
    if isinstance(keywords, list) and keywords:
        lines += [f"**Keywords:** {', '.join(map(str, keywords))}", ""]

    facts = [
        ("Homepage", manifest.get("homepage") or packument.get("homepage")),
        (
            "Repository",
            _repository_url(manifest.get("repository") or packument.get("repository")),
        ),
        ("License", _license(manifest) or _license(packument)),
    ]
    for label, value in facts:
        if value:
            lines += [f"**{label}:** {value}", ""]

    tags = packument.get("dist-tags") or {}
    if len(tags) > 1:
        lines += ["## Dist tags", ""]
        lines += [f"- `{tag}`: {ver}" for tag, ver in tags.items()]
        lines.append("")

    for heading, key in (
        ("Dependencies", "dependencies"),
        ("Dev Dependencies", "devDependencies"),
        ("Peer Dependencies", "peerDependencies"),
    ):
        deps = manifest.get(key)
        if isinstance(deps, dict) and deps:
            lines += [f"## {heading}", "", *_dependency_lines(deps), ""]

    times = packument.get("time") or {}
    published = sorted(
        ((t, v) for v, t in times.items() if v not in ("created", "modified")),
        reverse=True,
    )[:_RECENT_VERSIONS]
    if published:
        lines += ["## Recent versions", ""]
        lines += [f"- {v} ({t[:10]})" for t, v in published]
        lines.append("")

    readme = manifest.get("readme") or packument.get("readme") or ""
    if readme and readme.strip() != _NO_README:
        text = clean_readme(readme, "text/markdown")
        if text:
            lines += ["## Documentation", "", text]

    return "\n".join(lines).rstrip()


class NpmAdapter:
    """registry.npmjs.org package documents and search."""

    ecosystem = Ecosystem.NPM

    async def lookup(self, query: PackageQuery) -> DocumentResult:
        name = query.package_name.strip()
        packument = await fetch_json(
            f"{settings.npm_registry_url}/{quote(name, safe='@')}",
            ecosystem=self.ecosystem,
            operation=Operation.LOOKUP,
        )
        if not isinstance(packument, dict) or not isinstance(
            packument.get("versions"), dict
        ):
            raise parse_failure(
                f"npm registry document for '{name}' has no versions",
                self.ecosystem,
                Operation.LOOKUP,
            )

        version = resolve_version(packument, query.version)
        if version is None or version not in packument["versions"]:
            raise not_found(
                f"npm package '{name}' has no version or tag '{query.version}'",
                self.ecosystem,
                Operation.LOOKUP,
            )

        canonical = packument.get("name") or name
        body = render_package(packument, version)
        return DocumentResult(
            title=f"{canonical} {version}",
            url=f"{settings.npm_site_url}/package/{canonical}/v/{version}",
            body=body,
            sections=markdown_sections(body),
            source=self.ecosystem,
            version=version,
        )

    async def search(self, query: SearchQuery) -> SearchResultPage:
        data = await fetch_json(
            f"{settings.npm_registry_url}/-/v1/search",
            ecosystem=self.ecosystem,
            operation=Operation.SEARCH,
            params={"text": query.term, "size": query.limit, "from": query.offset},
        )
        objects = data.get("objects") if isinstance(data, dict) else None
        if not isinstance(objects, list):
            raise parse_failure(
                "npm search response has no result objects",
                self.ecosystem,
                Operation.SEARCH,
            )

        hits: list[SearchHit] = []
        for i, obj in enumerate(objects):
            package = obj.get("package") if isinstance(obj, dict) else None
            if not isinstance(package, dict) or not package.get("name"):
                logger.warning(f"Skipping malformed npm search entry: {obj!r}")
                continue
            name = package["name"]
            final = (obj.get("score") or {}).get("final")
            links = package.get("links") or {}
            hits.append(
                SearchHit(
                    name=name,
                    description=(package.get("description") or "").strip(),
                    url=links.get("npm") or f"{settings.npm_site_url}/package/{name}",
                    score=float(final)
                    if isinstance(final, (int, float))
                    else positional_score(i, len(objects)),
                    ecosystem=self.ecosystem,
                    version=package.get("version"),
                )
            )

        total = data.get("total")
        return paginate(
            hits,
            ecosystem=self.ecosystem,
            limit=query.limit,
            page=query.page,
            total=total if isinstance(total, int) else None,
            upstream_paged=True,
        )
