"""Normalized request and result shapes shared by every adapter.

Results are built fresh per call and serialized with ``model_dump``;
nothing here is cached or mutated after construction.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Ecosystem(str, Enum):
    """Supported documentation sources."""

    RUST = "rust"
    NPM = "npm"
    PYPI = "pypi"
    GO = "go"
    DEVDOCS = "devdocs"

    @classmethod
    def parse(cls, value: str | Ecosystem) -> Ecosystem | None:
        """Resolve a tag or common alias to an ecosystem, or None."""
        if isinstance(value, Ecosystem):
            return value
        tag = str(value).strip().lower()
        tag = _ECOSYSTEM_ALIASES.get(tag, tag)
        try:
            return cls(tag)
        except ValueError:
            return None


_ECOSYSTEM_ALIASES: dict[str, str] = {
    "crates": "rust",
    "crates.io": "rust",
    "cargo": "rust",
    "docs.rs": "rust",
    "javascript": "npm",
    "js": "npm",
    "node": "npm",
    "nodejs": "npm",
    "typescript": "npm",
    "ts": "npm",
    "python": "pypi",
    "py": "pypi",
    "pip": "pypi",
    "golang": "go",
    "pkg.go.dev": "go",
    "devdocs.io": "devdocs",
}


class Operation(str, Enum):
    """Kinds of calls the router can dispatch."""

    LOOKUP = "lookup"
    SEARCH = "search"
    LOOKUP_ITEM = "lookup_item"
    LIST = "list"


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class PackageQuery(BaseModel):
    """Lookup of one package (or DevDocs slug), optionally one item in it."""

    model_config = ConfigDict(frozen=True)

    ecosystem: Ecosystem
    package_name: str = Field(min_length=1)
    version: str | None = None
    item_path: str | None = None


class SearchQuery(BaseModel):
    """Search within one ecosystem (or one DevDocs slug)."""

    model_config = ConfigDict(frozen=True)

    ecosystem: Ecosystem
    term: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1)
    page: int = Field(default=1, ge=1)
    slug: str | None = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class Section(BaseModel):
    name: str
    anchor: str


class DocumentResult(BaseModel):
    """A normalized documentation page."""

    title: str
    url: str
    body: str
    sections: list[Section] = Field(default_factory=list)
    source: Ecosystem
    version: str | None = None


class SearchHit(BaseModel):
    name: str
    description: str = ""
    url: str
    score: float
    ecosystem: Ecosystem
    version: str | None = None


class SearchResultPage(BaseModel):
    """One page of search hits.

    ``truncated`` is true whenever more matches exist than were returned.
    """

    items: list[SearchHit]
    total_estimated: int
    truncated: bool
    page: int = 1
    ecosystem: Ecosystem

    @model_validator(mode="after")
    def _check_hits(self) -> SearchResultPage:
        for hit in self.items:
            if hit.ecosystem != self.ecosystem:
                raise ValueError(
                    f"hit '{hit.name}' tagged {hit.ecosystem.value}, "
                    f"page is {self.ecosystem.value}"
                )
        return self


class Docset(BaseModel):
    """One documentation set published on DevDocs."""

    slug: str
    name: str
    version: str = ""
    release: str = ""
    url: str


class DocsetList(BaseModel):
    items: list[Docset]
    total: int
    source: Ecosystem = Ecosystem.DEVDOCS


ToolResult = DocumentResult | SearchResultPage | DocsetList
