"""Relevance scoring and pagination helpers for search results."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TypeVar

from devdocs_mcp.models import Ecosystem, SearchHit, SearchResultPage

T = TypeVar("T")

EXACT_SCORE = 1.0
PREFIX_SCORE = 0.8
SUBSTRING_SCORE = 0.5


def title_score(title: str, term: str) -> float:
    """Score a title against a search term, case-insensitively.

    Exact match beats prefix match beats substring match; a title that
    does not contain the term scores 0.
    """
    title = title.lower()
    term = term.strip().lower()
    if not term:
        return 0.0
    if title == term:
        return EXACT_SCORE
    if title.startswith(term):
        return PREFIX_SCORE
    if term in title:
        return SUBSTRING_SCORE
    return 0.0


def rank_by_title(
    items: Sequence[T], term: str, key: Callable[[T], str]
) -> list[tuple[T, float]]:
    """Matching items with their scores, best first.

    Ties keep the original index order (``sorted`` is stable).
    """
    scored = [(item, title_score(key(item), term)) for item in items]
    matches = [(item, score) for item, score in scored if score > 0]
    return sorted(matches, key=lambda pair: -pair[1])


def positional_score(index: int, count: int) -> float:
    """Score for upstream-ordered results: first is 1.0, decreasing."""
    if count <= 0:
        return 0.0
    return round(1.0 - index / count, 4)


def paginate(
    hits: Sequence[SearchHit],
    *,
    ecosystem: Ecosystem,
    limit: int,
    page: int = 1,
    total: int | None = None,
    upstream_paged: bool = False,
) -> SearchResultPage:
    """Cut one page of at most ``limit`` hits and build the result page.

    Locally ranked hits are sliced at the page offset. Hits the upstream
    already paged are only capped. ``total`` is the upstream-reported match
    count; without it the total is what we were handed.
    """
    if upstream_paged:
        items = list(hits[:limit])
    else:
        offset = (page - 1) * limit
        items = list(hits[offset : offset + limit])
    total_estimated = max(total if total is not None else len(hits), len(items))
    return SearchResultPage(
        items=items,
        total_estimated=total_estimated,
        truncated=total_estimated > len(items),
        page=page,
        ecosystem=ecosystem,
    )
