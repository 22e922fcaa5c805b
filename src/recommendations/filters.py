"""Filtering, deduplication and ranking shared by every recommendation source."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from src.recommendations.models import CONFIDENCE_ORDER, CandidateItem

SINGLE_SOURCE_LIMIT = 10
MERGED_SOURCE_LIMIT = 20


@dataclass
class CandidateFilters:
    """Exclusions and year bounds applied to candidate lists."""

    excluded_genres: set[str] = field(default_factory=set)
    excluded_titles: set[str] = field(default_factory=set)
    min_year: int | None = None
    max_year: int | None = None

    @property
    def has_year_bounds(self) -> bool:
        return self.min_year is not None or self.max_year is not None


def dedupe_by_id(items: Iterable[CandidateItem]) -> list[CandidateItem]:
    """Drop repeated ids, keeping the first occurrence and the original order."""
    seen: set[int | str] = set()
    out: list[CandidateItem] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        out.append(item)
    return out


def filter_genres(items: Iterable[CandidateItem], excluded: set[str]) -> list[CandidateItem]:
    if not excluded:
        return list(items)
    lowered = {g.lower() for g in excluded}
    return [i for i in items if all(g.lower() not in lowered for g in i.genres)]


def filter_years(
    items: Iterable[CandidateItem], min_year: int | None, max_year: int | None
) -> list[CandidateItem]:
    """Keep items inside the bounds; items without a year fail any bound."""
    if min_year is None and max_year is None:
        return list(items)
    kept = []
    for item in items:
        year = item.release_year
        if year is None:
            continue
        if min_year is not None and year < min_year:
            continue
        if max_year is not None and year > max_year:
            continue
        kept.append(item)
    return kept


def filter_titles(items: Iterable[CandidateItem], excluded: set[str]) -> list[CandidateItem]:
    """Drop items whose title contains any excluded substring (case-insensitive)."""
    if not excluded:
        return list(items)
    lowered = [t.lower() for t in excluded if t]
    return [i for i in items if not any(t in i.title.lower() for t in lowered)]


def require_genres(items: Iterable[CandidateItem], required: set[str]) -> list[CandidateItem]:
    """Keep only items that carry every genre in *required*."""
    if not required:
        return list(items)
    return [i for i in items if required.issubset(i.genres)]


def apply_filters(
    items: Iterable[CandidateItem], filters: CandidateFilters
) -> list[CandidateItem]:
    """Genre, year and title exclusions in one pass."""
    kept = filter_genres(items, filters.excluded_genres)
    kept = filter_years(kept, filters.min_year, filters.max_year)
    return filter_titles(kept, filters.excluded_titles)


def rank_by_confidence(items: Iterable[CandidateItem]) -> list[CandidateItem]:
    """Stable sort: high, medium, low, then untagged."""
    return sorted(items, key=lambda i: CONFIDENCE_ORDER[i.match_confidence], reverse=True)
