"""Heuristic extraction of recommendation constraints from free text.

Every function here is pure and best-effort: a message that does not match
simply yields the "no constraint" value. Nothing in this module raises on
unexpected input or talks to an external service.

Negation handling is deliberately coarse. Once any negation cue appears in
a message, genre aliases are matched across the *whole* message, so
"not a horror fan, but I love westerns" excludes both Horror and Western.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

GENRE_ALIASES: dict[str, tuple[str, ...]] = {
    "Action": ("action",),
    "Adventure": ("adventure",),
    "Animation": ("animation", "animated"),
    "Comedy": ("comedy", "comedies", "funny"),
    "Crime": ("crime", "criminal"),
    "Documentary": ("documentary", "documentaries", "doc"),
    "Drama": ("drama", "dramatic"),
    "Family": ("family", "kids", "kid", "children"),
    "Fantasy": ("fantasy", "fantastical"),
    "History": ("history", "historical"),
    "Horror": ("horror", "scary", "frightening"),
    "Music": ("music", "musical"),
    "Mystery": ("mystery",),
    "Romance": ("romance", "romantic", "love story"),
    "Science Fiction": ("science fiction", "sci fi", "sci-fi", "scifi"),
    "TV Movie": ("tv movie", "television movie", "tv-movie"),
    "Thriller": ("thriller", "thrillers"),
    "War": ("war", "warfare"),
    "Western": ("western", "west"),
}

AVOID_CUES = ("avoid", "no", "not", "without", "exclude", "skip")
RECENT_CUES = ("recent", "newer", "latest", "modern", "not so old")
RECOMMENDATION_CUES = ("recommend", "recommendation", "movies like", "similar to", "suggest")
RECENT_WINDOW_YEARS = 15


def _word(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE)


_AVOID_PATTERNS = [_word(cue) for cue in AVOID_CUES]
_RECENT_PATTERNS = [_word(cue) for cue in RECENT_CUES]
_GENRE_PATTERNS = {
    genre: [_word(alias) for alias in aliases] for genre, aliases in GENRE_ALIASES.items()
}

_AFTER_RE = re.compile(r"\b(?:after|since)\s+((?:19|20)\d{2})\b", re.IGNORECASE)
_AT_LEAST_RE = re.compile(r"\bat least (?:from|since)?\s*((?:19|20)\d{2})\b", re.IGNORECASE)
_BEFORE_RE = re.compile(r"\b(?:before|older than)\s+((?:19|20)\d{2})\b", re.IGNORECASE)
_LAST_YEARS_RE = re.compile(r"\blast\s+(\d{1,2})\s+years?\b", re.IGNORECASE)
_NOT_AS_OLD_AS_RE = re.compile(r"\bnot as old as\s+([^\n.,;!?]+)", re.IGNORECASE)

# Double or curly quotes anywhere; single quotes only at word boundaries so
# apostrophes ("don't", "Ocean's Eleven") are not read as quotes.
_QUOTED_RE = re.compile(
    r"[\"“”]([^\"“”]+)[\"“”]"
    r"|(?<!\w)'([^']+)'(?!\w)"
)
_LIKE_RE = re.compile(r"\b(?:like|similar to)\s+([^\n.,;!?]+)", re.IGNORECASE)
_CLAUSE_BREAK_RE = re.compile(r"\b(?:but|and|without|avoid)\b", re.IGNORECASE)
_FRANCHISE_RE = re.compile(
    r"\bavoid(?: any| the)?(?: movies)?(?: from)?(?: the)?\s+(.+?)\s+(?:saga|series|franchise)\b",
    re.IGNORECASE,
)

# Words that follow "like" in phrasing such as "I'd like something funny".
_SEED_FILLER = frozenset(
    {
        "a", "an", "some", "something", "movies", "films", "to", "it",
        "that", "this", "watching", "more",
    }
)  # fmt: skip


class _Turn(Protocol):
    role: str
    content: str


@dataclass
class YearConstraints:
    min_year: int | None = None
    max_year: int | None = None
    # Title whose release year sets min_year once resolved against the catalog.
    not_as_old_as: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.min_year is None and self.max_year is None and not self.not_as_old_as


@dataclass
class RecommendationConstraints:
    """Everything the fast path needs from one user message."""

    seed_title: str | None = None
    excluded_genres: set[str] = field(default_factory=set)
    excluded_titles: set[str] = field(default_factory=set)
    years: YearConstraints = field(default_factory=YearConstraints)


def has_negation_cue(text: str) -> bool:
    return any(p.search(text) for p in _AVOID_PATTERNS)


def _quoted(text: str) -> Iterable[re.Match[str]]:
    return _QUOTED_RE.finditer(text)


def _quote_body(match: re.Match[str]) -> str:
    return (match.group(1) or match.group(2) or "").strip()


def _first_clause(raw: str) -> str:
    return _CLAUSE_BREAK_RE.split(raw, maxsplit=1)[0].strip()


def extract_excluded_genres(text: str) -> set[str]:
    """Canonical genre names the user wants to avoid."""
    if not text or not has_negation_cue(text):
        return set()
    return {
        genre
        for genre, patterns in _GENRE_PATTERNS.items()
        if any(p.search(text) for p in patterns)
    }


def extract_year_constraints(text: str, *, current_year: int | None = None) -> YearConstraints:
    """Release-year bounds. Patterns are tried in order; the first match wins."""
    if not text:
        return YearConstraints()
    if current_year is None:
        current_year = datetime.now(UTC).year

    if m := _AFTER_RE.search(text):
        return YearConstraints(min_year=int(m.group(1)))
    if m := _AT_LEAST_RE.search(text):
        return YearConstraints(min_year=int(m.group(1)))
    if m := _BEFORE_RE.search(text):
        return YearConstraints(max_year=int(m.group(1)))
    if m := _LAST_YEARS_RE.search(text):
        return YearConstraints(min_year=current_year - int(m.group(1)))
    if any(p.search(text) for p in _RECENT_PATTERNS):
        return YearConstraints(min_year=current_year - RECENT_WINDOW_YEARS)
    if m := _NOT_AS_OLD_AS_RE.search(text):
        title = _first_clause(m.group(1))
        if title:
            return YearConstraints(not_as_old_as=title)
    return YearConstraints()


def extract_seed_title(text: str) -> str | None:
    """The movie a request is anchored to, if one is named."""
    if not text:
        return None
    for match in _quoted(text):
        body = _quote_body(match)
        if body:
            return body

    pos = 0
    while match := _LIKE_RE.search(text, pos):
        title = _first_clause(match.group(1))
        first_word = title.split(maxsplit=1)[0].lower() if title else ""
        if title and first_word not in _SEED_FILLER:
            return title
        # "I'd like something like X": look again right after this cue.
        pos = match.start(1)
    return None


def extract_excluded_titles(text: str) -> set[str]:
    """Titles (or franchise names) the user wants left out."""
    if not text or not has_negation_cue(text):
        return set()

    excluded: set[str] = set()
    for match in _quoted(text):
        before = text[: match.start()]
        body = _quote_body(match)
        if body and has_negation_cue(before):
            excluded.add(body)

    if m := _FRANCHISE_RE.search(text):
        name = m.group(1).strip()
        if name:
            excluded.add(name)
    return excluded


def is_recommendation_intent(text: str) -> bool:
    lowered = (text or "").lower()
    return any(cue in lowered for cue in RECOMMENDATION_CUES)


def extract_constraints(text: str, history: Iterable[_Turn] = ()) -> RecommendationConstraints:
    """Bundle all extractors for *text*.

    *history* holds earlier turns (oldest first, current message excluded).
    When *text* names no seed, the most recent earlier user turn is tried.
    """
    seed = extract_seed_title(text)
    if seed is None:
        earlier = [t for t in history if t.role == "user" and t.content]
        if earlier:
            seed = extract_seed_title(earlier[-1].content)

    return RecommendationConstraints(
        seed_title=seed,
        excluded_genres=extract_excluded_genres(text),
        excluded_titles=extract_excluded_titles(text),
        years=extract_year_constraints(text),
    )
