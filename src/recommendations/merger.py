"""Deterministic recommendation path used when a message asks for recommendations.

Given the constraints extracted from a message, the merger resolves the seed
movie, asks the semantic index for neighbours, falls back to TMDB's own
recommendation lists, and finally to an aggregate over the user's recently
watched movies. Each source that fails contributes an empty list; the merge
only comes back empty-handed when every source does.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from src.config import ConfigurationError, settings
from src.history.store import HistoryStore
from src.integrations import tmdb
from src.recommendations.constraints import RecommendationConstraints
from src.recommendations.filters import (
    MERGED_SOURCE_LIMIT,
    SINGLE_SOURCE_LIMIT,
    CandidateFilters,
    apply_filters,
    dedupe_by_id,
    filter_titles,
    rank_by_confidence,
    require_genres,
)
from src.recommendations.models import CandidateItem, MovieDetails
from src.recommendations.semantic import SemanticRecommender

if TYPE_CHECKING:
    from src.chat.events import EventLog

logger = logging.getLogger(__name__)

HISTORY_SEED_COUNT = 3


@dataclass
class RecommendationResult:
    message: str
    reasoning: str
    movies: list[CandidateItem] = field(default_factory=list)


def _tag_by_agreement(lists: Iterable[list[CandidateItem]]) -> list[CandidateItem]:
    """Flatten, dedupe, and tag items seen in more than one list as ``medium``."""
    lists = list(lists)
    counts = Counter(item_id for items in lists for item_id in {i.id for i in items})
    tagged = []
    for item in dedupe_by_id(i for items in lists for i in items):
        confidence = "medium" if counts[item.id] > 1 else "low"
        tagged.append(item.model_copy(update={"match_confidence": confidence}))
    return tagged


def _absorbed(events: EventLog | None, source: str, error: BaseException) -> None:
    if events is not None:
        events.source_error(source, error)


def _constraint_notes(filters: CandidateFilters) -> str:
    notes = ""
    if filters.excluded_genres:
        notes += f" Excluding: {', '.join(sorted(filters.excluded_genres))}."
    if filters.min_year is not None:
        notes += f" From {filters.min_year} onward."
    if filters.max_year is not None:
        notes += f" Up to {filters.max_year}."
    return notes


class RecommendationMerger:
    """Combines semantic, catalog and history-based candidates into one list."""

    def __init__(
        self,
        semantic: SemanticRecommender | None = None,
        store: HistoryStore | None = None,
        sticky_genres: set[str] | None = None,
    ) -> None:
        self._semantic = semantic or SemanticRecommender.get()
        self._store = store or HistoryStore.get()
        self._sticky = sticky_genres if sticky_genres is not None else settings.get_sticky_genres()

    async def recommend(
        self,
        user_id: str,
        constraints: RecommendationConstraints,
        events: EventLog | None = None,
    ) -> RecommendationResult | None:
        """Run the full merge. Returns None when no source produced anything.

        Sources that fail are skipped; each failure is logged and, when
        ``events`` is given, recorded as a ``source_error:<source>`` event.
        """
        filters = await self._filters(constraints, events)

        seed: MovieDetails | None = None
        movies: list[CandidateItem] = []
        if constraints.seed_title:
            seed = await self._resolve_seed(constraints.seed_title, events)
            if seed is not None:
                movies = await self._from_seed(seed, filters, events)

        from_history = False
        if not movies:
            movies = await self.recommendations_from_history(user_id, filters, events)
            from_history = True

        if not movies:
            logger.info("No recommendations for user %s (seed=%r)", user_id, constraints.seed_title)
            return None

        notes = _constraint_notes(filters)
        if from_history:
            return RecommendationResult(
                message=f"Here are recommendations based on your history.{notes}",
                reasoning="These come from movies you watched recently, filtered by your constraints.",
                movies=movies[:SINGLE_SOURCE_LIMIT],
            )
        return RecommendationResult(
            message=f"Here are recommendations similar to {seed.title}.{notes}",
            reasoning=f"These share themes and tone with {seed.title} and match your constraints.",
            movies=movies[:SINGLE_SOURCE_LIMIT],
        )

    async def _filters(
        self, constraints: RecommendationConstraints, events: EventLog | None
    ) -> CandidateFilters:
        years = constraints.years
        min_year = years.min_year
        if years.not_as_old_as and min_year is None:
            min_year = await self._year_after(years.not_as_old_as, events)
        return CandidateFilters(
            excluded_genres=set(constraints.excluded_genres),
            excluded_titles=set(constraints.excluded_titles),
            min_year=min_year,
            max_year=years.max_year,
        )

    async def _year_after(self, title: str, events: EventLog | None) -> int | None:
        try:
            results = await tmdb.search_movies(title)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception("Could not resolve release year of %r", title)
            _absorbed(events, "year_lookup", exc)
            return None
        if results and results[0].release_year is not None:
            return results[0].release_year + 1
        return None

    async def _resolve_seed(self, title: str, events: EventLog | None) -> MovieDetails | None:
        try:
            results = await tmdb.search_movies(title)
            if not results:
                logger.info("Seed title %r not found in catalog", title)
                return None
            return await tmdb.get_movie_details(int(results[0].id))
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception("Failed to resolve seed title %r", title)
            _absorbed(events, "seed_lookup", exc)
            return None

    async def _from_seed(
        self, seed: MovieDetails, filters: CandidateFilters, events: EventLog | None
    ) -> list[CandidateItem]:
        required = self._sticky & set(seed.genres)

        try:
            semantic = await self._semantic.recommend(seed, filters)
        except Exception as exc:
            logger.exception("Semantic recommendations failed for %s", seed.title)
            _absorbed(events, "semantic", exc)
            semantic = []
        semantic = filter_titles(require_genres(semantic, required), filters.excluded_titles)
        if semantic:
            return rank_by_confidence(dedupe_by_id(semantic))[:SINGLE_SOURCE_LIMIT]

        logger.warning("Semantic path empty for %s, using catalog lists", seed.title)
        catalog = await self.catalog_candidates(int(seed.id), filters, events)
        return require_genres(catalog, required)[:SINGLE_SOURCE_LIMIT]

    async def catalog_candidates(
        self,
        movie_id: int,
        filters: CandidateFilters,
        events: EventLog | None = None,
    ) -> list[CandidateItem]:
        """TMDB ``recommendations`` + ``similar`` for one movie, merged and filtered."""
        results = await asyncio.gather(
            tmdb.get_movie_recommendations(movie_id),
            tmdb.get_similar_movies(movie_id),
            return_exceptions=True,
        )
        lists = []
        for name, result in zip(("recommendations", "similar"), results, strict=True):
            if isinstance(result, BaseException):
                logger.error("TMDB %s failed for %s: %s", name, movie_id, result)
                _absorbed(events, name, result)
                lists.append([])
            else:
                lists.append(result)

        merged = [i for i in _tag_by_agreement(lists) if i.id != movie_id]
        merged = apply_filters(merged[:MERGED_SOURCE_LIMIT], filters)
        return rank_by_confidence(merged)

    async def recommendations_from_history(
        self,
        user_id: str,
        filters: CandidateFilters | None = None,
        events: EventLog | None = None,
    ) -> list[CandidateItem]:
        """Aggregate catalog recommendations over the most recently watched movies."""
        filters = filters or CandidateFilters()
        try:
            watched = (await self._store.get_history(user_id))[:HISTORY_SEED_COUNT]
        except Exception as exc:
            logger.exception("Could not load watch history for %s", user_id)
            _absorbed(events, "history", exc)
            return []
        if not watched:
            return []

        results = await asyncio.gather(
            *(tmdb.get_movie_recommendations(w.movie_id) for w in watched),
            return_exceptions=True,
        )
        lists = []
        for item, result in zip(watched, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("TMDB recommendations failed for %s: %s", item.movie_id, result)
                _absorbed(events, "history_recommendations", result)
                continue
            lists.append(result)

        watched_ids = {w.movie_id for w in watched}
        merged = [i for i in _tag_by_agreement(lists) if i.id not in watched_ids]
        merged = apply_filters(merged, filters)
        return rank_by_confidence(merged)[:SINGLE_SOURCE_LIMIT]
