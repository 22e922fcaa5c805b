"""Semantic movie recommendations using OpenAI embeddings + Supabase (pgvector).

The vector index lives in a Supabase table with an RPC for cosine search::

    movie_embeddings(id uuid, tmdb_id int, title text, overview text,
                     genres text[], year int, poster_url text, embedding vector)

    match_movies(query_embedding vector, match_count int,
                 similarity_threshold float)
        -> rows of the table above plus ``similarity``
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from src.config import settings
from src.integrations.http import RequestTimeoutError, default_timeout, request_json
from src.recommendations.filters import CandidateFilters, filter_genres, filter_years
from src.recommendations.models import CandidateItem, Confidence

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

HIGH_SIMILARITY = 0.9
MEDIUM_SIMILARITY = 0.8


class SemanticSearchError(Exception):
    """Raised when embedding or vector search fails."""


def describe_movie(
    title: str, release_year: int | None, genres: list[str], overview: str | None
) -> str:
    """Compact text used as embedding input for both seeds and indexed rows."""
    year = release_year if release_year is not None else "unknown year"
    parts = [
        f"{title} ({year})",
        f"Genres: {', '.join(genres)}" if genres else "",
        overview or "",
    ]
    return "\n".join(p for p in parts if p)


def confidence_band(similarity: float | None) -> Confidence | None:
    if similarity is None:
        return None
    if similarity >= HIGH_SIMILARITY:
        return "high"
    if similarity >= MEDIUM_SIMILARITY:
        return "medium"
    return "low"


def _candidate(row: dict[str, Any]) -> CandidateItem:
    similarity = row.get("similarity", row.get("score"))
    return CandidateItem(
        id=row["tmdb_id"],
        title=row.get("title") or "",
        overview=row.get("overview"),
        release_year=row.get("year"),
        poster_url=row.get("poster_url"),
        genres=row.get("genres") if isinstance(row.get("genres"), list) else [],
        match_confidence=confidence_band(
            similarity if isinstance(similarity, int | float) else None
        ),
    )


class SemanticRecommender:
    """Nearest-neighbour search over the movie embedding index.

    Singleton accessed via ``SemanticRecommender.get()``.
    """

    _instance: SemanticRecommender | None = None

    def __init__(self) -> None:
        self._openai: AsyncOpenAI | None = None

    @classmethod
    def get(cls) -> SemanticRecommender:
        """Return the shared SemanticRecommender instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    def _get_openai(self) -> AsyncOpenAI:
        """Lazily initialize the OpenAI client."""
        if self._openai is None:
            from openai import AsyncOpenAI

            settings.require("openai_api_key")
            self._openai = AsyncOpenAI(
                api_key=settings.openai_api_key, timeout=settings.llm_timeout_seconds
            )
        return self._openai

    def _rest_headers(self) -> dict[str, str]:
        settings.require("supabase_url", "supabase_service_role_key")
        key = settings.supabase_service_role_key
        return {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }

    def _rest_url(self, path: str) -> str:
        return f"{settings.supabase_url.rstrip('/')}/rest/v1/{path}"

    # -- Embedding -------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, preserving order."""
        import openai

        try:
            response = await self._get_openai().embeddings.create(
                model=settings.embedding_model, input=texts
            )
        except openai.APITimeoutError as exc:
            raise RequestTimeoutError from exc
        vectors = [item.embedding for item in response.data]
        if len(vectors) != len(texts):
            msg = "Embedding response did not cover every input"
            raise SemanticSearchError(msg)
        return vectors

    # -- Search ----------------------------------------------------------------

    async def match(self, embedding: list[float]) -> list[dict[str, Any]]:
        """Call the ``match_movies`` RPC and return its raw rows."""
        async with httpx.AsyncClient(timeout=default_timeout()) as client:
            rows = await request_json(
                client,
                "POST",
                self._rest_url("rpc/match_movies"),
                service="Supabase",
                headers=self._rest_headers(),
                json={
                    "query_embedding": embedding,
                    "match_count": settings.semantic_match_count,
                    "similarity_threshold": settings.semantic_similarity_threshold,
                },
            )
        return rows if isinstance(rows, list) else []

    async def recommend(
        self, seed: CandidateItem, filters: CandidateFilters | None = None
    ) -> list[CandidateItem]:
        """Movies semantically close to *seed*, genre/year filters applied.

        The seed itself is never returned.
        """
        text = describe_movie(seed.title, seed.release_year, seed.genres, seed.overview)
        vectors = await self.embed([text])
        if not vectors or not vectors[0]:
            msg = "Failed to generate embedding for seed movie"
            raise SemanticSearchError(msg)

        rows = await self.match(vectors[0])
        candidates = [_candidate(r) for r in rows if r.get("tmdb_id") is not None]
        candidates = [c for c in candidates if c.id != seed.id]
        logger.info("Semantic search for '%s' returned %d rows", seed.title, len(candidates))

        if filters is None:
            return candidates
        kept = filter_genres(candidates, filters.excluded_genres)
        return filter_years(kept, filters.min_year, filters.max_year)

    # -- Index maintenance -----------------------------------------------------

    async def indexed_movie_ids(self) -> set[int]:
        """TMDB ids already present in the index."""
        async with httpx.AsyncClient(timeout=default_timeout()) as client:
            rows = await request_json(
                client,
                "GET",
                self._rest_url("movie_embeddings"),
                service="Supabase",
                headers=self._rest_headers(),
                params={"select": "tmdb_id"},
            )
        return {r["tmdb_id"] for r in rows or [] if r.get("tmdb_id") is not None}

    async def index_movies(self, movies: list[CandidateItem]) -> int:
        """Embed and insert *movies* into the index. Returns the row count."""
        if not movies:
            return 0
        texts = [describe_movie(m.title, m.release_year, m.genres, m.overview) for m in movies]
        vectors = await self.embed(texts)
        rows = [
            {
                "tmdb_id": m.id,
                "title": m.title,
                "overview": m.overview,
                "genres": m.genres,
                "year": m.release_year,
                "poster_url": m.poster_url,
                "embedding": vector,
            }
            for m, vector in zip(movies, vectors, strict=True)
        ]
        headers = {**self._rest_headers(), "Prefer": "return=minimal"}
        async with httpx.AsyncClient(timeout=default_timeout()) as client:
            resp = await client.post(
                self._rest_url("movie_embeddings"), headers=headers, json=rows
            )
        if resp.status_code >= 400:
            msg = f"Supabase insert failed ({resp.status_code}): {resp.text[:200]}"
            raise SemanticSearchError(msg)
        return len(rows)
