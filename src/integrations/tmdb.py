"""TMDB (The Movie Database) API client.

Search, details, recommendations and similar-movie lookups, normalized
into ``CandidateItem`` / ``MovieDetails``. Every request carries the
configured timeout and raises ``RequestTimeoutError`` or ``CatalogError``
on failure.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.config import settings
from src.integrations.http import default_timeout, request_json
from src.recommendations.models import CandidateItem, MovieDetails

logger = logging.getLogger(__name__)

TMDB_BASE_URL = "https://api.themoviedb.org/3"
POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
MAX_RESULTS = 10

# TMDB's fixed movie genre ids; list endpoints only return genre_ids.
GENRE_NAMES: dict[int, str] = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Science Fiction",
    10770: "TV Movie",
    53: "Thriller",
    10752: "War",
    37: "Western",
}


def _release_year(release_date: str | None) -> int | None:
    if not release_date:
        return None
    try:
        return int(release_date.split("-")[0])
    except ValueError:
        return None


def _poster_url(poster_path: str | None) -> str | None:
    return f"{POSTER_BASE_URL}{poster_path}" if poster_path else None


def _summary(movie: dict[str, Any]) -> CandidateItem:
    genre_names = [
        GENRE_NAMES[gid] for gid in movie.get("genre_ids") or [] if gid in GENRE_NAMES
    ]
    return CandidateItem(
        id=movie["id"],
        title=movie.get("title") or "",
        overview=movie.get("overview") or None,
        release_year=_release_year(movie.get("release_date")),
        poster_url=_poster_url(movie.get("poster_path")),
        genres=genre_names,
    )


async def _get(path: str, **params: Any) -> dict[str, Any]:
    settings.require("tmdb_api_key")
    query = {"api_key": settings.tmdb_api_key, "language": "en-US", **params}
    async with httpx.AsyncClient(timeout=default_timeout()) as client:
        return await request_json(
            client,
            "GET",
            f"{TMDB_BASE_URL}{path}",
            service="TMDB",
            params=query,
            headers={"Accept": "application/json"},
        )


async def search_movies(query: str) -> list[CandidateItem]:
    """Search movies by title. Results keep TMDB's popularity order."""
    data = await _get("/search/movie", query=query, page=1)
    return [_summary(m) for m in data.get("results", []) if m.get("id") is not None]


async def get_movie_details(movie_id: int) -> MovieDetails:
    """Full details (genres, overview, top cast) for one movie."""
    data = await _get(f"/movie/{movie_id}", append_to_response="credits")
    cast = (data.get("credits") or {}).get("cast") or []
    return MovieDetails(
        id=data["id"],
        title=data.get("title") or "",
        overview=data.get("overview") or None,
        release_year=_release_year(data.get("release_date")),
        poster_url=_poster_url(data.get("poster_path")),
        genres=[g["name"] for g in data.get("genres") or [] if g.get("name")],
        vote_average=data.get("vote_average"),
        runtime=data.get("runtime"),
        top_cast=[c["name"] for c in cast[:5] if c.get("name")],
    )


async def get_movie_recommendations(movie_id: int) -> list[CandidateItem]:
    """TMDB's "recommendations" list for a movie (at most 10)."""
    data = await _get(f"/movie/{movie_id}/recommendations", page=1)
    return [_summary(m) for m in data.get("results", [])[:MAX_RESULTS]]


async def get_similar_movies(movie_id: int) -> list[CandidateItem]:
    """TMDB's "similar" list for a movie (at most 10)."""
    data = await _get(f"/movie/{movie_id}/similar", page=1)
    return [_summary(m) for m in data.get("results", [])[:MAX_RESULTS]]


async def get_movie_list(kind: str, page: int = 1) -> list[CandidateItem]:
    """A page of a curated list such as ``popular`` or ``top_rated``."""
    data = await _get(f"/movie/{kind}", page=page)
    return [_summary(m) for m in data.get("results", [])]
