"""Movie catalog tools backed by TMDB and the semantic index."""

import logging

from pydantic import Field

from src.integrations import tmdb
from src.recommendations.filters import SINGLE_SOURCE_LIMIT, CandidateFilters, apply_filters
from src.recommendations.semantic import SemanticRecommender
from src.tools.base import BaseTool, ToolParams, ToolResult
from src.tools.registry import registry

logger = logging.getLogger(__name__)


def _filters(exclude_genres, min_year, max_year) -> CandidateFilters:
    return CandidateFilters(
        excluded_genres=set(exclude_genres or []), min_year=min_year, max_year=max_year
    )


# -- search_movies -----------------------------------------------------------


class SearchMoviesParams(ToolParams):
    query: str = Field(description="Movie title or keywords")


@registry.tool(
    name="search_movies",
    description=(
        "Search TMDB for movies by title. Returns ids, titles, years, genres "
        "and poster URLs. Use this to find a movie's id before other calls."
    ),
    category="catalog",
    params_model=SearchMoviesParams,
)
async def search_movies(query: str) -> ToolResult:
    movies = await tmdb.search_movies(query)
    return ToolResult(data={"movies": [m.to_json_dict() for m in movies[:SINGLE_SOURCE_LIMIT]]})


# -- get_movie_details -------------------------------------------------------


class MovieIdParams(ToolParams):
    movie_id: int = Field(description="TMDB movie id")


@registry.tool(
    name="get_movie_details",
    description="Get full details for a movie: overview, genres, runtime, rating and top cast.",
    category="catalog",
    params_model=MovieIdParams,
)
async def get_movie_details(movie_id: int) -> ToolResult:
    details = await tmdb.get_movie_details(movie_id)
    return ToolResult(data={"movie": details.to_json_dict()})


# -- get_movie_recommendations -----------------------------------------------


class RecommendationParams(MovieIdParams):
    exclude_genres: list[str] = Field(
        default_factory=list,
        description="Genre names to leave out, e.g. ['Horror', 'Romance']",
    )
    min_year: int | None = Field(default=None, description="Earliest release year to include")
    max_year: int | None = Field(default=None, description="Latest release year to include")


@registry.tool(
    name="get_movie_recommendations",
    description="TMDB's recommendations for a movie id, optionally filtered by genre and year.",
    category="catalog",
    params_model=RecommendationParams,
)
async def get_movie_recommendations(
    movie_id: int,
    exclude_genres: list[str] | None = None,
    min_year: int | None = None,
    max_year: int | None = None,
) -> ToolResult:
    movies = await tmdb.get_movie_recommendations(movie_id)
    kept = apply_filters(movies, _filters(exclude_genres, min_year, max_year))
    return ToolResult(data={"movies": [m.to_json_dict() for m in kept]})


# -- get_semantic_movie_recommendations --------------------------------------


class SemanticRecommendationsTool(BaseTool):
    """Embedding-based "movies like X", falling back to TMDB recommendations.

    The fallback is silent to the caller: an empty or failed semantic search
    returns the catalog list instead of an error.
    """

    name = "get_semantic_movie_recommendations"
    description = (
        "Find movies thematically similar to a movie id using embeddings. "
        "Prefer this over get_movie_recommendations for 'movies like X' requests."
    )
    category = "catalog"
    params_model = RecommendationParams

    def __init__(self, recommender: SemanticRecommender | None = None) -> None:
        self._recommender = recommender

    @property
    def recommender(self) -> SemanticRecommender:
        return self._recommender or SemanticRecommender.get()

    async def execute(
        self,
        movie_id: int,
        exclude_genres: list[str] | None = None,
        min_year: int | None = None,
        max_year: int | None = None,
    ) -> ToolResult:
        filters = _filters(exclude_genres, min_year, max_year)
        try:
            seed = await tmdb.get_movie_details(movie_id)
            movies = await self.recommender.recommend(seed, filters)
        except Exception:
            logger.exception("Semantic search failed for %s, falling back to TMDB", movie_id)
            movies = []

        source = "semantic"
        if not movies:
            logger.warning("No semantic matches for %s, using TMDB recommendations", movie_id)
            movies = apply_filters(await tmdb.get_movie_recommendations(movie_id), filters)
            source = "catalog"

        return ToolResult(
            data={
                "source": source,
                "movies": [m.to_json_dict() for m in movies[:SINGLE_SOURCE_LIMIT]],
            }
        )


registry.register(SemanticRecommendationsTool())
