"""Per-user history tools: watched movies, feedback and history-based picks.

Every tool here is user-scoped; the registry injects ``user_id``.
"""

from pydantic import Field

from src.history.store import HistoryStore
from src.recommendations.filters import CandidateFilters
from src.recommendations.merger import RecommendationMerger
from src.tools.base import ToolParams, ToolResult
from src.tools.registry import registry


class NoParams(ToolParams):
    pass


# -- save_watched_movie ------------------------------------------------------


class SaveWatchedParams(ToolParams):
    movie_id: int = Field(description="TMDB movie id")
    title: str = Field(description="Movie title as shown to the user")


@registry.tool(
    name="save_watched_movie",
    description=(
        "Remember that the user watched or liked a movie. Safe to call more "
        "than once for the same movie."
    ),
    category="history",
    params_model=SaveWatchedParams,
)
async def save_watched_movie(movie_id: int, title: str, user_id: str) -> ToolResult:
    item = await HistoryStore.get().save_watched(user_id, movie_id, title)
    return ToolResult(data={"saved": True, "movieId": item.movie_id, "title": item.title})


# -- get_user_history --------------------------------------------------------


@registry.tool(
    name="get_user_history",
    description="List the movies the user has watched, most recent first.",
    category="history",
    params_model=NoParams,
)
async def get_user_history(user_id: str) -> ToolResult:
    watched = await HistoryStore.get().get_history(user_id)
    return ToolResult(
        data={
            "watchedMovies": [
                {"movieId": w.movie_id, "title": w.title, "addedAt": w.added_at}
                for w in watched
            ]
        }
    )


# -- get_recommendations_from_history ----------------------------------------


class HistoryRecommendationParams(ToolParams):
    exclude_genres: list[str] = Field(
        default_factory=list,
        description="Genre names to leave out, e.g. ['Horror']",
    )
    min_year: int | None = Field(default=None, description="Earliest release year to include")
    max_year: int | None = Field(default=None, description="Latest release year to include")


@registry.tool(
    name="get_recommendations_from_history",
    description=(
        "Personalized recommendations built from the user's recently watched "
        "movies. Use when the user asks for something without naming a movie."
    ),
    category="history",
    params_model=HistoryRecommendationParams,
)
async def get_recommendations_from_history(
    user_id: str,
    exclude_genres: list[str] | None = None,
    min_year: int | None = None,
    max_year: int | None = None,
) -> ToolResult:
    filters = CandidateFilters(
        excluded_genres=set(exclude_genres or []), min_year=min_year, max_year=max_year
    )
    movies = await RecommendationMerger().recommendations_from_history(user_id, filters)
    return ToolResult(data={"movieRecommendations": [m.to_json_dict() for m in movies]})


# -- get_user_feedback -------------------------------------------------------


@registry.tool(
    name="get_user_feedback",
    description=(
        "The user's thumbs up (1) / thumbs down (-1) ratings. Use to favour "
        "items like the liked ones and down-rank items like the disliked ones."
    ),
    category="history",
    params_model=NoParams,
)
async def get_user_feedback(user_id: str) -> ToolResult:
    feedback = await HistoryStore.get().get_feedback(user_id)
    return ToolResult(
        data={
            "feedback": [
                {"itemType": f.item_type, "itemId": f.item_id, "rating": f.rating}
                for f in feedback
            ]
        }
    )
