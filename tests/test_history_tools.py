"""Tests for the user-scoped history tools."""

from unittest.mock import AsyncMock, patch

from src.recommendations.models import CandidateItem
from src.tools import registry


async def test_save_and_list_watched(history_store) -> None:
    saved = await registry.execute(
        "save_watched_movie", {"movie_id": 27205, "title": "Inception"}, user_id="u1"
    )
    assert saved.data == {"saved": True, "movieId": 27205, "title": "Inception"}

    result = await registry.execute("get_user_history", {}, user_id="u1")
    watched = result.data["watchedMovies"]
    assert [w["movieId"] for w in watched] == [27205]
    assert watched[0]["addedAt"]


async def test_history_is_per_user(history_store) -> None:
    await registry.execute("save_watched_movie", {"movie_id": 1, "title": "Heat"}, user_id="u1")

    result = await registry.execute("get_user_history", {}, user_id="u2")
    assert result.data == {"watchedMovies": []}


async def test_save_twice_is_idempotent(history_store) -> None:
    for title in ("Heat", "Heat (1995)"):
        await registry.execute("save_watched_movie", {"movie_id": 1, "title": title}, user_id="u1")

    history = await history_store.get_history("u1")
    assert len(history) == 1
    assert history[0].title == "Heat (1995)"


async def test_user_id_from_model_cannot_cross_users(history_store) -> None:
    await registry.execute(
        "save_watched_movie",
        {"movie_id": 1, "title": "Heat", "user_id": "victim"},
        user_id="u1",
    )
    assert await history_store.get_history("victim") == []
    assert len(await history_store.get_history("u1")) == 1


async def test_requires_user_id(history_store) -> None:
    result = await registry.execute("get_user_history", {})
    assert "requires a user id" in result.error


async def test_get_user_feedback(history_store) -> None:
    await history_store.toggle_feedback("u1", "movie", "27205", 1)
    await history_store.toggle_feedback("u1", "song", "t1", -1)

    result = await registry.execute("get_user_feedback", {}, user_id="u1")

    ratings = {(f["itemType"], f["itemId"]): f["rating"] for f in result.data["feedback"]}
    assert ratings == {("movie", "27205"): 1, ("song", "t1"): -1}


async def test_recommendations_from_history(history_store) -> None:
    await history_store.save_watched("u1", 27205, "Inception")
    picks = [CandidateItem(id=10, title="Tenet", release_year=2020, genres=["Action"])]

    with patch(
        "src.tools.history_tools.RecommendationMerger.recommendations_from_history",
        new=AsyncMock(return_value=picks),
    ) as mock_rec:
        result = await registry.execute(
            "get_recommendations_from_history",
            {"exclude_genres": ["Horror"], "min_year": 2015},
            user_id="u1",
        )

    assert result.data["movieRecommendations"][0]["title"] == "Tenet"
    user_id, filters = mock_rec.call_args.args
    assert user_id == "u1"
    assert filters.excluded_genres == {"Horror"}
    assert filters.min_year == 2015
