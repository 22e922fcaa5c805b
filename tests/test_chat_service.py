"""Tests for ChatService: turn handling, history replay, clear and feedback."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.chat.events import EventLog
from src.chat.service import FAILED_TURN_MESSAGE, ChatReply, ChatService
from src.history.store import ConversationNotFoundError
from src.integrations.http import CatalogError, RequestTimeoutError
from src.llm.client import EXHAUSTED_MESSAGE, LoopOutcome
from src.llm.response import AssistantPayload
from src.recommendations.merger import RecommendationMerger
from src.recommendations.models import CandidateItem, MovieDetails

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _movie(id, title, *, year, genres, confidence=None) -> CandidateItem:
    return CandidateItem(
        id=id, title=title, release_year=year, genres=genres, match_confidence=confidence
    )


@pytest.fixture
def semantic():
    mock = MagicMock()
    mock.recommend = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def tmdb_mock():
    with patch("src.recommendations.merger.tmdb") as mock:
        mock.search_movies = AsyncMock(
            return_value=[_movie(27205, "Inception", year=2010, genres=["Action"])]
        )
        mock.get_movie_details = AsyncMock(
            return_value=MovieDetails(
                id=27205,
                title="Inception",
                release_year=2010,
                genres=["Action", "Science Fiction", "Adventure"],
            )
        )
        mock.get_movie_recommendations = AsyncMock(return_value=[])
        mock.get_similar_movies = AsyncMock(return_value=[])
        yield mock


@pytest.fixture
def service(history_store, semantic) -> ChatService:
    merger = RecommendationMerger(semantic=semantic, store=history_store, sticky_genres=set())
    return ChatService(store=history_store, merger=merger)


@pytest.fixture
def tool_loop():
    with patch("src.chat.service.run_tool_loop", new_callable=AsyncMock) as mock:
        mock.return_value = LoopOutcome(text='{"message": "Hi there!"}', iterations=1)
        yield mock


# ---------------------------------------------------------------------------
# Fast path
# ---------------------------------------------------------------------------


async def test_inception_fast_path(service, semantic, tmdb_mock, tool_loop) -> None:
    semantic.recommend.return_value = [
        _movie(329865, "Arrival", year=2016, genres=["Drama", "Science Fiction"], confidence="medium"),
        _movie(157336, "Interstellar", year=2014, genres=["Adventure"], confidence="high"),
        _movie(335984, "Blade Runner 2049", year=2017, genres=["Science Fiction"], confidence="high"),
    ]

    reply = await service.send_message(
        "u1", None, "Give me movies like Inception but avoid horror, after 2015"
    )

    tool_loop.assert_not_called()
    seed, filters = semantic.recommend.call_args.args
    assert seed.title == "Inception"
    assert filters.excluded_genres == {"Horror"}
    assert filters.min_year == 2015

    payload = reply.assistant_message
    assert payload.message.startswith("Here are recommendations similar to Inception.")
    assert "Excluding: Horror." in payload.message
    assert "From 2015 onward." in payload.message
    assert payload.reasoning
    # semantic results are ranked by confidence; the mock does not filter years
    assert [m.title for m in payload.movies][:2] == ["Interstellar", "Blade Runner 2049"]
    assert [e.type for e in reply.debug_events] == ["fast_path"]

    history = await service.get_history("u1", reply.conversation_id)
    roles = [m["role"] for m in history["messages"]]
    assert roles == ["user", "assistant"]
    assert history["messages"][1]["content"]["movies"][0]["title"] == "Interstellar"


async def test_fast_path_empty_falls_back_to_llm(service, tmdb_mock, tool_loop) -> None:
    reply = await service.send_message("u1", None, "recommend something like Inception")

    tool_loop.assert_awaited_once()
    assert reply.assistant_message.message == "Hi there!"


async def test_seed_from_earlier_turn(service, semantic, tmdb_mock, tool_loop) -> None:
    semantic.recommend.return_value = [
        _movie(1, "Tenet", year=2020, genres=["Action"], confidence="high")
    ]
    first = await service.send_message("u1", None, "movies like Inception")

    tmdb_mock.search_movies.reset_mock()
    await service.send_message("u1", first.conversation_id, "recommend more but nothing before 2015")

    tmdb_mock.search_movies.assert_awaited_with("Inception")


async def test_source_failures_are_traced(service, semantic, tmdb_mock, tool_loop) -> None:
    semantic.recommend.side_effect = RuntimeError("vector index down")
    tmdb_mock.get_similar_movies.side_effect = CatalogError("TMDB API error: 500")
    tmdb_mock.get_movie_recommendations.return_value = [
        _movie(329865, "Arrival", year=2016, genres=["Drama", "Science Fiction"])
    ]

    reply = await service.send_message("u1", None, "movies like Inception")

    tool_loop.assert_not_called()
    assert [m.title for m in reply.assistant_message.movies] == ["Arrival"]
    events = [(e.type, e.message) for e in reply.debug_events]
    assert events[:2] == [
        ("source_error:semantic", "semantic unavailable: vector index down"),
        ("source_error:similar", "similar unavailable: TMDB API error: 500"),
    ]
    assert events[2][0] == "fast_path"


async def test_failed_seed_lookup_traced_before_llm(service, tmdb_mock, tool_loop) -> None:
    tmdb_mock.search_movies.side_effect = CatalogError("TMDB API error: 503")

    reply = await service.send_message("u1", None, "movies like Inception")

    tool_loop.assert_awaited_once()
    assert reply.debug_events[0].type == "source_error:seed_lookup"


# ---------------------------------------------------------------------------
# LLM path
# ---------------------------------------------------------------------------


async def test_llm_path_structured_reply(service, tool_loop) -> None:
    reply = await service.send_message("u1", None, "Who directed Heat?")

    assert reply.assistant_message.message == "Hi there!"
    assert reply.debug_events == []
    messages = tool_loop.call_args.args[0]
    assert messages == [{"role": "user", "content": "Who directed Heat?"}]
    assert tool_loop.call_args.kwargs["user_id"] == "u1"


async def test_llm_plain_text_reply(service, tool_loop) -> None:
    tool_loop.return_value = LoopOutcome(text="Michael Mann directed Heat.", iterations=1)

    reply = await service.send_message("u1", None, "Who directed Heat?")

    assert reply.assistant_message.message == "Michael Mann directed Heat."
    assert reply.assistant_message.movies == []
    assert [e.type for e in reply.debug_events] == ["parse_fallback"]


async def test_exhaustion_is_persisted(service, history_store, tool_loop) -> None:
    tool_loop.return_value = LoopOutcome(text=EXHAUSTED_MESSAGE, iterations=5, exhausted=True)

    reply = await service.send_message("u1", None, "Tell me about Heat")

    assert reply.assistant_message.message == EXHAUSTED_MESSAGE
    stored = await history_store.all_messages(reply.conversation_id)
    assert stored[-1].content == EXHAUSTED_MESSAGE


async def test_prior_turns_are_sent(service, tool_loop) -> None:
    first = await service.send_message("u1", None, "Hi")
    await service.send_message("u1", first.conversation_id, "Who directed Heat?")

    messages = tool_loop.call_args.args[0]
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[1]["content"] == '{"message": "Hi there!"}'


async def test_unknown_conversation(service, tool_loop) -> None:
    with pytest.raises(ConversationNotFoundError):
        await service.send_message("u1", "missing", "Hi")


async def test_conversation_of_another_user(service, tool_loop) -> None:
    reply = await service.send_message("u1", None, "Hi")
    with pytest.raises(ConversationNotFoundError):
        await service.send_message("u2", reply.conversation_id, "Hi")


async def test_failed_turn_still_persists_assistant_message(service, tool_loop) -> None:
    tool_loop.side_effect = RequestTimeoutError()

    with pytest.raises(RequestTimeoutError):
        await service.send_message("u1", None, "Who directed Heat?")

    history = await service.get_history("u1")
    assert [m["role"] for m in history["messages"]] == ["user", "assistant"]
    assert history["messages"][1]["content"]["message"] == FAILED_TURN_MESSAGE


# ---------------------------------------------------------------------------
# History / clear / feedback
# ---------------------------------------------------------------------------


async def test_history_defaults_to_latest(service, tool_loop) -> None:
    await service.send_message("u1", None, "first")
    latest = await service.send_message("u1", None, "second")

    history = await service.get_history("u1")

    assert history["conversationId"] == latest.conversation_id
    assert history["messages"][0]["content"] == "second"


async def test_history_replays_plain_text(service, history_store) -> None:
    conversation = await history_store.create_conversation("u1")
    await history_store.append_message(conversation.id, "user", "hi")
    await history_store.append_message(conversation.id, "assistant", "plain words")
    await history_store.append_message(conversation.id, "system", "internal")

    history = await service.get_history("u1", conversation.id)

    assert [m["role"] for m in history["messages"]] == ["user", "assistant"]
    assert history["messages"][1]["content"] == {
        "message": "plain words",
        "reasoning": None,
        "movies": [],
        "songs": [],
    }


async def test_history_for_new_user(service) -> None:
    assert await service.get_history("nobody") == {"conversationId": None, "messages": []}


async def test_clear_conversation(service, history_store, tool_loop) -> None:
    reply = await service.send_message("u1", None, "Hi")

    result = await service.clear("u1", reply.conversation_id)

    assert result == {"cleared": "conversation", "conversationId": reply.conversation_id}
    assert await history_store.get_conversation(reply.conversation_id) is None


async def test_clear_all(service, history_store, tool_loop) -> None:
    await service.send_message("u1", None, "Hi")
    await history_store.save_watched("u1", 1, "Heat")
    await service.toggle_feedback("u1", "movie", "1", 1)

    result = await service.clear("u1", clear_all=True)

    assert result == {"cleared": "all", "conversations": 1, "feedback": 1, "watched": 1}
    assert await service.get_feedback("u1") == {"feedback": []}


async def test_clear_without_conversations(service) -> None:
    assert await service.clear("u1") == {"cleared": "none"}


async def test_feedback_toggle(service) -> None:
    assert await service.toggle_feedback("u1", "movie", "27205", 1) == {
        "success": True,
        "rating": 1,
    }
    assert await service.toggle_feedback("u1", "movie", "27205", 1) == {
        "success": True,
        "rating": None,
    }
    await service.toggle_feedback("u1", "song", "t1", -1)

    feedback = (await service.get_feedback("u1"))["feedback"]
    assert [(f["itemType"], f["itemId"], f["rating"]) for f in feedback] == [("song", "t1", -1)]
    assert feedback[0]["createdAt"]


def test_reply_to_dict() -> None:
    events = EventLog()
    events.fast_path("done")
    reply = ChatReply(AssistantPayload(message="hi"), "c1", events.events)

    data = reply.to_dict()

    assert data["conversationId"] == "c1"
    assert data["assistantMessage"]["message"] == "hi"
    assert json.dumps(data)
    assert data["debugEvents"][0]["type"] == "fast_path"
