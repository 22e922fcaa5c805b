"""Tests for run_tool_loop(): the bounded tool-calling loop."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest

from src.chat.events import EventLog
from src.integrations.http import RequestTimeoutError
from src.llm.client import EMPTY_REPLY_MESSAGE, EXHAUSTED_MESSAGE, MAX_ITERATIONS, run_tool_loop
from src.tools.base import ToolResult

# ---------------------------------------------------------------------------
# Helpers: fake Messages API responses
# ---------------------------------------------------------------------------


@dataclass
class _FakeBlock:
    type: str
    text: str = ""
    id: str = ""
    name: str = ""
    input: dict[str, Any] | None = None


@dataclass
class _FakeUsage:
    input_tokens: int = 100
    output_tokens: int = 20


@dataclass
class _FakeResponse:
    content: list[_FakeBlock]
    usage: _FakeUsage | None = None


def _text(text: str) -> _FakeResponse:
    return _FakeResponse([_FakeBlock(type="text", text=text)], _FakeUsage())


def _tool_calls(*calls: tuple[str, str, dict]) -> _FakeResponse:
    blocks = [_FakeBlock(type="tool_use", id=i, name=n, input=a) for i, n, a in calls]
    return _FakeResponse(blocks, _FakeUsage())


def _make_mock_client(responses: list[_FakeResponse]) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=responses)
    return client


@pytest.fixture
def mock_registry():
    registry = MagicMock()
    registry.get_schemas.return_value = [{"name": "search_movies"}]
    registry.execute = AsyncMock(return_value=ToolResult(data={"movies": []}))
    with patch("src.llm.client.registry", registry):
        yield registry


@pytest.fixture(autouse=True)
def _static_prompt():
    with patch("src.llm.client.build_system_prompt", return_value=[{"type": "text", "text": "sys"}]):
        yield


async def _run(client: MagicMock, events: EventLog | None = None):
    events = events if events is not None else EventLog()
    with patch("src.llm.client._get_client", return_value=client):
        outcome = await run_tool_loop(
            [{"role": "user", "content": "hi"}], user_id="u1", events=events
        )
    return outcome, events


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


async def test_plain_answer_without_tools(mock_registry) -> None:
    client = _make_mock_client([_text('{"message": "Hello!"}')])

    outcome, events = await _run(client)

    assert outcome.text == '{"message": "Hello!"}'
    assert outcome.iterations == 1
    assert not outcome.exhausted
    assert [e.type for e in events.events] == ["tokens"]
    mock_registry.execute.assert_not_called()

    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["system"] == [{"type": "text", "text": "sys"}]
    assert kwargs["tools"] == [{"name": "search_movies"}]


async def test_tool_round_then_answer(mock_registry) -> None:
    client = _make_mock_client([
        _tool_calls(("t1", "search_movies", {"query": "Inception"})),
        _text('{"message": "Found it"}'),
    ])

    outcome, events = await _run(client)

    assert outcome.iterations == 2
    mock_registry.execute.assert_awaited_once_with(
        "search_movies", {"query": "Inception"}, user_id="u1"
    )
    types = [e.type for e in events.events]
    assert types == ["tokens", "tool_call:search_movies", "tool_success:search_movies", "tokens"]

    second_messages = client.messages.create.call_args_list[1].kwargs["messages"]
    assert second_messages[1]["role"] == "assistant"
    tool_result = second_messages[2]["content"][0]
    assert tool_result["type"] == "tool_result"
    assert tool_result["tool_use_id"] == "t1"
    assert tool_result["is_error"] is False


async def test_tool_error_is_fed_back(mock_registry) -> None:
    mock_registry.execute.return_value = ToolResult(error="TMDB API error: 500")
    client = _make_mock_client([
        _tool_calls(("t1", "get_movie_details", {"movie_id": 1})),
        _text("Sorry, the catalog is down."),
    ])

    outcome, events = await _run(client)

    tool_result = client.messages.create.call_args_list[1].kwargs["messages"][2]["content"][0]
    assert tool_result["is_error"] is True
    assert json.loads(tool_result["content"]) == {"result": None, "error": "TMDB API error: 500"}
    error_event = events.events[2]
    assert error_event.type == "tool_error"
    assert error_event.message == "get_movie_details failed: TMDB API error: 500"


async def test_concurrent_calls_keep_request_order(mock_registry) -> None:
    async def _execute(name, arguments, user_id=None):
        # the first call finishes last
        await asyncio.sleep(0.02 if name == "slow" else 0)
        return ToolResult(data={"tool": name})

    mock_registry.execute = AsyncMock(side_effect=_execute)
    client = _make_mock_client([
        _tool_calls(("a", "slow", {}), ("b", "fast", {})),
        _text("done"),
    ])

    await _run(client)

    results = client.messages.create.call_args_list[1].kwargs["messages"][2]["content"]
    assert [r["tool_use_id"] for r in results] == ["a", "b"]
    assert [json.loads(r["content"])["tool"] for r in results] == ["slow", "fast"]


async def test_exhausted_after_max_iterations(mock_registry) -> None:
    responses = [
        _tool_calls((f"t{i}", "search_movies", {"query": "x"})) for i in range(MAX_ITERATIONS)
    ]
    client = _make_mock_client(responses)

    outcome, events = await _run(client)

    assert outcome.exhausted
    assert outcome.text == EXHAUSTED_MESSAGE
    assert client.messages.create.call_count == MAX_ITERATIONS
    assert mock_registry.execute.await_count == MAX_ITERATIONS
    assert events.events[-1].type == "exhausted"
    assert sum(e.type == "tokens" for e in events.events) == MAX_ITERATIONS


async def test_answer_on_last_iteration_is_not_exhausted(mock_registry) -> None:
    responses = [
        _tool_calls((f"t{i}", "search_movies", {})) for i in range(MAX_ITERATIONS - 1)
    ] + [_text("final")]
    client = _make_mock_client(responses)

    outcome, _ = await _run(client)

    assert outcome.text == "final"
    assert not outcome.exhausted


async def test_empty_reply_gets_fallback_text(mock_registry) -> None:
    client = _make_mock_client([_FakeResponse([], None)])

    outcome, events = await _run(client)

    assert outcome.text == EMPTY_REPLY_MESSAGE
    assert len(events) == 0


async def test_timeout_is_uniform(mock_registry) -> None:
    client = MagicMock()
    client.messages.create = AsyncMock(
        side_effect=anthropic.APITimeoutError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
    )

    with pytest.raises(RequestTimeoutError):
        await _run(client)
