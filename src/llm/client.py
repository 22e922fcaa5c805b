"""Async Claude API client with a bounded tool-calling loop."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import anthropic

from src.config import settings
from src.integrations.http import RequestTimeoutError
from src.llm.prompt import build_system_prompt
from src.tools import registry

if TYPE_CHECKING:
    from src.chat.events import EventLog

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 5
EXHAUSTED_MESSAGE = (
    "I apologize, but I reached the maximum number of tool calls. "
    "Please try rephrasing your question."
)
EMPTY_REPLY_MESSAGE = "I apologize, but I couldn't generate a response."

_client: anthropic.AsyncAnthropic | None = None


@dataclass
class LoopOutcome:
    text: str
    iterations: int
    exhausted: bool = False


def _get_client() -> anthropic.AsyncAnthropic:
    """Shared AsyncAnthropic, built on first use so a missing key fails late."""
    global _client  # noqa: PLW0603
    if _client is None:
        settings.require("anthropic_api_key")
        _client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key, timeout=settings.llm_timeout_seconds
        )
    return _client


def _serialize_content(content: list[Any]) -> list[dict[str, Any]]:
    """Assistant reply blocks as plain dicts, ready to resend next iteration."""
    result: list[dict[str, Any]] = []
    for block in content:
        if block.type == "text":
            result.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            result.append({
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input,
            })
    return result


def _usage(response: Any) -> dict[str, Any] | None:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    return {
        "input_tokens": getattr(usage, "input_tokens", None),
        "output_tokens": getattr(usage, "output_tokens", None),
    }


async def _create(client: anthropic.AsyncAnthropic, **kwargs: Any) -> Any:
    try:
        return await client.messages.create(**kwargs)
    except anthropic.APITimeoutError as exc:
        raise RequestTimeoutError from exc


async def run_tool_loop(
    messages: list[dict[str, Any]],
    *,
    user_id: str,
    events: EventLog,
) -> LoopOutcome:
    """Drive Claude until it answers without calling tools.

    Each iteration sends the conversation so far with every registered tool
    attached. Tool calls from one reply run concurrently; their results are
    appended in the order Claude requested them. After ``MAX_ITERATIONS``
    replies that still call tools, the fixed ``EXHAUSTED_MESSAGE`` is
    returned instead of an answer.

    Args:
        messages: Replayed turns plus the new user message, oldest first.
        user_id: Injected into user-scoped tools.
        events: Receives one trace event per tool call, outcome and LLM call.
    """
    client = _get_client()
    tool_schemas = registry.get_schemas()
    system_prompt = build_system_prompt()
    loop_messages = list(messages)

    for iteration in range(1, MAX_ITERATIONS + 1):
        kwargs: dict[str, Any] = {
            "model": settings.chat_model,
            "max_tokens": settings.chat_max_tokens,
            "system": system_prompt,
            "messages": loop_messages,
        }
        if tool_schemas:
            kwargs["tools"] = tool_schemas

        response = await _create(client, **kwargs)
        if usage := _usage(response):
            events.tokens(iteration, usage)

        tool_use_blocks = [b for b in response.content if b.type == "tool_use"]
        if not tool_use_blocks:
            text = "".join(b.text for b in response.content if b.type == "text").strip()
            return LoopOutcome(text=text or EMPTY_REPLY_MESSAGE, iterations=iteration)

        logger.info(
            "Iteration %d: %d tool call(s): %s",
            iteration,
            len(tool_use_blocks),
            ", ".join(b.name for b in tool_use_blocks),
        )
        loop_messages.append({
            "role": "assistant",
            "content": _serialize_content(response.content),
        })

        for block in tool_use_blocks:
            events.tool_call(block.name, block.input or {})
        results = await asyncio.gather(
            *(registry.execute(b.name, b.input or {}, user_id=user_id) for b in tool_use_blocks)
        )

        tool_results: list[dict[str, Any]] = []
        for block, result in zip(tool_use_blocks, results, strict=True):
            if result.success:
                events.tool_success(block.name)
            else:
                events.tool_error(block.name, result.error)
            tool_results.append({
                "type": "tool_result",
                "tool_use_id": block.id,
                "content": result.to_content(),
                "is_error": not result.success,
            })
        loop_messages.append({"role": "user", "content": tool_results})

    logger.warning("Hit max tool iterations (%d)", MAX_ITERATIONS)
    events.exhausted(MAX_ITERATIONS)
    return LoopOutcome(text=EXHAUSTED_MESSAGE, iterations=MAX_ITERATIONS, exhausted=True)
