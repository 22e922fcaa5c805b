"""Conversation turn driver.

One call to ``ChatService.send_message`` handles a full turn:

1. Load (or lazily create) the conversation and persist the user message.
2. If the message asks for recommendations, try the deterministic merger.
   A non-empty result is the answer and Claude is never called.
3. Otherwise run the bounded Claude tool-calling loop.
4. Persist the assistant message and return it with the turn's trace events.

Turns on the same conversation must be serialized by the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.chat.events import DebugEvent, EventLog
from src.history.store import HistoryStore
from src.llm.client import run_tool_loop
from src.llm.response import (
    AssistantPayload,
    PlainText,
    parse_assistant_content,
    to_payload,
)
from src.recommendations.constraints import extract_constraints, is_recommendation_intent
from src.recommendations.merger import RecommendationMerger

if TYPE_CHECKING:
    from src.history.models import Conversation, StoredMessage

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 20
FAILED_TURN_MESSAGE = "I apologize, but I couldn't finish that reply. Please try again."


@dataclass
class ChatReply:
    assistant_message: AssistantPayload
    conversation_id: str
    debug_events: list[DebugEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "assistantMessage": self.assistant_message.to_json_dict(),
            "conversationId": self.conversation_id,
            "debugEvents": [e.model_dump() for e in self.debug_events],
        }


def _claude_messages(history: list[StoredMessage]) -> list[dict[str, Any]]:
    """Stored turns in Claude format. System rows are dropped; the first turn is a user turn."""
    messages = [
        {"role": m.role, "content": m.content}
        for m in history
        if m.role in ("user", "assistant") and m.content
    ]
    while messages and messages[0]["role"] != "user":
        messages.pop(0)
    return messages


def _replay(message: StoredMessage) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "id": message.id,
        "role": message.role,
        "createdAt": message.created_at,
    }
    if message.role == "assistant":
        entry["content"] = to_payload(parse_assistant_content(message.content)).to_json_dict()
    else:
        entry["content"] = message.content
    return entry


class ChatService:
    """Entry point for chat, history, feedback and clear requests."""

    def __init__(
        self,
        store: HistoryStore | None = None,
        merger: RecommendationMerger | None = None,
    ) -> None:
        self._store = store or HistoryStore.get()
        self._merger = merger

    @property
    def merger(self) -> RecommendationMerger:
        if self._merger is None:
            self._merger = RecommendationMerger(store=self._store)
        return self._merger

    async def _conversation(self, user_id: str, conversation_id: str | None) -> Conversation:
        if conversation_id:
            return await self._store.get_user_conversation(user_id, conversation_id)
        return await self._store.create_conversation(user_id)

    async def send_message(
        self, user_id: str, conversation_id: str | None, message: str
    ) -> ChatReply:
        """Run one conversational turn.

        Raises ConversationNotFoundError for an unknown ``conversation_id``
        and ConfigurationError when a required credential is missing. A turn
        that fails after the user message is stored still gets an apology
        assistant message before the error propagates.
        """
        conversation = await self._conversation(user_id, conversation_id)
        await self._store.append_message(conversation.id, "user", message)
        history = await self._store.recent_messages(conversation.id, HISTORY_WINDOW)
        events = EventLog()

        try:
            if is_recommendation_intent(message):
                payload = await self._fast_path(user_id, message, history[:-1], events)
                if payload is not None:
                    await self._store.append_message(
                        conversation.id, "assistant", payload.to_json()
                    )
                    return ChatReply(payload, conversation.id, events.events)

            outcome = await run_tool_loop(
                _claude_messages(history), user_id=user_id, events=events
            )
        except Exception:
            # Keep the transcript alternating; the caller still sees the error.
            failed = AssistantPayload(message=FAILED_TURN_MESSAGE)
            await self._store.append_message(conversation.id, "assistant", failed.to_json())
            raise

        parsed = parse_assistant_content(outcome.text)
        if isinstance(parsed, PlainText) and not outcome.exhausted:
            events.parse_fallback()

        await self._store.append_message(conversation.id, "assistant", outcome.text)
        logger.info(
            "Turn finished for conversation %s after %d iteration(s)",
            conversation.id,
            outcome.iterations,
        )
        return ChatReply(to_payload(parsed), conversation.id, events.events)

    async def _fast_path(
        self,
        user_id: str,
        message: str,
        earlier: list[StoredMessage],
        events: EventLog,
    ) -> AssistantPayload | None:
        constraints = extract_constraints(message, earlier)
        result = await self.merger.recommend(user_id, constraints, events)
        if result is None:
            logger.info("Fast path produced nothing, falling back to Claude")
            return None
        events.fast_path(
            f"Answered without the LLM: {len(result.movies)} movie(s)"
            f" (seed={constraints.seed_title!r})"
        )
        return AssistantPayload(
            message=result.message, reasoning=result.reasoning, movies=result.movies
        )

    async def get_history(
        self, user_id: str, conversation_id: str | None = None
    ) -> dict[str, Any]:
        """Replay a transcript; defaults to the user's latest conversation."""
        if conversation_id:
            conversation = await self._store.get_user_conversation(user_id, conversation_id)
        else:
            conversation = await self._store.latest_conversation(user_id)
        if conversation is None:
            return {"conversationId": None, "messages": []}

        messages = await self._store.all_messages(conversation.id)
        return {
            "conversationId": conversation.id,
            "messages": [_replay(m) for m in messages if m.role != "system"],
        }

    async def clear(
        self, user_id: str, conversation_id: str | None = None, *, clear_all: bool = False
    ) -> dict[str, Any]:
        """Delete one conversation, or everything the user has stored."""
        if clear_all:
            counts = await self._store.clear_user(user_id)
            return {"cleared": "all", **counts}

        if conversation_id:
            conversation = await self._store.get_user_conversation(user_id, conversation_id)
        else:
            conversation = await self._store.latest_conversation(user_id)
        if conversation is None:
            return {"cleared": "none"}
        await self._store.delete_conversation(conversation.id)
        return {"cleared": "conversation", "conversationId": conversation.id}

    async def toggle_feedback(
        self, user_id: str, item_type: str, item_id: str, rating: int
    ) -> dict[str, Any]:
        result = await self._store.toggle_feedback(user_id, item_type, item_id, rating)
        return {"success": True, "rating": result}

    async def get_feedback(self, user_id: str) -> dict[str, Any]:
        feedback = await self._store.get_feedback(user_id)
        return {
            "feedback": [
                {
                    "itemType": f.item_type,
                    "itemId": f.item_id,
                    "rating": f.rating,
                    "createdAt": f.created_at,
                }
                for f in feedback
            ]
        }
