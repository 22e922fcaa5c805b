"""Debug/trace events attached to every chat reply."""

from __future__ import annotations

import json
import uuid
from typing import Any

from pydantic import BaseModel

ARG_PREVIEW_CHARS = 100


class DebugEvent(BaseModel):
    id: str
    type: str
    message: str


def _event_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class EventLog:
    """Collects the trace events of one conversational turn, in order."""

    def __init__(self) -> None:
        self.events: list[DebugEvent] = []

    def _add(self, prefix: str, type_: str, message: str) -> DebugEvent:
        event = DebugEvent(id=_event_id(prefix), type=type_, message=message)
        self.events.append(event)
        return event

    def tool_call(self, name: str, arguments: dict[str, Any]) -> DebugEvent:
        raw = json.dumps(arguments, default=str)
        preview = raw[:ARG_PREVIEW_CHARS] + ("..." if len(raw) > ARG_PREVIEW_CHARS else "")
        return self._add("tool", f"tool_call:{name}", f"Called {name} with args: {preview}")

    def tool_success(self, name: str) -> DebugEvent:
        return self._add("tool-success", f"tool_success:{name}", f"{name} completed successfully")

    def tool_error(self, name: str, error: str) -> DebugEvent:
        return self._add("tool-error", "tool_error", f"{name} failed: {error}")

    def tokens(self, iteration: int, usage: dict[str, Any]) -> DebugEvent:
        return self._add(f"tokens-{iteration}", "tokens", json.dumps(usage))

    def source_error(self, source: str, error: BaseException | str) -> DebugEvent:
        detail = str(error) or type(error).__name__
        return self._add(
            "source-error", f"source_error:{source}", f"{source} unavailable: {detail}"
        )

    def fast_path(self, message: str) -> DebugEvent:
        return self._add("fast-path", "fast_path", message)

    def parse_fallback(self) -> DebugEvent:
        return self._add(
            "parse-fallback",
            "parse_fallback",
            "Assistant reply was not structured JSON; returned as plain text",
        )

    def exhausted(self, iterations: int) -> DebugEvent:
        return self._add(
            "exhausted", "exhausted", f"Stopped after {iterations} tool-calling iterations"
        )

    def as_dicts(self) -> list[dict[str, str]]:
        return [e.model_dump() for e in self.events]

    def __len__(self) -> int:
        return len(self.events)
