"""Structured assistant responses.

Claude is asked to answer with a single JSON object::

    {"message": "...", "reasoning": "...", "movies": [...], "songs": [...]}

That shape is a contract, not a guarantee. ``parse_assistant_content`` is
the one place raw assistant text is interpreted, for live replies and for
history replay alike: valid JSON becomes ``Structured``, anything else
becomes ``PlainText`` and is shown as-is.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from pydantic import Field, ValidationError, field_validator

from src.recommendations.models import CamelModel, CandidateItem, TrackItem

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL | re.IGNORECASE)


class AssistantPayload(CamelModel):
    """What the caller receives for every assistant turn."""

    message: str
    reasoning: str | None = None
    movies: list[CandidateItem] = Field(default_factory=list)
    songs: list[TrackItem] = Field(default_factory=list)

    @field_validator("movies", "songs", mode="before")
    @classmethod
    def _list_or_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_json(self) -> str:
        return json.dumps(self.to_json_dict())


@dataclass(frozen=True)
class Structured:
    payload: AssistantPayload


@dataclass(frozen=True)
class PlainText:
    text: str


ParsedContent = Structured | PlainText


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text


def parse_assistant_content(text: str | None) -> ParsedContent:
    """Interpret raw assistant text. Never raises."""
    raw = text or ""
    candidate = _strip_fence(raw.strip())
    if not candidate.startswith("{"):
        return PlainText(raw)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        logger.debug("Assistant content is not valid JSON")
        return PlainText(raw)
    if not isinstance(data, dict):
        return PlainText(raw)
    try:
        return Structured(AssistantPayload.model_validate(data))
    except ValidationError as exc:
        logger.debug("Assistant JSON does not match the payload shape: %s", exc)
        return PlainText(raw)


def to_payload(parsed: ParsedContent) -> AssistantPayload:
    if isinstance(parsed, Structured):
        return parsed.payload
    return AssistantPayload(message=parsed.text)
