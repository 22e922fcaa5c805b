"""Data models for conversation history, watched movies and feedback."""

from typing import Literal

from pydantic import BaseModel

Role = Literal["user", "assistant", "system"]


class Conversation(BaseModel):
    """A conversation owned by a single user."""

    id: str
    user_id: str
    created_at: str
    updated_at: str


class StoredMessage(BaseModel):
    """A single persisted conversation message.

    Assistant content is either plain text or the JSON string of an
    AssistantPayload.
    """

    id: str
    conversation_id: str
    role: Role
    content: str
    created_at: str


class WatchedItem(BaseModel):
    """A movie the user has watched. Unique per (user_id, movie_id)."""

    id: str
    user_id: str
    movie_id: int
    title: str
    added_at: str


class Feedback(BaseModel):
    """A thumbs up (+1) or down (-1) rating. Unique per (user, type, item)."""

    id: str
    user_id: str
    item_type: str
    item_id: str
    rating: int
    created_at: str
