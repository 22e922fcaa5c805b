"""HistoryStore: conversations, messages, watched movies and feedback via libsql."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from src.db import connection
from src.history.models import Conversation, Feedback, StoredMessage, WatchedItem

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from src.db import AsyncConnection

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id          TEXT PRIMARY KEY,
        user_id     TEXT NOT NULL,
        created_at  TEXT NOT NULL,
        updated_at  TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS conversations_user_idx ON conversations (user_id)",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id               TEXT PRIMARY KEY,
        conversation_id  TEXT NOT NULL
                         REFERENCES conversations (id) ON DELETE CASCADE,
        role             TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
        content          TEXT NOT NULL,
        created_at       TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS messages_conversation_idx ON messages (conversation_id)",
    """
    CREATE TABLE IF NOT EXISTS watched_movies (
        id        TEXT PRIMARY KEY,
        user_id   TEXT NOT NULL,
        movie_id  INTEGER NOT NULL,
        title     TEXT NOT NULL,
        added_at  TEXT NOT NULL,
        UNIQUE (user_id, movie_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS feedback (
        id          TEXT PRIMARY KEY,
        user_id     TEXT NOT NULL,
        item_type   TEXT NOT NULL,
        item_id     TEXT NOT NULL,
        rating      INTEGER NOT NULL CHECK (rating IN (1, -1)),
        created_at  TEXT NOT NULL,
        UNIQUE (user_id, item_type, item_id)
    )
    """,
]


class ConversationNotFoundError(LookupError):
    """Raised when a conversation does not exist or belongs to another user."""


class InvalidFeedbackError(ValueError):
    """Raised when feedback arguments are malformed."""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


class HistoryStore:
    """Persists conversation history and lightweight user feedback.

    Singleton accessed via ``HistoryStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).

    Every write is idempotent or monotonically safe to retry: watched movies
    are upserted and feedback toggles against the stored state.
    """

    _instance: HistoryStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> HistoryStore:
        """Return the shared HistoryStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        async with connection(self._db_path) as db:
            if not self._initialised:
                await db.execute_script(_SCHEMA)
                self._initialised = True
            yield db

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(self, user_id: str) -> Conversation:
        """Create an empty conversation for *user_id*."""
        now = _now()
        conversation = Conversation(
            id=_new_id(), user_id=user_id, created_at=now, updated_at=now
        )
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO conversations (id, user_id, created_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (conversation.id, user_id, now, now),
            )
            await db.commit()
            logger.info("Created conversation %s for user %s", conversation.id, user_id)
            return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Fetch a conversation by ID, or None if not found."""
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id, user_id, created_at, updated_at FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return _conversation(row) if row else None

    async def get_user_conversation(
        self, user_id: str, conversation_id: str
    ) -> Conversation:
        """Fetch a conversation owned by *user_id*.

        Raises ConversationNotFoundError if it does not exist or is owned by
        another user.
        """
        conversation = await self.get_conversation(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            msg = f"Conversation {conversation_id} not found"
            raise ConversationNotFoundError(msg)
        return conversation

    async def latest_conversation(self, user_id: str) -> Conversation | None:
        """Return the user's most recently created conversation."""
        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT id, user_id, created_at, updated_at FROM conversations
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = await cursor.fetchone()
            return _conversation(row) if row else None

    async def touch(self, conversation_id: str) -> str:
        """Set updated_at to now and return the new timestamp."""
        now = _now()
        async with self._connect() as db:
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?", (now, conversation_id)
            )
            await db.commit()
            return now

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages. Returns True if removed."""
        async with self._connect() as db:
            await db.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            )
            cursor = await db.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            await db.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("Deleted conversation %s", conversation_id)
            return deleted

    async def clear_user(self, user_id: str) -> dict[str, int]:
        """Delete every conversation, feedback record and watched movie of a user."""
        async with self._connect() as db:
            await db.execute(
                "DELETE FROM messages WHERE conversation_id IN "
                "(SELECT id FROM conversations WHERE user_id = ?)",
                (user_id,),
            )
            conversations = await db.execute(
                "DELETE FROM conversations WHERE user_id = ?", (user_id,)
            )
            feedback = await db.execute("DELETE FROM feedback WHERE user_id = ?", (user_id,))
            watched = await db.execute(
                "DELETE FROM watched_movies WHERE user_id = ?", (user_id,)
            )
            await db.commit()
            counts = {
                "conversations": conversations.rowcount,
                "feedback": feedback.rowcount,
                "watched": watched.rowcount,
            }
            logger.info("Cleared all data for user %s: %s", user_id, counts)
            return counts

    # -- Messages --------------------------------------------------------------

    async def append_message(
        self, conversation_id: str, role: str, content: str
    ) -> StoredMessage:
        """Append a message and bump the conversation's updated_at."""
        message = StoredMessage(
            id=_new_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=_now(),
        )
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO messages (id, conversation_id, role, content, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (message.id, conversation_id, role, content, message.created_at),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (message.created_at, conversation_id),
            )
            await db.commit()
            return message

    async def recent_messages(
        self, conversation_id: str, limit: int
    ) -> list[StoredMessage]:
        """Return the *limit* most recent messages in chronological order."""
        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT id, conversation_id, role, content, created_at FROM messages
                WHERE conversation_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            )
            rows = await cursor.fetchall()
            return [_message(row) for row in reversed(rows)]

    async def all_messages(self, conversation_id: str) -> list[StoredMessage]:
        """Return the full transcript in chronological order."""
        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT id, conversation_id, role, content, created_at FROM messages
                WHERE conversation_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (conversation_id,),
            )
            rows = await cursor.fetchall()
            return [_message(row) for row in rows]

    # -- Watched movies --------------------------------------------------------

    async def save_watched(self, user_id: str, movie_id: int, title: str) -> WatchedItem:
        """Upsert a watched movie, refreshing its title and timestamp."""
        if not user_id or not title:
            msg = "save_watched requires a user_id and a title"
            raise ValueError(msg)

        now = _now()
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO watched_movies (id, user_id, movie_id, title, added_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (user_id, movie_id)
                DO UPDATE SET title = excluded.title, added_at = excluded.added_at
                """,
                (_new_id(), user_id, movie_id, title, now),
            )
            await db.commit()
            cursor = await db.execute(
                "SELECT id, user_id, movie_id, title, added_at FROM watched_movies "
                "WHERE user_id = ? AND movie_id = ?",
                (user_id, movie_id),
            )
            row = await cursor.fetchone()
            logger.info("Saved watched movie %s (%s) for user %s", movie_id, title, user_id)
            return _watched(row)

    async def get_history(self, user_id: str) -> list[WatchedItem]:
        """Watched movies, most recently added first."""
        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT id, user_id, movie_id, title, added_at FROM watched_movies
                WHERE user_id = ?
                ORDER BY added_at DESC, rowid DESC
                """,
                (user_id,),
            )
            rows = await cursor.fetchall()
            return [_watched(row) for row in rows]

    # -- Feedback --------------------------------------------------------------

    async def toggle_feedback(
        self, user_id: str, item_type: str, item_id: str, rating: int
    ) -> int | None:
        """Toggle a rating and return the resulting state.

        Repeating the stored rating clears it (returns None); the opposite
        rating replaces it.
        """
        if not user_id or not item_type or not item_id or rating not in (1, -1):
            msg = "toggle_feedback requires user_id, item_type, item_id and a rating of 1 or -1"
            raise InvalidFeedbackError(msg)

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id, rating FROM feedback "
                "WHERE user_id = ? AND item_type = ? AND item_id = ?",
                (user_id, item_type, item_id),
            )
            existing = await cursor.fetchone()

            if existing and existing[1] == rating:
                await db.execute("DELETE FROM feedback WHERE id = ?", (existing[0],))
                await db.commit()
                return None

            if existing:
                await db.execute(
                    "UPDATE feedback SET rating = ? WHERE id = ?", (rating, existing[0])
                )
            else:
                await db.execute(
                    """
                    INSERT INTO feedback (id, user_id, item_type, item_id, rating, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (_new_id(), user_id, item_type, item_id, rating, _now()),
                )
            await db.commit()
            return rating

    async def get_feedback(self, user_id: str) -> list[Feedback]:
        """All feedback of a user, newest first."""
        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT id, user_id, item_type, item_id, rating, created_at FROM feedback
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (user_id,),
            )
            rows = await cursor.fetchall()
            return [
                Feedback(
                    id=row[0],
                    user_id=row[1],
                    item_type=row[2],
                    item_id=row[3],
                    rating=row[4],
                    created_at=row[5],
                )
                for row in rows
            ]


def _conversation(row: tuple) -> Conversation:
    return Conversation(id=row[0], user_id=row[1], created_at=row[2], updated_at=row[3])


def _message(row: tuple) -> StoredMessage:
    return StoredMessage(
        id=row[0], conversation_id=row[1], role=row[2], content=row[3], created_at=row[4]
    )


def _watched(row: tuple) -> WatchedItem:
    return WatchedItem(id=row[0], user_id=row[1], movie_id=row[2], title=row[3], added_at=row[4])
