"""Async access to the libsql database (local SQLite file or Turso).

libsql's driver is synchronous, so every call is pushed to a worker thread
with ``asyncio.to_thread()``. Where the connection points is decided per call:

- an explicit path (tests pass ``tmp_path / "x.db"``)
- ``TURSO_DATABASE_URL`` + ``TURSO_AUTH_TOKEN`` for a hosted database
- otherwise the local file at ``DATABASE_PATH``

Foreign keys are on for every connection so deleting a conversation
cascades to its messages.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import libsql

from src.config import settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable
    from pathlib import Path

_LOCAL_PRAGMAS = ("journal_mode=WAL", "busy_timeout=5000", "foreign_keys=ON")


class AsyncCursor:
    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    async def fetchone(self) -> tuple | None:
        return await asyncio.to_thread(self._cursor.fetchone)

    async def fetchall(self) -> list[tuple]:
        return await asyncio.to_thread(self._cursor.fetchall)

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class AsyncConnection:
    """Awaitable facade over one synchronous libsql connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: tuple = ()) -> AsyncCursor:
        return AsyncCursor(await asyncio.to_thread(self._conn.execute, sql, params))

    async def execute_script(self, statements: Iterable[str]) -> None:
        """Run DDL statements in order, then commit once."""
        for sql in statements:
            await asyncio.to_thread(self._conn.execute, sql)
        await self.commit()

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _open(target: str, auth_token: str | None = None) -> Any:
    if auth_token is not None:
        conn = libsql.connect(database=target, auth_token=auth_token)
        conn.execute("PRAGMA foreign_keys=ON")
        return conn
    conn = libsql.connect(target)
    for pragma in _LOCAL_PRAGMAS:
        conn.execute(f"PRAGMA {pragma}")
    return conn


async def get_connection(local_path_override: Path | None = None) -> AsyncConnection:
    """Open a connection. The caller must close it."""
    if local_path_override is None and settings.turso_database_url:
        conn = await asyncio.to_thread(
            _open, settings.turso_database_url, settings.turso_auth_token
        )
        return AsyncConnection(conn)

    path = local_path_override or settings.database_path
    path.parent.mkdir(parents=True, exist_ok=True)
    return AsyncConnection(await asyncio.to_thread(_open, str(path)))


@asynccontextmanager
async def connection(local_path_override: Path | None = None) -> AsyncIterator[AsyncConnection]:
    """``get_connection`` as an async context manager that always closes."""
    db = await get_connection(local_path_override)
    try:
        yield db
    finally:
        await db.close()
