"""Tests for the libsql connection helpers."""

from pathlib import Path

import pytest

from src.db import AsyncConnection, connection, get_connection

pytestmark = pytest.mark.usefixtures("_no_turso")


class TestGetConnection:
    async def test_returns_async_connection(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        assert isinstance(conn, AsyncConnection)
        await conn.close()

    async def test_creates_parent_dirs(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "dir" / "test.db"
        conn = await get_connection(local_path_override=db_path)
        assert db_path.parent.exists()
        await conn.close()

    async def test_falls_back_to_database_path(self, tmp_path: Path, monkeypatch):
        db_path = tmp_path / "data" / "gleni.db"
        monkeypatch.setattr("src.config.settings.database_path", db_path)
        async with connection() as conn:
            await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")
            await conn.commit()
        assert db_path.exists()

    async def test_explicit_path_wins_over_turso(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr("src.config.settings.turso_database_url", "libsql://example.turso.io")
        async with connection(tmp_path / "local.db") as conn:
            cursor = await conn.execute("SELECT 1")
            assert await cursor.fetchone() == (1,)


class TestAsyncConnection:
    async def test_execute_and_fetchone(self, tmp_path: Path):
        async with connection(tmp_path / "test.db") as conn:
            await conn.execute("CREATE TABLE movies (id INTEGER PRIMARY KEY, title TEXT)")
            await conn.execute("INSERT INTO movies (title) VALUES (?)", ("Heat",))
            await conn.commit()

            cursor = await conn.execute("SELECT title FROM movies WHERE id = 1")
            assert await cursor.fetchone() == ("Heat",)

    async def test_execute_script_runs_in_order(self, tmp_path: Path):
        async with connection(tmp_path / "test.db") as conn:
            await conn.execute_script([
                "CREATE TABLE IF NOT EXISTS a (id INTEGER PRIMARY KEY)",
                "CREATE TABLE IF NOT EXISTS b (id INTEGER PRIMARY KEY, a_id INTEGER REFERENCES a (id))",
            ])
            cursor = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
            )
            assert [r[0] for r in await cursor.fetchall()] == ["a", "b"]

    async def test_foreign_keys_enabled(self, tmp_path: Path):
        async with connection(tmp_path / "test.db") as conn:
            cursor = await conn.execute("PRAGMA foreign_keys")
            assert (await cursor.fetchone())[0] == 1

    async def test_rowcount(self, tmp_path: Path):
        async with connection(tmp_path / "test.db") as conn:
            await conn.execute("CREATE TABLE watched (id INTEGER PRIMARY KEY, title TEXT)")
            await conn.execute("INSERT INTO watched (title) VALUES (?)", ("Alien",))
            await conn.execute("INSERT INTO watched (title) VALUES (?)", ("Aliens",))
            await conn.commit()

            cursor = await conn.execute("DELETE FROM watched")
            assert cursor.rowcount == 2

    async def test_context_manager_closes_on_error(self, tmp_path: Path, monkeypatch):
        closed = []
        original = AsyncConnection.close

        async def _close(self):
            closed.append(True)
            await original(self)

        monkeypatch.setattr(AsyncConnection, "close", _close)
        with pytest.raises(RuntimeError):
            async with connection(tmp_path / "test.db"):
                raise RuntimeError("boom")
        assert closed == [True]
