"""Shared test fixtures."""

from pathlib import Path

import pytest

from src.history.store import HistoryStore


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")


@pytest.fixture
def history_store(tmp_path: Path, _no_turso) -> HistoryStore:
    """A HistoryStore on a temp database, installed as the singleton."""
    HistoryStore._reset()
    store = HistoryStore(db_path=tmp_path / "gleni.db")
    HistoryStore._instance = store
    yield store
    HistoryStore._reset()
