"""Shared test fixtures."""

from pathlib import Path

import pytest

from src.db import DatabaseTarget
from src.memory.backends.keyed import KeyedBackend
from src.memory.backends.relational import RelationalBackend
from src.memory.backends.volatile import VolatileBackend
from src.memory.errors import BackendCorrupt, BackendUnavailable
from src.memory.models import AggregateView, InteractionRecord


class FlakyBackend(VolatileBackend):
    """In-memory tier that can be switched to fail like a durable one.

    ``down`` makes every call raise ``BackendUnavailable``; ``corrupt`` makes
    every call raise ``BackendCorrupt``.  ``calls`` counts attempted calls.
    """

    def __init__(self, name: str) -> None:
        super().__init__()
        self.name = name
        self.down = False
        self.corrupt = False
        self.calls = 0

    def _check(self) -> None:
        self.calls += 1
        if self.down:
            raise BackendUnavailable(self.name, "connection refused")
        if self.corrupt:
            raise BackendCorrupt(self.name, "unreadable payload")

    async def append(self, record: InteractionRecord) -> None:
        self._check()
        await super().append(record)

    async def list_recent(self, conversation_id: int, limit: int) -> list[InteractionRecord]:
        self._check()
        return await super().list_recent(conversation_id, limit)

    async def prune(self, conversation_id: int, keep: int) -> int:
        self._check()
        return await super().prune(conversation_id, keep)

    async def set_prompt(self, conversation_id: int, text: str) -> None:
        self._check()
        await super().set_prompt(conversation_id, text)

    async def get_prompt(self, conversation_id: int) -> str | None:
        self._check()
        return await super().get_prompt(conversation_id)

    async def clear_prompt(self, conversation_id: int) -> None:
        self._check()
        await super().clear_prompt(conversation_id)

    async def aggregate(self, recent_limit: int) -> AggregateView:
        self._check()
        return await super().aggregate(recent_limit)


@pytest.fixture
def make_flaky():
    """Factory for ``FlakyBackend`` instances."""
    return FlakyBackend


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")


@pytest.fixture
def keyed(tmp_path: Path) -> KeyedBackend:
    """Keyed tier backed by a temp SQLite file."""
    return KeyedBackend(tmp_path / "kv.db")


@pytest.fixture
def relational(tmp_path: Path) -> RelationalBackend:
    """Relational tier backed by a temp libsql file."""
    return RelationalBackend(DatabaseTarget(path=tmp_path / "memory.db"))
