"""Durable keyed tier — an ordered key/value table in SQLite via aiosqlite.

Keys are slash-separated paths whose components sort in the right order as
plain strings, so a prefix range scan returns a conversation's history
oldest first::

    chat/<conversation>/<created_at>/<record_id>  -> InteractionRecord JSON
    prompt/<conversation>                          -> PromptValue JSON

Conversation ids are shifted by 2**63 and zero-padded so negative ids
(group chats) sort correctly too.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import aiosqlite
from pydantic import ValidationError

from src.memory import retention
from src.memory.backends.base import TierBackend
from src.memory.errors import BackendCorrupt, BackendUnavailable
from src.memory.models import AggregateView, InteractionRecord, PromptValue

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

CHAT_PREFIX = "chat"
PROMPT_PREFIX = "prompt"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
) WITHOUT ROWID
"""

_ID_OFFSET = 2**63


def encode_id(conversation_id: int) -> str:
    return f"{conversation_id + _ID_OFFSET:020d}"


def decode_id(component: str) -> int:
    return int(component) - _ID_OFFSET


def chat_prefix(conversation_id: int | None = None) -> str:
    if conversation_id is None:
        return f"{CHAT_PREFIX}/"
    return f"{CHAT_PREFIX}/{encode_id(conversation_id)}/"


def record_key(record: InteractionRecord) -> str:
    return f"{chat_prefix(record.conversation_id)}{record.timestamp}/{record.record_id}"


def prompt_key(conversation_id: int) -> str:
    return f"{PROMPT_PREFIX}/{encode_id(conversation_id)}"


def _prefix_end(prefix: str) -> str:
    """Smallest string greater than every string starting with *prefix*."""
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class KeyedBackend(TierBackend):
    """Ordered KV tier persisted to a local SQLite file.

    Opens a connection per operation.  Pass an explicit *db_path* for test
    isolation (e.g. ``tmp_path / "kv.db"``).
    """

    name = "keyed"

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    @asynccontextmanager
    async def _connect(self, action: str) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection; driver failures become tier errors."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(str(self._db_path)) as db:
                if not self._initialised:
                    await db.execute(_CREATE_TABLE)
                    await db.commit()
                    self._initialised = True
                yield db
        except (sqlite3.OperationalError, OSError) as exc:
            raise BackendUnavailable(self.name, f"{action}: {exc}") from exc
        except sqlite3.DatabaseError as exc:
            raise BackendCorrupt(self.name, f"{action}: {exc}") from exc

    async def _scan(self, db: aiosqlite.Connection, prefix: str) -> list[tuple[str, str]]:
        cursor = await db.execute(
            "SELECT key, value FROM kv WHERE key >= ? AND key < ? ORDER BY key",
            (prefix, _prefix_end(prefix)),
        )
        return list(await cursor.fetchall())

    def _decode_record(self, key: str, value: str) -> InteractionRecord:
        try:
            return InteractionRecord.model_validate_json(value)
        except ValidationError as exc:
            logger.exception("Unreadable record under %s", key)
            raise BackendCorrupt(self.name, f"unreadable record {key}") from exc

    def _decode_prompt(self, key: str, value: str) -> PromptValue:
        try:
            return PromptValue.model_validate_json(value)
        except ValidationError as exc:
            logger.exception("Unreadable prompt under %s", key)
            raise BackendCorrupt(self.name, f"unreadable prompt {key}") from exc

    # -- Records ---------------------------------------------------------------

    async def append(self, record: InteractionRecord) -> None:
        async with self._connect("append") as db:
            await db.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (record_key(record), record.model_dump_json()),
            )
            await db.commit()

    async def list_recent(self, conversation_id: int, limit: int) -> list[InteractionRecord]:
        if limit <= 0:
            return []
        prefix = chat_prefix(conversation_id)
        async with self._connect("list_recent") as db:
            cursor = await db.execute(
                "SELECT key, value FROM kv WHERE key >= ? AND key < ? ORDER BY key DESC LIMIT ?",
                (prefix, _prefix_end(prefix), limit),
            )
            rows = await cursor.fetchall()
        return [self._decode_record(key, value) for key, value in reversed(rows)]

    async def prune(self, conversation_id: int, keep: int) -> int:
        async with self._connect("prune") as db:
            rows = await self._scan(db, chat_prefix(conversation_id))
            if len(rows) <= keep:
                return 0
            snapshot = [self._decode_record(key, value) for key, value in rows]
            stale = retention.expired(snapshot, keep)
            await db.executemany(
                "DELETE FROM kv WHERE key = ?", [(record_key(r),) for r in stale]
            )
            await db.commit()
        return len(stale)

    # -- Prompts ---------------------------------------------------------------

    async def set_prompt(self, conversation_id: int, text: str) -> None:
        value = PromptValue(conversation_id=conversation_id, text=text)
        async with self._connect("set_prompt") as db:
            await db.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (prompt_key(conversation_id), value.model_dump_json()),
            )
            await db.commit()

    async def get_prompt(self, conversation_id: int) -> str | None:
        key = prompt_key(conversation_id)
        async with self._connect("get_prompt") as db:
            cursor = await db.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return self._decode_prompt(key, row[0]).text

    async def clear_prompt(self, conversation_id: int) -> None:
        async with self._connect("clear_prompt") as db:
            await db.execute("DELETE FROM kv WHERE key = ?", (prompt_key(conversation_id),))
            await db.commit()

    # -- Admin -----------------------------------------------------------------

    async def aggregate(self, recent_limit: int) -> AggregateView:
        async with self._connect("aggregate") as db:
            record_rows = await self._scan(db, chat_prefix())
            prompt_rows = await self._scan(db, f"{PROMPT_PREFIX}/")

        records = [self._decode_record(key, value) for key, value in record_rows]
        prompts: dict[int, str] = {}
        for key, value in prompt_rows:
            prompt = self._decode_prompt(key, value)
            prompts[prompt.conversation_id] = prompt.text
        return AggregateView.build(records, prompts, recent_limit)
