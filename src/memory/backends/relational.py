"""Durable relational tier — conversation rows in libsql (local file or Turso)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from pydantic import ValidationError

from src.db import AsyncConnection, DatabaseTarget, connection
from src.memory import retention
from src.memory.backends.base import TierBackend
from src.memory.errors import BackendCorrupt, BackendUnavailable
from src.memory.models import AggregateView, InteractionRecord, format_timestamp, utc_now

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id           TEXT PRIMARY KEY,
        chat_id      INTEGER NOT NULL,
        user_id      INTEGER NOT NULL,
        username     TEXT,
        user_message TEXT NOT NULL,
        bot_reply    TEXT NOT NULL,
        created_at   TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conversations_chat_id ON conversations(chat_id)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_created_at ON conversations(created_at)",
    """
    CREATE TABLE IF NOT EXISTS chat_prompts (
        chat_id    INTEGER PRIMARY KEY,
        prompt     TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
]

_COLUMNS = "id, chat_id, user_id, username, user_message, bot_reply, created_at"

# SQLite messages for a damaged file; everything else from the driver is
# treated as the tier being unreachable.
_CORRUPT_MARKERS = ("not a database", "malformed")


class RelationalBackend(TierBackend):
    """Row-oriented tier used when the keyed store is absent or down.

    Opens a connection per operation through ``src.db``.  Pass an explicit
    *target* for test isolation (e.g. ``DatabaseTarget(path=tmp_path / "t.db")``).
    """

    name = "relational"

    def __init__(self, target: DatabaseTarget | None = None) -> None:
        self._target = target or DatabaseTarget.from_settings()
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    @asynccontextmanager
    async def _connect(self, action: str) -> AsyncIterator[AsyncConnection]:
        """Yield a connection; driver failures become tier errors."""
        try:
            async with connection(self._target) as db:
                if not self._initialised:
                    await db.executescript(_SCHEMA)
                    self._initialised = True
                yield db
        except BackendCorrupt:
            raise
        except Exception as exc:
            # libsql reports network, auth and file errors without a common base
            if any(marker in str(exc).lower() for marker in _CORRUPT_MARKERS):
                raise BackendCorrupt(self.name, f"{action}: {exc}") from exc
            raise BackendUnavailable(self.name, f"{action}: {exc}") from exc

    def _decode(self, row: tuple) -> InteractionRecord:
        try:
            return InteractionRecord(
                record_id=row[0],
                conversation_id=row[1],
                sender_id=row[2],
                display_name=row[3],
                user_text=row[4],
                reply_text=row[5],
                created_at=datetime.fromisoformat(row[6]),
            )
        except (ValidationError, ValueError, TypeError, IndexError) as exc:
            logger.exception("Unreadable conversation row: %r", row[:1])
            raise BackendCorrupt(self.name, "unreadable conversation row") from exc

    # -- Records ---------------------------------------------------------------

    async def append(self, record: InteractionRecord) -> None:
        async with self._connect("append") as db:
            await db.execute(
                f"INSERT INTO conversations ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    record.record_id,
                    record.conversation_id,
                    record.sender_id,
                    record.display_name,
                    record.user_text,
                    record.reply_text,
                    record.timestamp,
                ),
            )
            await db.commit()

    async def list_recent(self, conversation_id: int, limit: int) -> list[InteractionRecord]:
        if limit <= 0:
            return []
        async with self._connect("list_recent") as db:
            cursor = await db.execute(
                f"""
                SELECT {_COLUMNS} FROM conversations
                WHERE chat_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            )
            rows = await cursor.fetchall()
        return [self._decode(row) for row in reversed(rows)]

    async def prune(self, conversation_id: int, keep: int) -> int:
        async with self._connect("prune") as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM conversations WHERE chat_id = ?",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
            if len(rows) <= keep:
                return 0
            stale = retention.expired([self._decode(row) for row in rows], keep)
            placeholders = ", ".join("?" for _ in stale)
            await db.execute(
                f"DELETE FROM conversations WHERE chat_id = ? AND id IN ({placeholders})",
                (conversation_id, *(r.record_id for r in stale)),
            )
            await db.commit()
        return len(stale)

    # -- Prompts ---------------------------------------------------------------

    async def set_prompt(self, conversation_id: int, text: str) -> None:
        async with self._connect("set_prompt") as db:
            await db.execute(
                """
                INSERT INTO chat_prompts (chat_id, prompt, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(chat_id) DO UPDATE SET
                    prompt = excluded.prompt,
                    updated_at = excluded.updated_at
                """,
                (conversation_id, text, format_timestamp(utc_now())),
            )
            await db.commit()

    async def get_prompt(self, conversation_id: int) -> str | None:
        async with self._connect("get_prompt") as db:
            cursor = await db.execute(
                "SELECT prompt FROM chat_prompts WHERE chat_id = ?", (conversation_id,)
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def clear_prompt(self, conversation_id: int) -> None:
        async with self._connect("clear_prompt") as db:
            await db.execute("DELETE FROM chat_prompts WHERE chat_id = ?", (conversation_id,))
            await db.commit()

    # -- Admin -----------------------------------------------------------------

    async def aggregate(self, recent_limit: int) -> AggregateView:
        async with self._connect("aggregate") as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM conversations ORDER BY created_at, id"
            )
            rows = await cursor.fetchall()
            cursor = await db.execute("SELECT chat_id, prompt FROM chat_prompts")
            prompt_rows = await cursor.fetchall()

        records = [self._decode(row) for row in rows]
        prompts = {int(chat_id): prompt for chat_id, prompt in prompt_rows}
        return AggregateView.build(records, prompts, recent_limit)
