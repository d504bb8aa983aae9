"""Async libsql access for the relational memory tier.

``libsql`` is synchronous, so every call is pushed to a worker thread with
``asyncio.to_thread()``.  Where to connect is decided once, at startup:

- ``TURSO_DATABASE_URL`` (+ ``TURSO_AUTH_TOKEN``) → remote Turso database
- otherwise → local SQLite file at ``database_path``
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import libsql

from src.config import Settings, settings


@dataclass(frozen=True)
class DatabaseTarget:
    """Where the relational tier lives: a local file or a remote URL."""

    path: Path | None = None
    url: str = ""
    auth_token: str = ""

    @property
    def is_remote(self) -> bool:
        return bool(self.url)

    def describe(self) -> str:
        return self.url if self.is_remote else str(self.path)

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> DatabaseTarget:
        cfg = cfg or settings
        if cfg.turso_database_url:
            return cls(url=cfg.turso_database_url, auth_token=cfg.turso_auth_token)
        return cls(path=cfg.database_path)


class AsyncCursor:
    """Async view of a libsql cursor."""

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
    """Async view of a libsql connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: tuple = ()) -> AsyncCursor:
        cursor = await asyncio.to_thread(self._conn.execute, sql, params)
        return AsyncCursor(cursor)

    async def executescript(self, statements: list[str]) -> None:
        for sql in statements:
            await self.execute(sql)
        await self.commit()

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _open_local(path: Path) -> Any:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = libsql.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def _open(target: DatabaseTarget) -> Any:
    if target.is_remote:
        return libsql.connect(database=target.url, auth_token=target.auth_token)
    if target.path is None:
        raise ValueError("DatabaseTarget needs either a path or a url")
    return _open_local(target.path)


async def get_connection(target: DatabaseTarget | None = None) -> AsyncConnection:
    """Open a connection to *target* (defaults to the configured database)."""
    target = target or DatabaseTarget.from_settings()
    conn = await asyncio.to_thread(_open, target)
    return AsyncConnection(conn)


@asynccontextmanager
async def connection(target: DatabaseTarget | None = None) -> AsyncIterator[AsyncConnection]:
    """Open a connection for the duration of a ``async with`` block."""
    conn = await get_connection(target)
    try:
        yield conn
    finally:
        await conn.close()
