"""Conversation memory store — the single entry point for history and prompts.

Writes go to the active durable tier first (authoritative), then to the
volatile cache.  Reads go through the cache when it holds a complete copy of
the conversation, otherwise to the durable tier, which refills the cache.

Failure handling:
- ``BackendUnavailable`` demotes the tier and the call is retried on the next
  one.  When no durable tier is left the cache serves as a degraded store.
- ``BackendCorrupt`` fails the call without demoting.  Writes report it as
  ``False``; reads raise it.
- Write methods never raise ``BackendError``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from src.memory.backends.base import TierBackend
from src.memory.backends.volatile import VolatileBackend
from src.memory.errors import BackendCorrupt, BackendError, BackendUnavailable
from src.memory.models import AdminSnapshot, InteractionRecord, is_prompt_set, make_record_id, utc_now
from src.memory.retention import DEFAULT_KEEP, RetentionPolicy
from src.memory.tiers import TierSelector

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ADMIN_RECENT_LIMIT = 10


@dataclass
class _ConversationLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class MemoryStore:
    """Bounded per-conversation history and prompts over a chain of tiers.

    Built once by the composition root (see ``src.memory.factory``) and passed
    to whoever needs it.

    Per-conversation locks exist only while a call for that conversation is
    running or waiting, so idle conversations cost nothing here.
    """

    def __init__(
        self,
        durable: list[TierBackend | None],
        cache: VolatileBackend | None = None,
        retention: RetentionPolicy | None = None,
        admin_recent_limit: int = DEFAULT_ADMIN_RECENT_LIMIT,
    ) -> None:
        self._selector = TierSelector(durable)
        self._cache = cache if cache is not None else VolatileBackend()
        self._retention = retention or RetentionPolicy()
        self._admin_recent_limit = admin_recent_limit
        self._locks: dict[int, _ConversationLock] = {}
        self._last_created: datetime | None = None

    @property
    def selector(self) -> TierSelector:
        return self._selector

    @property
    def keep(self) -> int:
        return self._retention.keep

    # -- Internal helpers ------------------------------------------------------

    @asynccontextmanager
    async def _lock(self, conversation_id: int) -> AsyncIterator[None]:
        """Serialise calls for one conversation; the entry is dropped when unused."""
        entry = self._locks.get(conversation_id)
        if entry is None:
            entry = self._locks[conversation_id] = _ConversationLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[conversation_id]

    def _next_timestamp(self) -> datetime:
        """Current time, never earlier than any record this process created.

        Clamping across all conversations keeps each conversation ordered even
        if the wall clock steps back.
        """
        now = utc_now()
        if self._last_created is not None and now < self._last_created:
            now = self._last_created
        self._last_created = now
        return now

    async def _on_durable(self, action: str, op: Callable[[TierBackend], Awaitable[T]]) -> T:
        """Run *op* on the active durable tier, demoting past unreachable ones.

        Raises ``BackendUnavailable`` once no durable tier is left.  After a
        demotion to another durable tier the cache is dropped, since it mirrored
        the demoted one; with no durable tier left it is kept as the last copy.
        """
        demoted = False
        try:
            while (backend := self._selector.active) is not None:
                try:
                    return await op(backend)
                except BackendUnavailable as exc:
                    self._selector.demote(backend, exc)
                    demoted = True
            raise BackendUnavailable("durable", f"{action}: no durable tier available")
        finally:
            if demoted and self._selector.active is not None:
                self._cache.invalidate_all()

    async def _cache_call(self, action: str, op: Callable[[VolatileBackend], Awaitable[Any]]) -> None:
        """Best-effort cache update; failures are logged, never raised."""
        try:
            await op(self._cache)
        except BackendError:
            logger.warning("Cache %s failed", action, exc_info=True)

    async def _append_and_prune(self, backend: TierBackend, record: InteractionRecord) -> None:
        await backend.append(record)
        try:
            await self._retention.apply(backend, record.conversation_id)
        except BackendCorrupt:
            # The record is stored; the window is enforced again on the next write.
            logger.exception(
                "Retention failed for conversation %s on %s",
                record.conversation_id,
                backend.name,
            )

    # -- Records ---------------------------------------------------------------

    async def record_interaction(
        self,
        conversation_id: int,
        sender_id: int,
        display_name: str | None,
        user_text: str,
        reply_text: str,
    ) -> bool:
        """Persist one interaction and enforce the retention window.

        Returns True when the authoritative durable tier stored the record.
        The cache write is best-effort and does not affect the result.
        """
        async with self._lock(conversation_id):
            created_at = self._next_timestamp()
            record = InteractionRecord(
                conversation_id=conversation_id,
                sender_id=sender_id,
                display_name=display_name,
                user_text=user_text,
                reply_text=reply_text,
                created_at=created_at,
                record_id=make_record_id(created_at),
            )

            try:
                await self._on_durable("append", lambda b: self._append_and_prune(b, record))
            except BackendUnavailable:
                logger.error(
                    "Interaction for conversation %s kept in volatile cache only",
                    conversation_id,
                )
                await self._cache_call("append", lambda c: self._cache_append(c, record))
                return False
            except BackendCorrupt:
                logger.exception("Failed to persist interaction for conversation %s", conversation_id)
                self._cache.invalidate(conversation_id)
                return False

            if self._cache.is_complete(conversation_id):
                await self._cache_call("append", lambda c: self._cache_append(c, record))
            return True

    async def _cache_append(self, cache: VolatileBackend, record: InteractionRecord) -> None:
        await cache.append(record)
        await self._retention.apply(cache, record.conversation_id)

    async def history(self, conversation_id: int, limit: int = DEFAULT_KEEP) -> list[InteractionRecord]:
        """Return the newest *limit* records, oldest first.

        Raises ``BackendCorrupt`` if the durable tier holds unreadable data.
        """
        if limit <= 0:
            return []

        async with self._lock(conversation_id):
            if self._cache.is_complete(conversation_id) or self._selector.exhausted:
                return await self._cache.list_recent(conversation_id, limit)

            fetch = max(limit, self.keep)
            try:
                records = await self._on_durable(
                    "list_recent", lambda b: b.list_recent(conversation_id, fetch)
                )
            except BackendUnavailable:
                logger.warning("No durable tier for conversation %s, serving cache", conversation_id)
                return await self._cache.list_recent(conversation_id, limit)

            self._cache.hydrate(conversation_id, records)
            return records[-limit:]

    async def build_context(self, conversation_id: int, window_size: int = DEFAULT_KEEP) -> list[str]:
        """Context lines for the model, oldest interaction first.

        Each record contributes ``"User: ..."`` followed by ``"Assistant: ..."``.
        """
        lines: list[str] = []
        for record in await self.history(conversation_id, window_size):
            lines.append(f"User: {record.user_text}")
            lines.append(f"Assistant: {record.reply_text}")
        return lines

    async def format_context(self, conversation_id: int, window_size: int = DEFAULT_KEEP) -> str:
        """``build_context`` joined into the newline-separated prompt text."""
        return "\n".join(await self.build_context(conversation_id, window_size))

    # -- Prompts ---------------------------------------------------------------

    async def set_prompt(self, conversation_id: int, text: str) -> bool:
        """Insert or replace the prompt. Returns True when stored durably."""
        async with self._lock(conversation_id):
            try:
                await self._on_durable("set_prompt", lambda b: b.set_prompt(conversation_id, text))
            except BackendUnavailable:
                logger.error("Prompt for conversation %s kept in volatile cache only", conversation_id)
                await self._cache_call("set_prompt", lambda c: c.set_prompt(conversation_id, text))
                return False
            except BackendCorrupt:
                logger.exception("Failed to store prompt for conversation %s", conversation_id)
                await self._cache_call("clear_prompt", lambda c: c.clear_prompt(conversation_id))
                return False

            await self._cache_call("set_prompt", lambda c: c.set_prompt(conversation_id, text))
            logger.info("Prompt set for conversation %s", conversation_id)
            return True

    async def get_prompt(self, conversation_id: int) -> str | None:
        """Return the prompt, or None when no prompt is set.

        Checks the cache first and falls back to the durable tier on a miss.
        Raises ``BackendCorrupt`` if the stored prompt is unreadable.
        """
        cached = await self._cache.get_prompt(conversation_id)
        if cached is not None:
            return cached if is_prompt_set(cached) else None
        if self._selector.exhausted:
            return None

        try:
            value = await self._on_durable("get_prompt", lambda b: b.get_prompt(conversation_id))
        except BackendUnavailable:
            return None

        if value is not None:
            await self._cache_call("set_prompt", lambda c: c.set_prompt(conversation_id, value))
        return value if is_prompt_set(value) else None

    async def clear_prompt(self, conversation_id: int) -> bool:
        """Remove the prompt. Returns True when removed from the durable tier."""
        async with self._lock(conversation_id):
            await self._cache_call("clear_prompt", lambda c: c.clear_prompt(conversation_id))
            try:
                await self._on_durable("clear_prompt", lambda b: b.clear_prompt(conversation_id))
            except BackendUnavailable:
                logger.error("Prompt for conversation %s cleared from cache only", conversation_id)
                return False
            except BackendCorrupt:
                logger.exception("Failed to clear prompt for conversation %s", conversation_id)
                return False
            logger.info("Prompt cleared for conversation %s", conversation_id)
            return True

    # -- Admin -----------------------------------------------------------------

    async def admin_snapshot(self) -> AdminSnapshot:
        """Operator view across every conversation on the active tier.

        Not used for context building.  Raises ``BackendCorrupt`` on
        unreadable data.
        """
        limit = self._admin_recent_limit
        try:
            view = await self._on_durable("aggregate", lambda b: b.aggregate(limit))
        except BackendUnavailable:
            view = await self._cache.aggregate(limit)
        return AdminSnapshot.from_aggregate(view)

    def status(self) -> dict[str, Any]:
        """Which tier is serving, for health checks."""
        active = self._selector.active
        return {
            "state": self._selector.state.name.lower(),
            "active_tier": active.name if active else self._cache.name,
            "configured_tiers": [b.name for b in self._selector.backends],
        }

    async def close(self) -> None:
        for backend in [*self._selector.backends, self._cache]:
            await backend.close()
