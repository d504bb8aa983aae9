"""In-process memory tier, lost on restart.

Sits in front of whichever durable tier is active as a read-through cache,
and is the last resort when every durable tier has been demoted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from src.memory import retention
from src.memory.backends.base import TierBackend
from src.memory.models import AggregateView, InteractionRecord

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
    """Cached history for one conversation."""

    records: list[InteractionRecord] = field(default_factory=list)
    # True once loaded from the durable tier, i.e. safe to answer reads from.
    complete: bool = False


class VolatileBackend(TierBackend):
    """Per-conversation buckets in a plain dict.

    No method awaits while touching a bucket, so under asyncio every
    operation is atomic and one conversation never waits on another.
    """

    name = "volatile"

    def __init__(self) -> None:
        self._buckets: dict[int, _Bucket] = {}
        self._prompts: dict[int, str] = {}

    def _bucket(self, conversation_id: int) -> _Bucket:
        bucket = self._buckets.get(conversation_id)
        if bucket is None:
            bucket = self._buckets[conversation_id] = _Bucket()
        return bucket

    # -- Cache bookkeeping -----------------------------------------------------

    def is_complete(self, conversation_id: int) -> bool:
        bucket = self._buckets.get(conversation_id)
        return bucket is not None and bucket.complete

    def hydrate(self, conversation_id: int, records: list[InteractionRecord]) -> None:
        """Replace the bucket with what the durable tier returned."""
        self._buckets[conversation_id] = _Bucket(records=list(records), complete=True)

    def invalidate(self, conversation_id: int) -> None:
        self._buckets.pop(conversation_id, None)

    def invalidate_all(self) -> None:
        """Forget every cached conversation and prompt."""
        self._buckets.clear()
        self._prompts.clear()

    # -- TierBackend -----------------------------------------------------------

    async def append(self, record: InteractionRecord) -> None:
        self._bucket(record.conversation_id).records.append(record)

    async def list_recent(self, conversation_id: int, limit: int) -> list[InteractionRecord]:
        bucket = self._buckets.get(conversation_id)
        if bucket is None:
            return []
        return retention.newest(bucket.records, limit)

    async def prune(self, conversation_id: int, keep: int) -> int:
        bucket = self._buckets.get(conversation_id)
        if bucket is None:
            return 0
        stale = retention.expired(bucket.records, keep)
        if stale:
            stale_ids = {r.record_id for r in stale}
            bucket.records = [r for r in bucket.records if r.record_id not in stale_ids]
        return len(stale)

    async def set_prompt(self, conversation_id: int, text: str) -> None:
        self._prompts[conversation_id] = text

    async def get_prompt(self, conversation_id: int) -> str | None:
        return self._prompts.get(conversation_id)

    async def clear_prompt(self, conversation_id: int) -> None:
        self._prompts.pop(conversation_id, None)

    async def aggregate(self, recent_limit: int) -> AggregateView:
        records = [r for bucket in self._buckets.values() for r in bucket.records]
        return AggregateView.build(records, dict(self._prompts), recent_limit)

    async def close(self) -> None:
        self.invalidate_all()
        logger.debug("Volatile cache cleared")
