"""Retention policy: keep only the newest K interactions per conversation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.memory.models import InteractionRecord

if TYPE_CHECKING:
    from src.memory.backends.base import TierBackend

logger = logging.getLogger(__name__)

DEFAULT_KEEP = 5


def expired(records: list[InteractionRecord], keep: int) -> list[InteractionRecord]:
    """Return the records that fall outside the newest *keep*.

    Ordered by ``created_at`` ascending; equal timestamps fall back to the
    lexicographically smaller ``record_id`` being older.  Works on a snapshot
    and never suspends.
    """
    if keep < 0:
        raise ValueError(f"keep must be >= 0, got {keep}")
    ordered = sorted(records, key=lambda r: r.sort_key)
    if len(ordered) <= keep:
        return []
    return ordered[: len(ordered) - keep]


def newest(records: list[InteractionRecord], limit: int) -> list[InteractionRecord]:
    """The newest *limit* records, oldest first."""
    if limit <= 0:
        return []
    return sorted(records, key=lambda r: r.sort_key)[-limit:]


class RetentionPolicy:
    """Applies the fixed retention window after every write."""

    def __init__(self, keep: int = DEFAULT_KEEP) -> None:
        if keep < 1:
            raise ValueError(f"retention window must be >= 1, got {keep}")
        self.keep = keep

    async def apply(self, backend: TierBackend, conversation_id: int) -> int:
        """Prune *conversation_id* on *backend*. Returns the number of records removed."""
        removed = await backend.prune(conversation_id, self.keep)
        if removed:
            logger.debug(
                "Pruned %d record(s) for conversation %s on %s",
                removed,
                conversation_id,
                backend.name,
            )
        return removed
