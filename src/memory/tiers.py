"""Tier selection with one-way demotion.

Whether a durable tier works is a property of the deployment (is the KV file
writable, is Turso reachable), so the first ``BackendUnavailable`` from the
active tier latches the selector onto the next one for the rest of the
process.  There is no retry or backoff; a restart builds a fresh selector that
starts at the top again.
"""

from __future__ import annotations

import logging
from enum import IntEnum

from src.memory.backends.base import TierBackend

logger = logging.getLogger(__name__)


class TierState(IntEnum):
    PREFER_PRIMARY = 0  # durable keyed store
    PREFER_SECONDARY = 1  # durable relational store
    PREFER_TERTIARY = 2  # no durable tier left, volatile cache only


class TierSelector:
    """Picks the authoritative durable tier.

    *durable* is the statically configured preference list (keyed store
    first, relational store second); ``None`` entries mark tiers that are
    not configured and are skipped.
    """

    def __init__(self, durable: list[TierBackend | None]) -> None:
        if len(durable) > TierState.PREFER_TERTIARY:
            raise ValueError(f"at most {int(TierState.PREFER_TERTIARY)} durable tiers supported")
        self._tiers = list(durable)
        self._position = 0
        self._skip_absent()

    def _skip_absent(self) -> None:
        while self._position < len(self._tiers) and self._tiers[self._position] is None:
            self._position += 1

    @property
    def state(self) -> TierState:
        if self._position >= len(self._tiers):
            return TierState.PREFER_TERTIARY
        return TierState(self._position)

    @property
    def active(self) -> TierBackend | None:
        """The current durable tier, or None once every tier has been demoted."""
        if self._position >= len(self._tiers):
            return None
        return self._tiers[self._position]

    @property
    def exhausted(self) -> bool:
        return self.active is None

    @property
    def backends(self) -> list[TierBackend]:
        return [t for t in self._tiers if t is not None]

    def demote(self, backend: TierBackend, reason: BaseException | None = None) -> TierBackend | None:
        """Move past *backend* for good. Returns the new active tier.

        Ignored when *backend* is no longer the active tier, so two callers
        reporting the same failure only demote once.
        """
        if backend is not self.active:
            return self.active
        self._position += 1
        self._skip_absent()
        nxt = self.active
        if nxt is None:
            logger.error(
                "Tier %s unavailable (%s); no durable tier left, using volatile cache only",
                backend.name,
                reason,
            )
        else:
            logger.warning(
                "Tier %s unavailable (%s); demoted to %s for this process",
                backend.name,
                reason,
                nxt.name,
            )
        return nxt
