"""Uniform contract every storage tier implements."""

from abc import ABC, abstractmethod

from src.memory.models import AggregateView, InteractionRecord


class TierBackend(ABC):
    """Abstract base for a storage tier.

    All methods are keyed by conversation id and may raise
    ``BackendUnavailable`` or ``BackendCorrupt``.  Absence is reported as an
    empty list or ``None``, never as an error.

    Example::

        class MyTier(TierBackend):
            name = "my-tier"

            async def append(self, record: InteractionRecord) -> None:
                ...
    """

    name: str = ""

    @abstractmethod
    async def append(self, record: InteractionRecord) -> None:
        """Store one record."""

    @abstractmethod
    async def list_recent(self, conversation_id: int, limit: int) -> list[InteractionRecord]:
        """Return up to *limit* newest records, ordered oldest → newest."""

    @abstractmethod
    async def prune(self, conversation_id: int, keep: int) -> int:
        """Delete all but the newest *keep* records. Returns how many were removed."""

    @abstractmethod
    async def set_prompt(self, conversation_id: int, text: str) -> None:
        """Insert or replace the conversation's prompt."""

    @abstractmethod
    async def get_prompt(self, conversation_id: int) -> str | None:
        """Return the prompt, or None if none is stored."""

    @abstractmethod
    async def clear_prompt(self, conversation_id: int) -> None:
        """Remove the prompt. A no-op when there is none."""

    @abstractmethod
    async def aggregate(self, recent_limit: int) -> AggregateView:
        """Summarise every conversation this tier holds."""

    async def close(self) -> None:  # noqa: B027
        """Release connections. Default: nothing to release."""
