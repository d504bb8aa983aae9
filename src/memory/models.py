"""Data models for conversation memory storage."""

from __future__ import annotations

import itertools
import time
import uuid
from datetime import UTC, datetime, timedelta
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Conversation and sender ids must fit a signed 64-bit column.
Int64 = Annotated[int, Field(ge=-(2**63), le=2**63 - 1)]

_sequence = itertools.count()
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Fixed-width ISO 8601 so string order matches time order."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def is_prompt_set(text: str | None) -> bool:
    """Blank or whitespace-only prompt text counts as no prompt."""
    return bool(text and text.strip())


def make_record_id(created_at: datetime | None = None) -> str:
    """Generate a record ID that sorts in creation order within a process.

    Microseconds since the epoch (from *created_at* when given, else the
    clock), then a process-wide sequence for ties, then random bits so ids
    stay unique across processes.  Pass the record's own timestamp when it
    was clamped, so the id cannot sort before an earlier record's.
    """
    if created_at is None:
        micros = time.time_ns() // 1000
    else:
        micros = (created_at.astimezone(UTC) - _EPOCH) // timedelta(microseconds=1)
    return f"{micros:014x}{next(_sequence) % 0x100000000:08x}{uuid.uuid4().hex[:8]}"


class InteractionRecord(BaseModel):
    """One processed message: what the user said and what was replied.

    Records are immutable; the retention policy is the only thing that
    removes them.
    """

    model_config = ConfigDict(frozen=True)

    conversation_id: Int64
    sender_id: Int64
    display_name: str | None = None
    user_text: str
    reply_text: str
    created_at: datetime = Field(default_factory=utc_now)
    record_id: str = Field(default_factory=make_record_id)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Retention order: timestamp, then record_id for ties."""
        return (self.created_at, self.record_id)

    @property
    def timestamp(self) -> str:
        return format_timestamp(self.created_at)


class PromptValue(BaseModel):
    """Per-conversation prompt. Empty text means no prompt is set."""

    model_config = ConfigDict(frozen=True)

    conversation_id: Int64
    text: str = ""
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_set(self) -> bool:
        return is_prompt_set(self.text)


class ConversationAggregate(BaseModel):
    """What a single tier knows about one conversation."""

    prompt: str | None = None
    total_messages: int = 0
    sender_ids: frozenset[int] = frozenset()
    recent: list[InteractionRecord] = Field(default_factory=list)  # newest first


class AggregateView(BaseModel):
    """Every conversation known to a tier."""

    conversations: dict[int, ConversationAggregate] = Field(default_factory=dict)

    @classmethod
    def build(
        cls,
        records: list[InteractionRecord],
        prompts: dict[int, str],
        recent_limit: int,
    ) -> AggregateView:
        """Group a flat record snapshot plus prompts into per-conversation aggregates."""
        grouped: dict[int, list[InteractionRecord]] = {}
        for record in records:
            grouped.setdefault(record.conversation_id, []).append(record)

        conversations: dict[int, ConversationAggregate] = {}
        for conversation_id in sorted(set(grouped) | set(prompts)):
            history = sorted(grouped.get(conversation_id, []), key=lambda r: r.sort_key)
            newest = history[-recent_limit:] if recent_limit > 0 else []
            conversations[conversation_id] = ConversationAggregate(
                prompt=prompts.get(conversation_id),
                total_messages=len(history),
                sender_ids=frozenset(r.sender_id for r in history),
                recent=list(reversed(newest)),
            )
        return cls(conversations=conversations)


# -- Operator view -----------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecentMessage(_CamelModel):
    user_id: int
    username: str | None
    text: str
    response: str
    timestamp: str

    @classmethod
    def from_record(cls, record: InteractionRecord) -> RecentMessage:
        return cls(
            user_id=record.sender_id,
            username=record.display_name,
            text=record.user_text,
            response=record.reply_text,
            timestamp=record.timestamp,
        )


class ChatSummary(_CamelModel):
    prompt: str | None
    total_messages: int
    recent_messages: list[RecentMessage]


class AdminSnapshot(_CamelModel):
    """Aggregate view rendered by the operator ``/admin`` endpoint."""

    total_messages: int = 0
    total_users: int = 0
    total_chats: int = 0
    chats: dict[str, ChatSummary] = Field(default_factory=dict)

    @classmethod
    def from_aggregate(cls, view: AggregateView) -> AdminSnapshot:
        senders: set[int] = set()
        chats: dict[str, ChatSummary] = {}
        for conversation_id, agg in view.conversations.items():
            senders |= agg.sender_ids
            chats[str(conversation_id)] = ChatSummary(
                prompt=agg.prompt,
                total_messages=agg.total_messages,
                recent_messages=[RecentMessage.from_record(r) for r in agg.recent],
            )
        return cls(
            total_messages=sum(c.total_messages for c in view.conversations.values()),
            total_users=len(senders),
            total_chats=len(view.conversations),
            chats=chats,
        )
