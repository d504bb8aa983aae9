"""Tests for memory record and view models."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from src.memory.models import (
    AdminSnapshot,
    AggregateView,
    InteractionRecord,
    PromptValue,
    format_timestamp,
    is_prompt_set,
    make_record_id,
)

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


def _record(conversation_id: int = 1, sender_id: int = 10, offset: int = 0, **kwargs) -> InteractionRecord:
    defaults = {
        "display_name": "alice",
        "user_text": f"hi {offset}",
        "reply_text": f"hello {offset}",
        "created_at": T0 + timedelta(seconds=offset),
    }
    defaults.update(kwargs)
    return InteractionRecord(conversation_id=conversation_id, sender_id=sender_id, **defaults)


# -- InteractionRecord -------------------------------------------------------


def test_record_defaults() -> None:
    record = InteractionRecord(conversation_id=1, sender_id=2, user_text="a", reply_text="b")
    assert record.display_name is None
    assert record.created_at.tzinfo is not None
    assert record.record_id


def test_record_is_immutable() -> None:
    record = _record()
    with pytest.raises(ValidationError):
        record.user_text = "changed"


def test_record_accepts_64_bit_ids() -> None:
    record = _record(conversation_id=-(2**63), sender_id=2**63 - 1)
    assert record.conversation_id == -(2**63)


def test_record_rejects_ids_beyond_64_bits() -> None:
    with pytest.raises(ValidationError):
        _record(conversation_id=2**63)


def test_record_json_round_trip_keeps_timestamp() -> None:
    record = _record(created_at=datetime(2025, 1, 1, 12, 0, 0, 123456, tzinfo=UTC))
    restored = InteractionRecord.model_validate_json(record.model_dump_json())
    assert restored == record


def test_sort_key_breaks_ties_by_record_id() -> None:
    a = _record(record_id="a")
    b = _record(record_id="b")
    assert sorted([b, a], key=lambda r: r.sort_key) == [a, b]


# -- Helpers -----------------------------------------------------------------


def test_record_ids_sort_in_creation_order() -> None:
    ids = [make_record_id() for _ in range(200)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 200


def test_record_ids_follow_given_timestamp() -> None:
    same = [make_record_id(T0) for _ in range(50)]
    assert same == sorted(same)
    assert make_record_id(T0 - timedelta(seconds=1)) < same[0] < make_record_id(T0 + timedelta(microseconds=1))


def test_format_timestamp_is_fixed_width() -> None:
    whole = format_timestamp(datetime(2025, 1, 1, tzinfo=UTC))
    fractional = format_timestamp(datetime(2025, 1, 1, 0, 0, 0, 5, tzinfo=UTC))
    assert len(whole) == len(fractional)
    assert whole < fractional


# -- PromptValue -------------------------------------------------------------


def test_prompt_is_set() -> None:
    assert PromptValue(conversation_id=1, text="be brief").is_set
    assert not PromptValue(conversation_id=1, text="").is_set
    assert not PromptValue(conversation_id=1, text="   ").is_set


def test_is_prompt_set() -> None:
    assert is_prompt_set("x")
    assert not is_prompt_set(None)
    assert not is_prompt_set(" \t\n")


# -- AggregateView / AdminSnapshot -------------------------------------------


def test_aggregate_groups_and_orders_newest_first() -> None:
    records = [_record(1, offset=i) for i in range(3)] + [_record(2, sender_id=20, offset=9)]
    view = AggregateView.build(records, {1: "be brief"}, recent_limit=2)

    first = view.conversations[1]
    assert first.prompt == "be brief"
    assert first.total_messages == 3
    assert [r.user_text for r in first.recent] == ["hi 2", "hi 1"]
    assert view.conversations[2].prompt is None


def test_aggregate_includes_prompt_only_conversations() -> None:
    view = AggregateView.build([], {7: "x"}, recent_limit=10)
    assert view.conversations[7].total_messages == 0
    assert view.conversations[7].recent == []


def test_admin_snapshot_totals_and_aliases() -> None:
    records = [
        _record(1, sender_id=10, offset=0),
        _record(1, sender_id=11, offset=1),
        _record(2, sender_id=10, offset=2),
    ]
    snapshot = AdminSnapshot.from_aggregate(AggregateView.build(records, {}, recent_limit=10))

    assert snapshot.total_messages == 3
    assert snapshot.total_users == 2
    assert snapshot.total_chats == 2

    dumped = snapshot.model_dump(mode="json", by_alias=True)
    assert set(dumped) == {"totalMessages", "totalUsers", "totalChats", "chats"}
    chat = dumped["chats"]["1"]
    assert chat["totalMessages"] == 2
    assert chat["recentMessages"][0] == {
        "userId": 11,
        "username": "alice",
        "text": "hi 1",
        "response": "hello 1",
        "timestamp": format_timestamp(T0 + timedelta(seconds=1)),
    }


def test_empty_admin_snapshot() -> None:
    snapshot = AdminSnapshot.from_aggregate(AggregateView())
    assert snapshot.total_messages == 0
    assert snapshot.total_users == 0
    assert snapshot.chats == {}
