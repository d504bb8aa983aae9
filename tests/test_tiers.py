"""Tests for the tier selector's one-way demotion."""

import logging

import pytest

from src.memory.tiers import TierSelector, TierState


def test_starts_at_primary(make_flaky) -> None:
    keyed, relational = make_flaky("keyed"), make_flaky("relational")
    selector = TierSelector([keyed, relational])
    assert selector.state is TierState.PREFER_PRIMARY
    assert selector.active is keyed
    assert not selector.exhausted


def test_skips_unconfigured_primary(make_flaky) -> None:
    relational = make_flaky("relational")
    selector = TierSelector([None, relational])
    assert selector.state is TierState.PREFER_SECONDARY
    assert selector.active is relational


def test_no_durable_tiers_is_exhausted() -> None:
    selector = TierSelector([None, None])
    assert selector.state is TierState.PREFER_TERTIARY
    assert selector.active is None
    assert selector.exhausted


def test_demote_walks_down_and_latches(make_flaky) -> None:
    keyed, relational = make_flaky("keyed"), make_flaky("relational")
    selector = TierSelector([keyed, relational])

    assert selector.demote(keyed) is relational
    assert selector.state is TierState.PREFER_SECONDARY

    assert selector.demote(relational) is None
    assert selector.state is TierState.PREFER_TERTIARY
    assert selector.exhausted


def test_demote_of_inactive_tier_is_ignored(make_flaky) -> None:
    keyed, relational = make_flaky("keyed"), make_flaky("relational")
    selector = TierSelector([keyed, relational])
    selector.demote(keyed)

    # A late failure report from the already-demoted tier changes nothing.
    assert selector.demote(keyed) is relational
    assert selector.state is TierState.PREFER_SECONDARY


def test_fresh_selector_starts_over(make_flaky) -> None:
    keyed, relational = make_flaky("keyed"), make_flaky("relational")
    TierSelector([keyed, relational]).demote(keyed)

    assert TierSelector([keyed, relational]).active is keyed


def test_backends_lists_configured_only(make_flaky) -> None:
    relational = make_flaky("relational")
    assert TierSelector([None, relational]).backends == [relational]


def test_too_many_tiers_rejected(make_flaky) -> None:
    with pytest.raises(ValueError):
        TierSelector([make_flaky("a"), make_flaky("b"), make_flaky("c")])


def test_demotion_is_logged(make_flaky, caplog: pytest.LogCaptureFixture) -> None:
    keyed, relational = make_flaky("keyed"), make_flaky("relational")
    selector = TierSelector([keyed, relational])

    with caplog.at_level(logging.WARNING, logger="src.memory.tiers"):
        selector.demote(keyed, RuntimeError("boom"))
        selector.demote(relational)

    assert "demoted to relational" in caplog.text
    assert "no durable tier left" in caplog.text
