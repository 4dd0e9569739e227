"""Tests for monthly fairness bookkeeping."""

import datetime as dt

import pytest

from teelottery.domain.repositories import FairnessScoreRepository
from teelottery.services.fairness import (
    calculate_fairness_score,
    is_preference_granted,
    month_key,
    record_outcome,
    revert_outcome,
)

JUNE = dt.date(2025, 6, 14)


@pytest.mark.parametrize(
    "rate,days,expected",
    [
        (1.0, 0, 0),
        (0.69, 0, 10),
        (0.5, 0, 10),
        (0.49, 0, 20),
        (0.0, 3, 26),
        (0.8, 20, 30),
    ],
)
def test_calculate_fairness_score(rate, days, expected):
    assert calculate_fairness_score(rate, days) == expected


def test_restriction_counts_as_granted():
    assert is_preference_granted("PREFERRED_MATCH")
    assert is_preference_granted("ALTERNATE_MATCH")
    assert is_preference_granted("RESTRICTION")
    assert not is_preference_granted("NO_SPACE")


def test_month_key():
    assert month_key(dt.date(2025, 1, 31)) == "2025-01"


def test_missed_preference_raises_score(db_session, members):
    update = record_outcome(db_session, 1, JUNE, granted=False)

    assert update.score_before == 0
    # 0% fulfillment (+20) and one dry day (+2)
    assert update.score_after == 22
    assert update.delta == 22

    row = FairnessScoreRepository.get(db_session, 1, "2025-06")
    assert row.total_entries_month == 1
    assert row.preferences_granted_month == 0
    assert row.days_without_good_time == 1


def test_granted_preference_resets_dry_spell(db_session, members):
    record_outcome(db_session, 1, JUNE, granted=False)
    record_outcome(db_session, 1, JUNE + dt.timedelta(days=1), granted=False)
    update = record_outcome(db_session, 1, JUNE + dt.timedelta(days=2), granted=True)

    row = FairnessScoreRepository.get(db_session, 1, "2025-06")
    assert row.total_entries_month == 3
    assert row.preferences_granted_month == 1
    assert row.days_without_good_time == 0
    assert row.preference_fulfillment_rate == pytest.approx(1 / 3)
    assert update.score_before == 24
    assert update.score_after == 20


def test_outcome_lands_in_lottery_month(db_session, members):
    record_outcome(db_session, 2, dt.date(2025, 7, 1), granted=True)

    assert FairnessScoreRepository.get(db_session, 2, "2025-06") is None
    assert FairnessScoreRepository.get(db_session, 2, "2025-07").total_entries_month == 1


def test_revert_restores_previous_values(db_session, members):
    record_outcome(db_session, 3, JUNE, granted=False)
    update = record_outcome(db_session, 3, JUNE + dt.timedelta(days=1), granted=True)

    revert_outcome(db_session, 3, JUNE + dt.timedelta(days=1), granted=True, snapshot=update.snapshot)

    row = FairnessScoreRepository.get(db_session, 3, "2025-06")
    assert row.total_entries_month == 1
    assert row.preferences_granted_month == 0
    assert row.days_without_good_time == 1
    assert row.fairness_score == 22


def test_revert_to_empty_row_scores_zero(db_session, members):
    update = record_outcome(db_session, 4, JUNE, granted=False)

    revert_outcome(db_session, 4, JUNE, granted=False, snapshot=update.snapshot)

    row = FairnessScoreRepository.get(db_session, 4, "2025-06")
    assert row.total_entries_month == 0
    assert row.fairness_score == 0


def test_revert_without_row_is_noop(db_session, members):
    revert_outcome(db_session, 5, JUNE, granted=True)

    assert FairnessScoreRepository.get(db_session, 5, "2025-06") is None
