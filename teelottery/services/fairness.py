"""Monthly fairness bookkeeping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from teelottery.domain.models import MemberFairnessScore, utcnow
from teelottery.domain.repositories import FairnessScoreRepository

logger = logging.getLogger(__name__)

MAX_DAYS_COMPONENT = 30

# Outcomes that count as the member getting what they asked for. Restrictions
# never count against a member.
GRANTED_REASONS = ("PREFERRED_MATCH", "ALTERNATE_MATCH", "RESTRICTION")
TRACKED_REASONS = ("PREFERRED_MATCH", "ALTERNATE_MATCH", "NO_SPACE", "RESTRICTION")


@dataclass
class FairnessUpdate:
    member_id: int
    month: str
    granted: bool
    score_before: int
    score_after: int
    snapshot: Dict[str, Any]

    @property
    def delta(self) -> int:
        return self.score_after - self.score_before


def month_key(d: date) -> str:
    return d.strftime("%Y-%m")


def calculate_fairness_score(fulfillment_rate: float, days_without_good_time: int) -> int:
    """
    Fairness score from the month's fulfillment rate and the current dry spell.

    Low fulfillment adds 20 (below 50%) or 10 (below 70%); each day without a
    good time adds 2, capped at 30.
    """
    if fulfillment_rate < 0.5:
        rate_component = 20
    elif fulfillment_rate < 0.7:
        rate_component = 10
    else:
        rate_component = 0
    return rate_component + min(days_without_good_time * 2, MAX_DAYS_COMPONENT)


def is_preference_granted(reason: str) -> bool:
    return reason in GRANTED_REASONS


def _snapshot(row: MemberFairnessScore) -> Dict[str, Any]:
    return {
        "total_entries_month": row.total_entries_month,
        "preferences_granted_month": row.preferences_granted_month,
        "days_without_good_time": row.days_without_good_time,
        "fairness_score": row.fairness_score,
    }


def _recompute(row: MemberFairnessScore) -> None:
    if row.total_entries_month > 0:
        row.preference_fulfillment_rate = row.preferences_granted_month / row.total_entries_month
    else:
        row.preference_fulfillment_rate = 0.0
    if row.total_entries_month == 0 and row.days_without_good_time == 0:
        row.fairness_score = 0
    else:
        row.fairness_score = calculate_fairness_score(
            row.preference_fulfillment_rate, row.days_without_good_time
        )
    row.last_updated = utcnow()


def record_outcome(session: Session, member_id: int, lottery_date: date, granted: bool) -> FairnessUpdate:
    """
    Fold one lottery outcome into the member's row for the lottery month.

    Args:
        session: Database session (flushed, not committed)
        member_id: Organizer of the entry
        lottery_date: Date the entry was for; selects the month row
        granted: Whether the member's preference was honoured

    Returns:
        FairnessUpdate with before/after scores and the prior row values
    """
    month = month_key(lottery_date)
    row = FairnessScoreRepository.get_or_create(session, member_id, month)
    before = _snapshot(row)

    row.total_entries_month += 1
    if granted:
        row.preferences_granted_month += 1
        row.days_without_good_time = 0
    else:
        row.days_without_good_time += 1
    _recompute(row)
    session.flush()

    return FairnessUpdate(
        member_id=member_id,
        month=month,
        granted=granted,
        score_before=before["fairness_score"],
        score_after=row.fairness_score,
        snapshot=before,
    )


def revert_outcome(
    session: Session,
    member_id: int,
    lottery_date: date,
    granted: bool,
    snapshot: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Undo a previously recorded outcome.

    Counters are reversed by one. The dry-spell counter is restored from the
    snapshot taken when the outcome was recorded; outcomes recorded for later
    dates in between are not replayed.
    """
    row = FairnessScoreRepository.get(session, member_id, month_key(lottery_date))
    if row is None:
        logger.warning("No fairness row to revert for member %s on %s", member_id, lottery_date)
        return

    row.total_entries_month = max(0, row.total_entries_month - 1)
    if granted:
        row.preferences_granted_month = max(0, row.preferences_granted_month - 1)
    if snapshot is not None:
        row.days_without_good_time = snapshot.get("days_without_good_time", row.days_without_good_time)
    elif not granted:
        row.days_without_good_time = max(0, row.days_without_good_time - 1)
    _recompute(row)
    session.flush()
