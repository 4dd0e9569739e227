"""Priority scoring for lottery entries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Dict, List, Optional

from teelottery.config import AlgorithmConfig
from teelottery.domain.models import LotteryEntry, MemberFairnessScore, MemberSpeedProfile
from teelottery.services.timewindows import TimeWindow, find_window

DEFAULT_SPEED_TIER = "AVERAGE"


@dataclass
class LotteryPriorityCalculation:
    """Priority score of one entry, with the components kept for explainability."""

    member_id: int
    entry_id: Optional[int]
    total_score: float
    fairness_score: float
    speed_bonus: float
    admin_adjustment: float
    submission_bonus: float
    speed_tier: str = DEFAULT_SPEED_TIER
    window_position: Optional[str] = None
    breakdown: Dict[str, float] = field(default_factory=dict)


def submission_opens_at(lottery_date, advance_days: int) -> datetime:
    """Start of the submission period: ``advance_days`` before the lottery date's midnight."""
    return datetime.combine(lottery_date, time.min) - timedelta(days=advance_days)


def calculate_submission_bonus(
    submitted_at: datetime,
    opens_at: datetime,
    closes_at: datetime,
    max_bonus: float,
) -> float:
    """
    Linearly decaying bonus for submitting early in the period.

    Submissions at or before ``opens_at`` get the full bonus, submissions at
    or after ``closes_at`` get nothing.
    """
    if max_bonus <= 0:
        return 0.0
    span = (closes_at - opens_at).total_seconds()
    elapsed = max(0.0, (submitted_at - opens_at).total_seconds())
    if span <= 0:
        return float(max_bonus) if elapsed <= 0 else 0.0
    return float(max_bonus) * max(0.0, 1.0 - elapsed / span)


def clamp_adjustment(value: Optional[int], bound: int) -> int:
    value = value or 0
    return max(-bound, min(bound, value))


def score_entry(
    entry: LotteryEntry,
    fairness: Optional[MemberFairnessScore],
    speed: Optional[MemberSpeedProfile],
    config: AlgorithmConfig,
    windows: List[TimeWindow],
    opens_at: Optional[datetime] = None,
    advance_days: int = 3,
) -> LotteryPriorityCalculation:
    """
    Calculate the priority score of an entry.

    Group entries are scored on the organizer's fairness and speed rows; the
    number of players does not change the score.

    Args:
        entry: Entry to score
        fairness: Organizer's fairness row for the lottery month, or None
        speed: Organizer's speed profile, or None (treated as AVERAGE)
        config: Algorithm configuration
        windows: The day's time windows
        opens_at: Start of the submission period; defaults to ``advance_days``
            before the lottery date
        advance_days: Length of the submission period in days

    Returns:
        LotteryPriorityCalculation (higher total_score = placed earlier)
    """
    # 1. Fairness
    fairness_score = 0.0
    if config.enable_fairness_system and fairness is not None:
        fairness_score = float(fairness.fairness_score or 0) * config.fairness_weighting

    # 2. Speed bonus for the preferred window's position
    tier = speed.speed_tier if speed is not None and speed.speed_tier else DEFAULT_SPEED_TIER
    window = find_window(windows, entry.preferred_window)
    position = window.position if window is not None else None
    speed_bonus = 0.0
    if config.enable_speed_priority and position is not None:
        speed_bonus = config.speed_bonus(position, tier)

    # 3. Admin adjustment
    raw_adjustment = speed.admin_priority_adjustment if speed is not None else 0
    admin_adjustment = float(clamp_adjustment(raw_adjustment, config.admin_adjustment_bound))

    # 4. Submission timing
    closes_at = datetime.combine(entry.lottery_date, time.min)
    if opens_at is None:
        opens_at = submission_opens_at(entry.lottery_date, advance_days)
    submission_bonus = calculate_submission_bonus(
        entry.submission_timestamp, opens_at, closes_at, config.max_submission_bonus
    )

    total = fairness_score + speed_bonus + admin_adjustment + submission_bonus
    return LotteryPriorityCalculation(
        member_id=entry.organizer_id,
        entry_id=entry.id,
        total_score=total,
        fairness_score=fairness_score,
        speed_bonus=speed_bonus,
        admin_adjustment=admin_adjustment,
        submission_bonus=submission_bonus,
        speed_tier=tier,
        window_position=position,
        breakdown={
            "fairness": fairness_score,
            "speed": speed_bonus,
            "admin": admin_adjustment,
            "submission": submission_bonus,
        },
    )
