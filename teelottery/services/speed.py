"""Pace-of-play speed classification and admin profile operations."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy.orm import Session

from teelottery.config import SPEED_TIERS, AlgorithmConfig, LotteryConfig
from teelottery.domain.models import MemberSpeedProfile, utcnow
from teelottery.domain.repositories import PaceOfPlayRepository, SpeedProfileRepository
from teelottery.errors import ProfileUpdateError

logger = logging.getLogger(__name__)


def average_round_minutes(
    rounds: List[tuple],
    min_round_minutes: int = 180,
    max_round_minutes: int = 360,
) -> pd.DataFrame:
    """
    Average completed-round duration per member.

    Args:
        rounds: (member_id, start_time, finish_time) tuples
        min_round_minutes: Shorter rounds are discarded as bad data
        max_round_minutes: Longer rounds are discarded as bad data

    Returns:
        DataFrame with columns member_id, rounds, average_minutes
    """
    columns = ["member_id", "rounds", "average_minutes"]
    if not rounds:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(rounds, columns=["member_id", "start_time", "finish_time"])
    df["start_time"] = pd.to_datetime(df["start_time"])
    df["finish_time"] = pd.to_datetime(df["finish_time"])
    df["minutes"] = (df["finish_time"] - df["start_time"]).dt.total_seconds() / 60.0

    valid = df[(df["minutes"] >= min_round_minutes) & (df["minutes"] <= max_round_minutes)]
    if valid.empty:
        return pd.DataFrame(columns=columns)

    summary = (
        valid.groupby("member_id")["minutes"]
        .agg(rounds="count", average_minutes="mean")
        .reset_index()
    )
    return summary[columns]


def recalculate_speed_profiles(
    session: Session,
    config: AlgorithmConfig,
    settings: Optional[LotteryConfig] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Refresh average pace and tier from the trailing months of pace data.

    Members with fewer than ``min_qualifying_rounds`` valid rounds keep their
    current profile; manually overridden profiles are never touched.

    Returns:
        Number of profiles updated
    """
    settings = settings or LotteryConfig()
    now = now or utcnow()
    cutoff = (pd.Timestamp(now) - pd.DateOffset(months=settings.speed_history_months)).to_pydatetime()

    rounds = PaceOfPlayRepository.completed_rounds_since(session, cutoff)
    summary = average_round_minutes(rounds, settings.min_round_minutes, settings.max_round_minutes)
    qualifying = summary[summary["rounds"] >= settings.min_qualifying_rounds]

    updated = 0
    for _, row in qualifying.iterrows():
        member_id = int(row["member_id"])
        profile = SpeedProfileRepository.get_or_create(session, member_id)
        if profile.manual_override:
            continue
        average = int(round(float(row["average_minutes"])))
        profile.average_minutes = average
        profile.speed_tier = config.classify(average)
        profile.last_calculated = now
        updated += 1

    session.flush()
    logger.info("Speed recalculation: %d qualifying members, %d profiles updated", len(qualifying), updated)
    return updated


def reclassify_all_speed_tiers(session: Session, config: AlgorithmConfig) -> int:
    """Re-apply the tier thresholds to every profile with pace data (after a threshold change)."""
    updated = 0
    for profile in SpeedProfileRepository.get_all(session):
        if profile.average_minutes is None or profile.manual_override:
            continue
        tier = config.classify(profile.average_minutes)
        if tier != profile.speed_tier:
            profile.speed_tier = tier
            updated += 1
    session.flush()
    logger.info("Reclassified %d speed profiles", updated)
    return updated


def calculated_tier(profile: MemberSpeedProfile, config: AlgorithmConfig) -> str:
    if profile.average_minutes is None:
        return "AVERAGE"
    return config.classify(profile.average_minutes)


def update_speed_profile(
    session: Session,
    member_id: int,
    config: AlgorithmConfig,
    speed_tier: Optional[str] = None,
    admin_priority_adjustment: Optional[int] = None,
    manual_override: Optional[bool] = None,
    notes: Optional[str] = None,
) -> MemberSpeedProfile:
    """
    Admin edit of a member's speed profile.

    Setting a tier other than the one the pace data gives switches manual
    override on, so maintenance will not undo the edit.

    Raises:
        ProfileUpdateError: On an unknown tier or an adjustment outside the bound
    """
    profile = SpeedProfileRepository.get_or_create(session, member_id)

    if admin_priority_adjustment is not None:
        bound = config.admin_adjustment_bound
        if not -bound <= admin_priority_adjustment <= bound:
            raise ProfileUpdateError(f"Priority adjustment must be between -{bound} and {bound}")
        profile.admin_priority_adjustment = admin_priority_adjustment

    if speed_tier is not None:
        speed_tier = speed_tier.upper()
        if speed_tier not in SPEED_TIERS:
            raise ProfileUpdateError(f"Unknown speed tier: {speed_tier}")
        profile.speed_tier = speed_tier
        if speed_tier != calculated_tier(profile, config):
            profile.manual_override = True

    if manual_override is not None:
        profile.manual_override = manual_override
        if not manual_override:
            profile.speed_tier = calculated_tier(profile, config)

    if notes is not None:
        profile.notes = notes

    session.flush()
    return profile


def reset_admin_adjustments(session: Session) -> int:
    """Zero every non-zero admin priority adjustment. Returns rows changed."""
    changed = 0
    for profile in SpeedProfileRepository.get_all(session):
        if profile.admin_priority_adjustment:
            profile.admin_priority_adjustment = 0
            changed += 1
    session.flush()
    return changed


def tier_distribution(profiles: List[MemberSpeedProfile]) -> Dict[str, int]:
    counts = {tier: 0 for tier in SPEED_TIERS}
    for profile in profiles:
        counts[profile.speed_tier or "AVERAGE"] = counts.get(profile.speed_tier or "AVERAGE", 0) + 1
    return counts
