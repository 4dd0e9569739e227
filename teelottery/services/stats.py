"""Read-only dashboard statistics for a lottery date."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Optional

import pandas as pd
from sqlalchemy.orm import Session

from teelottery.config import SPEED_TIERS
from teelottery.domain.models import ASSIGNED, CANCELLED, PROCESSING
from teelottery.domain.repositories import (
    EntryLogRepository,
    FairnessScoreRepository,
    LotteryEntryRepository,
    ProcessingRunRepository,
    SpeedProfileRepository,
    TimeBlockRepository,
)
from teelottery.services.fairness import month_key


@dataclass
class LotteryProcessingStats:
    lottery_date: date
    total_entries: int = 0
    individual_entries: int = 0
    group_entries: int = 0
    total_players: int = 0
    available_slots: int = 0
    assigned_entries: int = 0
    unassigned_entries: int = 0
    preference_match_rate: float = 0.0
    specific_time_match_rate: float = 0.0
    alternate_assigned: int = 0
    restriction_violations: int = 0
    fairness_min: float = 0.0
    fairness_max: float = 0.0
    fairness_avg: float = 0.0
    speed_tier_counts: Dict[str, int] = field(default_factory=dict)
    processing_status: str = "PENDING"
    last_processed_at: Optional[datetime] = None
    run_id: Optional[int] = None
    finalized: bool = False


def compute_processing_stats(session: Session, lottery_date: date) -> LotteryProcessingStats:
    """
    Summarize entries, the canonical run and the month's fairness rows for a date.

    Args:
        session: Database session
        lottery_date: Date to summarize

    Returns:
        LotteryProcessingStats
    """
    stats = LotteryProcessingStats(lottery_date=lottery_date)

    entries = [e for e in LotteryEntryRepository.get_by_date(session, lottery_date) if e.status != CANCELLED]
    entries_df = pd.DataFrame(
        [{"status": e.status, "seats": e.seats, "is_group": e.is_group} for e in entries],
        columns=["status", "seats", "is_group"],
    )
    if not entries_df.empty:
        stats.total_entries = len(entries_df)
        stats.group_entries = int(entries_df["is_group"].sum())
        stats.individual_entries = stats.total_entries - stats.group_entries
        stats.total_players = int(entries_df["seats"].sum())
        stats.assigned_entries = int((entries_df["status"] == ASSIGNED).sum())
        stats.unassigned_entries = stats.total_entries - stats.assigned_entries

    blocks = TimeBlockRepository.get_by_date(session, lottery_date)
    stats.available_slots = sum(b.max_members for b in blocks)

    run = ProcessingRunRepository.get_canonical(session, lottery_date)
    if run is not None:
        stats.run_id = run.id
        stats.last_processed_at = run.processed_at
        stats.finalized = run.finalized_at is not None
        logs = EntryLogRepository.get_by_run(session, run.id)
        logs_df = pd.DataFrame(
            [
                {
                    "reason": log.assignment_reason,
                    "preference_matched": log.preference_matched,
                    "specific_time_matched": log.specific_time_matched,
                    "alternate_assigned": log.alternate_assigned,
                }
                for log in logs
            ],
            columns=["reason", "preference_matched", "specific_time_matched", "alternate_assigned"],
        )
        if not logs_df.empty:
            stats.preference_match_rate = float(logs_df["preference_matched"].mean())
            stats.specific_time_match_rate = float(logs_df["specific_time_matched"].mean())
            stats.alternate_assigned = int(logs_df["alternate_assigned"].sum())
            stats.restriction_violations = int((logs_df["reason"] == "RESTRICTION").sum())
        stats.processing_status = "ERROR" if (logs_df["reason"] == "ERROR").any() else "COMPLETED"
    elif any(e.status == PROCESSING for e in entries):
        stats.processing_status = "PROCESSING"

    fairness_df = pd.DataFrame(
        [{"fairness_score": row.fairness_score} for row in FairnessScoreRepository.get_by_month(session, month_key(lottery_date))],
        columns=["fairness_score"],
    )
    if not fairness_df.empty:
        stats.fairness_min = float(fairness_df["fairness_score"].min())
        stats.fairness_max = float(fairness_df["fairness_score"].max())
        stats.fairness_avg = round(float(fairness_df["fairness_score"].mean()), 2)

    tiers = pd.Series([p.speed_tier for p in SpeedProfileRepository.get_all(session)], dtype="object")
    counts = tiers.value_counts()
    stats.speed_tier_counts = {tier: int(counts.get(tier, 0)) for tier in SPEED_TIERS}

    return stats


def format_run_summary(stats: LotteryProcessingStats) -> str:
    """Plain-text summary of a date's lottery, as printed by the CLI."""
    lines = [
        f"Lottery {stats.lottery_date} [{stats.processing_status}]"
        + (" (finalized)" if stats.finalized else ""),
        f"  Entries: {stats.total_entries} ({stats.individual_entries} individual, {stats.group_entries} group), "
        f"{stats.total_players} players for {stats.available_slots} seats",
        f"  Assigned: {stats.assigned_entries}, unassigned: {stats.unassigned_entries}",
        f"  Preference match: {stats.preference_match_rate:.0%}, exact time: {stats.specific_time_match_rate:.0%}, "
        f"alternate used: {stats.alternate_assigned}, restricted: {stats.restriction_violations}",
        f"  Fairness (month): min {stats.fairness_min:g} / avg {stats.fairness_avg:g} / max {stats.fairness_max:g}",
        "  Speed tiers: " + ", ".join(f"{tier} {count}" for tier, count in stats.speed_tier_counts.items()),
    ]
    if stats.last_processed_at is not None:
        lines.append(f"  Last processed: {stats.last_processed_at:%Y-%m-%d %H:%M:%S} (run {stats.run_id})")
    return "\n".join(lines)
