"""CSV export utilities for run results and speed profiles."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pandas as pd
from sqlalchemy.orm import Session

from teelottery.domain.repositories import (
    EntryLogRepository,
    LotteryEntryRepository,
    ProcessingRunRepository,
    SpeedProfileRepository,
)
from teelottery.errors import RunNotFoundError

RUN_RESULT_COLUMNS = [
    "rank",
    "entry_id",
    "entry_type",
    "organizer_id",
    "member_ids",
    "seats",
    "preferred_window",
    "alternate_window",
    "total_score",
    "fairness_component",
    "speed_component",
    "admin_component",
    "submission_component",
    "assignment_reason",
    "auto_assigned_start_time",
    "final_start_time",
    "preference_matched",
    "specific_time_matched",
    "alternate_assigned",
    "restriction_reasons",
    "fairness_score_before",
    "fairness_score_after",
]


def export_run_results_csv(session: Session, csv_path: str | Path, lottery_date: date) -> int:
    """
    Export the canonical run's per-entry outcomes for a date.

    Args:
        session: Database session
        csv_path: Output path
        lottery_date: Date whose canonical run is exported

    Returns:
        Number of rows written

    Raises:
        RunNotFoundError: If the date has not been processed
    """
    run = ProcessingRunRepository.get_canonical(session, lottery_date)
    if run is None:
        raise RunNotFoundError(f"No processing run for {lottery_date}")

    rows = []
    for log in EntryLogRepository.get_by_run(session, run.id):
        entry = LotteryEntryRepository.get_by_id(session, log.entry_id)
        details = log.restriction_details or {}
        rows.append(
            {
                "rank": log.rank,
                "entry_id": log.entry_id,
                "entry_type": log.entry_type,
                "organizer_id": log.organizer_id,
                "member_ids": ";".join(str(m) for m in (entry.member_ids if entry else [])),
                "seats": log.seats,
                "preferred_window": log.preferred_window,
                "alternate_window": log.alternate_window,
                "total_score": round(log.total_score, 3),
                "fairness_component": round(log.fairness_component, 3),
                "speed_component": round(log.speed_component, 3),
                "admin_component": round(log.admin_component, 3),
                "submission_component": round(log.submission_component, 3),
                "assignment_reason": log.assignment_reason,
                "auto_assigned_start_time": log.auto_assigned_start_time,
                "final_start_time": log.final_start_time,
                "preference_matched": log.preference_matched,
                "specific_time_matched": log.specific_time_matched,
                "alternate_assigned": log.alternate_assigned,
                "restriction_reasons": "; ".join(details.get("reasons", [])),
                "fairness_score_before": log.fairness_score_before,
                "fairness_score_after": log.fairness_score_after,
            }
        )

    df = pd.DataFrame(rows, columns=RUN_RESULT_COLUMNS)
    Path(csv_path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(csv_path, index=False)

    print(f"[INFO] Exported {len(df)} entry results to {csv_path}")
    return len(df)


def export_speed_profiles_csv(session: Session, csv_path: str | Path) -> int:
    """Export every member speed profile."""
    rows = [
        {
            "member_id": p.member_id,
            "average_minutes": p.average_minutes,
            "speed_tier": p.speed_tier,
            "admin_priority_adjustment": p.admin_priority_adjustment,
            "manual_override": p.manual_override,
            "last_calculated": p.last_calculated,
            "notes": p.notes,
        }
        for p in SpeedProfileRepository.get_all(session)
    ]
    df = pd.DataFrame(
        rows,
        columns=[
            "member_id",
            "average_minutes",
            "speed_tier",
            "admin_priority_adjustment",
            "manual_override",
            "last_calculated",
            "notes",
        ],
    )
    Path(csv_path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(csv_path, index=False)

    print(f"[INFO] Exported {len(df)} speed profiles to {csv_path}")
    return len(df)
