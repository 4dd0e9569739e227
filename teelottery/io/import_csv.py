"""CSV import utilities to load roster, teesheet and history into the database."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pandas as pd
from sqlalchemy.orm import Session

from teelottery.domain.models import (
    PENDING,
    LotteryEntry,
    LotteryFill,
    Member,
    PaceOfPlay,
    TimeBlock,
    TimeRestriction,
    utcnow,
)
from teelottery.services.timewindows import format_time, parse_time


def _read(csv_path: str | Path) -> pd.DataFrame:
    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    # Normalize column names
    df.columns = df.columns.str.lower().str.strip()
    return df


def _text(row, column: str) -> Optional[str]:
    value = row.get(column, "")
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _int(row, column: str) -> Optional[int]:
    value = _text(row, column)
    return int(float(value)) if value is not None else None


def _time(row, column: str) -> Optional[str]:
    value = _text(row, column)
    return format_time(parse_time(value)) if value is not None else None


def _int_list(value: Optional[str]) -> List[int]:
    if not value:
        return []
    return [int(part) for part in value.replace(",", ";").split(";") if part.strip()]


def _str_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.replace(",", ";").split(";") if part.strip()]


def import_members_csv(session: Session, csv_path: str | Path) -> int:
    """
    Import members from CSV into database.

    Expected columns: member_id (or id), first_name, last_name, member_number,
    member_class.

    Returns:
        Number of members imported
    """
    df = _read(csv_path)
    df.rename(columns={"id": "member_id"}, inplace=True)

    members = []
    for _, row in df.iterrows():
        members.append(
            Member(
                id=int(row["member_id"]),
                first_name=str(row["first_name"]).strip(),
                last_name=str(row["last_name"]).strip(),
                member_number=_text(row, "member_number"),
                member_class=(_text(row, "member_class") or "REGULAR").upper(),
            )
        )

    session.add_all(members)
    session.commit()

    print(f"[INFO] Imported {len(members)} members from {csv_path}")
    return len(members)


def import_time_blocks_csv(session: Session, csv_path: str | Path) -> int:
    """
    Import teesheet blocks from CSV.

    Expected columns: date, start_time, max_members (default 4), optional id.
    """
    df = _read(csv_path)
    df.rename(columns={"teesheet_date": "date", "time_block_id": "id"}, inplace=True)
    df["date"] = pd.to_datetime(df["date"]).dt.date

    blocks = []
    for _, row in df.iterrows():
        blocks.append(
            TimeBlock(
                id=_int(row, "id"),
                teesheet_date=row["date"],
                start_time=_time(row, "start_time"),
                max_members=_int(row, "max_members") or 4,
            )
        )

    session.add_all(blocks)
    session.commit()

    print(f"[INFO] Imported {len(blocks)} time blocks from {csv_path}")
    return len(blocks)


def import_entries_csv(session: Session, csv_path: str | Path) -> int:
    """
    Bulk-load lottery entries (e.g. from a legacy system) as PENDING.

    Expected columns: organizer_id, lottery_date, preferred_window and
    optionally alternate_window, member_ids ("12;15;18"), fills
    ("guest;custom:Bob Smith"), requested_time, submission_timestamp.
    No intake validation is applied.
    """
    df = _read(csv_path)
    df["lottery_date"] = pd.to_datetime(df["lottery_date"]).dt.date

    entries = []
    for _, row in df.iterrows():
        organizer_id = int(row["organizer_id"])
        members = [organizer_id] + [m for m in _int_list(_text(row, "member_ids")) if m != organizer_id]

        submitted = _text(row, "submission_timestamp")
        entry = LotteryEntry(
            organizer_id=organizer_id,
            member_ids=members,
            lottery_date=row["lottery_date"],
            preferred_window=int(row["preferred_window"]),
            alternate_window=_int(row, "alternate_window"),
            requested_time=_time(row, "requested_time"),
            status=PENDING,
            submission_timestamp=pd.Timestamp(submitted).to_pydatetime() if submitted else utcnow(),
        )
        for fill in _str_list(_text(row, "fills")):
            fill_type, _, name = fill.partition(":")
            entry.fills.append(LotteryFill(fill_type=fill_type.strip().lower(), custom_name=name.strip() or None))
        entries.append(entry)

    session.add_all(entries)
    session.commit()

    print(f"[INFO] Imported {len(entries)} lottery entries from {csv_path}")
    return len(entries)


def import_pace_csv(session: Session, csv_path: str | Path) -> int:
    """
    Import pace-of-play history.

    Expected columns: time_block_id, start_time, finish_time (timestamps) and
    optionally turn9_time, status.
    """
    df = _read(csv_path)
    for column in ("start_time", "turn9_time", "finish_time"):
        if column in df.columns:
            df[column] = pd.to_datetime(df[column], errors="coerce")

    rows = []
    for _, row in df.iterrows():
        rows.append(
            PaceOfPlay(
                time_block_id=_int(row, "time_block_id"),
                start_time=row["start_time"].to_pydatetime() if pd.notna(row.get("start_time")) else None,
                turn9_time=row["turn9_time"].to_pydatetime() if pd.notna(row.get("turn9_time")) else None,
                finish_time=row["finish_time"].to_pydatetime() if pd.notna(row.get("finish_time")) else None,
                status=_text(row, "status") or "completed",
            )
        )

    session.add_all(rows)
    session.commit()

    print(f"[INFO] Imported {len(rows)} pace-of-play records from {csv_path}")
    return len(rows)


def import_restrictions_csv(session: Session, csv_path: str | Path) -> int:
    """
    Import time restrictions.

    Expected columns: name, restriction_category, restriction_type and
    optionally member_classes ("GUEST;JUNIOR"), days_of_week ("0;6"),
    start_time, end_time, start_date, end_date, max_count, period_days,
    is_active, priority, description.
    """
    df = _read(csv_path)

    restrictions = []
    for _, row in df.iterrows():
        start_date = _text(row, "start_date")
        end_date = _text(row, "end_date")
        is_active = (_text(row, "is_active") or "true").lower() in ("1", "true", "yes", "y")
        restrictions.append(
            TimeRestriction(
                name=str(row["name"]).strip(),
                description=_text(row, "description"),
                restriction_category=str(row["restriction_category"]).strip().upper(),
                restriction_type=str(row["restriction_type"]).strip().upper(),
                member_classes=[c.upper() for c in _str_list(_text(row, "member_classes"))] or None,
                days_of_week=_int_list(_text(row, "days_of_week")) or None,
                start_time=_time(row, "start_time"),
                end_time=_time(row, "end_time"),
                start_date=pd.Timestamp(start_date).date() if start_date else None,
                end_date=pd.Timestamp(end_date).date() if end_date else None,
                max_count=_int(row, "max_count"),
                period_days=_int(row, "period_days"),
                is_active=is_active,
                priority=_int(row, "priority") or 0,
            )
        )

    session.add_all(restrictions)
    session.commit()

    print(f"[INFO] Imported {len(restrictions)} restrictions from {csv_path}")
    return len(restrictions)
