"""Lottery entry intake: submission and cancellation."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from teelottery.config import LotteryConfig
from teelottery.domain.models import (
    CANCELLED,
    FILL_TYPES,
    PENDING,
    LotteryEntry,
    LotteryFill,
    utcnow,
)
from teelottery.domain.repositories import LotteryEntryRepository, MemberRepository, TimeBlockRepository
from teelottery.errors import ConfigurationError, EntryValidationError
from teelottery.services.restrictions import check_lottery_frequency
from teelottery.services.timewindows import compute_time_windows, find_window, format_time, parse_time

logger = logging.getLogger(__name__)


def _normalize_requested_time(requested_time: Optional[str]) -> Optional[str]:
    """Canonical "HH:MM" form of a requested start time, as block start times are stored."""
    if requested_time is None or not str(requested_time).strip():
        return None
    try:
        return format_time(parse_time(requested_time))
    except ConfigurationError as e:
        raise EntryValidationError(str(e)) from e


def _validate_windows(
    session: Session,
    lottery_date: date,
    preferred_window: int,
    alternate_window: Optional[int],
    seats: int,
    settings: LotteryConfig,
    requested_time: Optional[str] = None,
) -> None:
    if preferred_window is None or preferred_window < 0:
        raise EntryValidationError("A preferred window is required")
    if alternate_window is not None:
        if alternate_window < 0:
            raise EntryValidationError(f"Invalid alternate window: {alternate_window}")
        if alternate_window == preferred_window:
            raise EntryValidationError("Alternate window must differ from the preferred window")

    blocks = TimeBlockRepository.get_by_date(session, lottery_date)
    if not blocks:
        # Teesheet not published yet; indices are checked again when the run places the entry.
        return

    windows = compute_time_windows([b.start_time for b in blocks], settings.max_window_duration_minutes)
    if windows:
        valid = {w.index for w in windows}
        if preferred_window not in valid:
            raise EntryValidationError(f"Preferred window {preferred_window} does not exist on {lottery_date}")
        if alternate_window is not None and alternate_window not in valid:
            raise EntryValidationError(f"Alternate window {alternate_window} does not exist on {lottery_date}")
        if requested_time is not None:
            window = find_window(windows, preferred_window)
            if not window.contains(parse_time(requested_time)):
                raise EntryValidationError(
                    f"Requested time {requested_time} is outside preferred window {window.label}"
                )

    largest = max(b.max_members for b in blocks)
    if seats > largest:
        raise EntryValidationError(f"Entry needs {seats} seats but the largest tee time holds {largest}")


def _check_players(
    session: Session,
    lottery_date: date,
    players: List[int],
    exclude_entry_id: Optional[int] = None,
) -> None:
    if len(set(players)) != len(players):
        raise EntryValidationError("A member appears more than once in the entry")
    known = MemberRepository.get_by_ids(session, players)
    missing = [m for m in players if m not in known]
    if missing:
        raise EntryValidationError(f"Unknown member ids: {missing}")

    for other in LotteryEntryRepository.get_by_date(session, lottery_date):
        if other.status == CANCELLED or other.id == exclude_entry_id:
            continue
        overlap = set(other.member_ids or []) & set(players)
        if overlap:
            raise EntryValidationError(
                f"Members {sorted(overlap)} are already part of entry {other.id} for {lottery_date}"
            )


def submit_entry(
    session: Session,
    organizer_id: int,
    lottery_date: date,
    preferred_window: int,
    alternate_window: Optional[int] = None,
    member_ids: Optional[Sequence[int]] = None,
    fills: Optional[List[Dict[str, str]]] = None,
    requested_time: Optional[str] = None,
    settings: Optional[LotteryConfig] = None,
    now: Optional[datetime] = None,
) -> LotteryEntry:
    """
    Validate and store a lottery submission.

    Args:
        session: Database session
        organizer_id: Member submitting the entry
        lottery_date: Date being requested
        preferred_window: Index of the preferred time window
        alternate_window: Optional fallback window index
        member_ids: Other players (the organizer is always included, first)
        fills: Placeholder seats, e.g. ``[{"fill_type": "guest"}]``
        requested_time: Optional exact start time "HH:MM" inside the preferred window
        settings: Deployment settings (submission horizon, window length)
        now: Submission time; defaults to the current UTC time

    Returns:
        The stored PENDING entry

    Raises:
        EntryValidationError: If any check fails
    """
    settings = settings or LotteryConfig()
    now = now or utcnow()

    # Horizon
    today = now.date()
    if lottery_date <= today:
        raise EntryValidationError(f"Lottery entries for {lottery_date} are closed")
    if lottery_date > today + timedelta(days=settings.lottery_max_days_ahead):
        raise EntryValidationError(
            f"Lottery entries open {settings.lottery_max_days_ahead} days ahead; {lottery_date} is too far out"
        )

    # One active entry per organizer and per player for the date
    if LotteryEntryRepository.get_by_organizer_and_date(session, organizer_id, lottery_date) is not None:
        raise EntryValidationError(f"Member {organizer_id} already has an entry for {lottery_date}")
    players = [organizer_id] + [m for m in (member_ids or []) if m != organizer_id]
    _check_players(session, lottery_date, players)

    # Fills
    fill_rows = []
    for fill in fills or []:
        fill_type = str(fill.get("fill_type", "")).lower()
        if fill_type not in FILL_TYPES:
            raise EntryValidationError(f"Unknown fill type: {fill.get('fill_type')!r}")
        custom_name = fill.get("custom_name")
        if fill_type == "custom" and not custom_name:
            raise EntryValidationError("Custom fills need a name")
        fill_rows.append(LotteryFill(fill_type=fill_type, custom_name=custom_name))

    requested_time = _normalize_requested_time(requested_time)
    _validate_windows(
        session,
        lottery_date,
        preferred_window,
        alternate_window,
        len(players) + len(fill_rows),
        settings,
        requested_time,
    )

    frequency = check_lottery_frequency(session, organizer_id, lottery_date)
    if frequency.violated:
        raise EntryValidationError("; ".join(frequency.reasons))

    entry = LotteryEntry(
        organizer_id=organizer_id,
        member_ids=players,
        lottery_date=lottery_date,
        preferred_window=preferred_window,
        alternate_window=alternate_window,
        requested_time=requested_time,
        status=PENDING,
        submission_timestamp=now,
        created_at=now,
    )
    entry.fills = fill_rows

    session.add(entry)
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise EntryValidationError(f"Member {organizer_id} already has an entry for {lottery_date}") from e

    logger.info(
        "Entry %s submitted by member %s for %s (%d seats)",
        entry.id, organizer_id, lottery_date, entry.seats,
    )
    return entry


def update_entry(
    session: Session,
    entry_id: int,
    preferred_window: int,
    alternate_window: Optional[int] = None,
    member_ids: Optional[Sequence[int]] = None,
    requested_time: Optional[str] = None,
    settings: Optional[LotteryConfig] = None,
) -> LotteryEntry:
    """
    Change the windows, players or requested time of a pending entry.

    The submission timestamp is kept, so the entry's early-submission bonus
    survives the edit. ``alternate_window`` and ``requested_time`` are
    replaced as given (None clears them); ``member_ids`` of None keeps the
    current players.

    Args:
        session: Database session
        entry_id: Entry to change
        preferred_window: New preferred window index
        alternate_window: New fallback window index
        member_ids: New player list; the organizer always stays in, first
        requested_time: New exact start time "HH:MM" inside the preferred window
        settings: Deployment settings (window length)

    Returns:
        The updated entry

    Raises:
        EntryValidationError: If the entry is not PENDING or any check fails
    """
    settings = settings or LotteryConfig()

    entry = LotteryEntryRepository.get_by_id(session, entry_id)
    if entry is None:
        raise EntryValidationError(f"Entry {entry_id} not found")
    if entry.status != PENDING:
        raise EntryValidationError(f"Entry {entry_id} is {entry.status} and can no longer be changed")

    if member_ids is None:
        players = list(entry.member_ids or [entry.organizer_id])
    else:
        if entry.organizer_id not in member_ids:
            raise EntryValidationError(f"Organizer {entry.organizer_id} must stay in the entry")
        players = [entry.organizer_id] + [m for m in member_ids if m != entry.organizer_id]
        _check_players(session, entry.lottery_date, players, exclude_entry_id=entry.id)

    requested_time = _normalize_requested_time(requested_time)
    _validate_windows(
        session,
        entry.lottery_date,
        preferred_window,
        alternate_window,
        len(players) + len(entry.fills),
        settings,
        requested_time,
    )

    entry.preferred_window = preferred_window
    entry.alternate_window = alternate_window
    entry.requested_time = requested_time
    entry.member_ids = players
    session.commit()

    logger.info("Entry %s updated (window %s, alternate %s)", entry.id, preferred_window, alternate_window)
    return entry


def cancel_entry(session: Session, entry_id: int) -> LotteryEntry:
    """
    Withdraw a pending entry.

    Raises:
        EntryValidationError: If the entry does not exist or is no longer PENDING
    """
    entry = LotteryEntryRepository.get_by_id(session, entry_id)
    if entry is None:
        raise EntryValidationError(f"Entry {entry_id} not found")
    if entry.status != PENDING:
        raise EntryValidationError(f"Entry {entry_id} is {entry.status} and can no longer be cancelled")
    entry.status = CANCELLED
    session.commit()
    logger.info("Entry %s cancelled", entry_id)
    return entry
