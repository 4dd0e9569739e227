"""Restriction checks applied when seating an entry into a time block."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from teelottery.domain.models import LotteryEntry, TimeBlock, TimeRestriction
from teelottery.domain.repositories import (
    BookingRepository,
    LotteryEntryRepository,
    MemberRepository,
    RestrictionRepository,
)
from teelottery.services.timewindows import parse_time

logger = logging.getLogger(__name__)

MEMBER_CLASS = "MEMBER_CLASS"
GUEST = "GUEST"
LOTTERY = "LOTTERY"
TIME = "TIME"
FREQUENCY = "FREQUENCY"

GUEST_FILL_TYPES = ("guest",)


@dataclass
class RestrictionSubjects:
    """Who would occupy a block: real members and placeholder fills."""

    member_ids: List[int]
    fill_types: List[str] = field(default_factory=list)

    @classmethod
    def for_entry(cls, entry: LotteryEntry) -> "RestrictionSubjects":
        return cls(member_ids=list(entry.member_ids or []), fill_types=[f.fill_type for f in entry.fills])


@dataclass
class RestrictionResult:
    violated: bool = False
    reasons: List[str] = field(default_factory=list)
    restriction_ids: List[int] = field(default_factory=list)

    def add(self, restriction: TimeRestriction, reason: str) -> None:
        self.violated = True
        self.reasons.append(reason)
        if restriction.id not in self.restriction_ids:
            self.restriction_ids.append(restriction.id)


def day_of_week(d: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (d.weekday() + 1) % 7


def applies_on(restriction: TimeRestriction, on_date: date) -> bool:
    """Whether a restriction's weekday and date-range filters include a date."""
    if restriction.days_of_week and day_of_week(on_date) not in restriction.days_of_week:
        return False
    if restriction.start_date and restriction.end_date:
        if not restriction.start_date <= on_date <= restriction.end_date:
            return False
    return True


def covers_time(restriction: TimeRestriction, start_time: str) -> bool:
    """Whether a block start falls within the restriction's [start_time, end_time]."""
    minutes = parse_time(start_time)
    if restriction.start_time and minutes < parse_time(restriction.start_time):
        return False
    if restriction.end_time and minutes > parse_time(restriction.end_time):
        return False
    return True


def matches_class(restriction: TimeRestriction, member_class: Optional[str]) -> bool:
    if not restriction.member_classes:
        return True
    return member_class in restriction.member_classes


def frequency_window(restriction: TimeRestriction, on_date: date) -> tuple:
    period = restriction.period_days or 0
    return on_date - timedelta(days=period), on_date


class RestrictionChecker:
    """
    Batch-checkable restriction predicate for one lottery date.

    Booking counts for frequency restrictions are taken as a snapshot when the
    checker is built and advanced through ``record_booking`` as the solver
    seats entries, so the check never hits the database mid-run.
    """

    def __init__(
        self,
        lottery_date: date,
        restrictions: Sequence[TimeRestriction],
        member_classes: Dict[int, Optional[str]],
        frequency_counts: Optional[Dict[int, Dict[int, int]]] = None,
    ):
        self.lottery_date = lottery_date
        self.restrictions = [r for r in restrictions if r.is_active]
        self.member_classes = member_classes
        self.frequency_counts = frequency_counts or {}

    @classmethod
    def from_session(cls, session: Session, lottery_date: date, member_ids: Iterable[int]) -> "RestrictionChecker":
        member_ids = set(member_ids)
        restrictions = [
            r
            for r in RestrictionRepository.get_active(session)
            if r.restriction_category in (MEMBER_CLASS, GUEST)
        ]
        members = MemberRepository.get_by_ids(session, member_ids)
        member_classes = {member_id: (m.member_class if m else None) for member_id, m in members.items()}

        frequency_counts = {}
        for r in restrictions:
            if r.restriction_category == MEMBER_CLASS and r.restriction_type == FREQUENCY:
                start, end = frequency_window(r, lottery_date)
                frequency_counts[r.id] = BookingRepository.count_by_member(session, member_ids, start, end)

        logger.debug("Loaded %d restrictions for %s", len(restrictions), lottery_date)
        return cls(lottery_date, restrictions, member_classes, frequency_counts)

    def check(self, block: TimeBlock, subjects: RestrictionSubjects) -> RestrictionResult:
        """
        Check whether the subjects may be seated in a block.

        Args:
            block: Candidate time block
            subjects: Members and fills that would occupy it

        Returns:
            RestrictionResult listing every violated restriction
        """
        result = RestrictionResult()
        block_date = block.teesheet_date or self.lottery_date

        for r in self.restrictions:
            if r.restriction_category == MEMBER_CLASS and r.restriction_type == TIME:
                if not (applies_on(r, block_date) and covers_time(r, block.start_time)):
                    continue
                for member_id in subjects.member_ids:
                    member_class = self.member_classes.get(member_id)
                    if matches_class(r, member_class):
                        result.add(r, f"{r.name}: {member_class or 'member'} #{member_id} not allowed at {block.start_time}")

            elif r.restriction_category == MEMBER_CLASS and r.restriction_type == FREQUENCY:
                if r.max_count is None:
                    continue
                counts = self.frequency_counts.get(r.id, {})
                for member_id in subjects.member_ids:
                    if not matches_class(r, self.member_classes.get(member_id)):
                        continue
                    if counts.get(member_id, 0) >= r.max_count:
                        result.add(
                            r,
                            f"{r.name}: member #{member_id} reached {r.max_count} bookings in {r.period_days} days",
                        )

            elif r.restriction_category == GUEST and r.restriction_type == TIME:
                if not any(ft in GUEST_FILL_TYPES for ft in subjects.fill_types):
                    continue
                if applies_on(r, block_date) and covers_time(r, block.start_time):
                    result.add(r, f"{r.name}: guests not allowed at {block.start_time}")

        return result

    def record_booking(self, member_ids: Iterable[int]) -> None:
        """Count a new booking on the lottery date against every frequency window."""
        for counts in self.frequency_counts.values():
            for member_id in member_ids:
                counts[member_id] = counts.get(member_id, 0) + 1


def check_lottery_frequency(session: Session, organizer_id: int, lottery_date: date) -> RestrictionResult:
    """
    Apply LOTTERY / FREQUENCY restrictions to a new submission.

    An organizer may hold at most ``max_count`` non-cancelled entries with a
    lottery date in the trailing ``period_days`` ending at ``lottery_date``.
    """
    result = RestrictionResult()
    organizer = MemberRepository.get_by_id(session, organizer_id)
    member_class = organizer.member_class if organizer else None

    for r in RestrictionRepository.get_active(session, category=LOTTERY):
        if r.restriction_type != FREQUENCY or r.max_count is None:
            continue
        if not matches_class(r, member_class):
            continue
        start, end = frequency_window(r, lottery_date)
        count = LotteryEntryRepository.count_active_for_organizer(session, organizer_id, start, end)
        if count >= r.max_count:
            result.add(r, f"{r.name}: limit of {r.max_count} lottery entries per {r.period_days} days reached")
    return result
