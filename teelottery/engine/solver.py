"""Greedy single-pass assignment of lottery entries to time blocks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from teelottery.domain.models import LotteryEntry, TimeBlock
from teelottery.errors import CapacityExhausted, PlacementError, RestrictionViolation
from teelottery.services.restrictions import RestrictionChecker, RestrictionSubjects
from teelottery.services.scoring import LotteryPriorityCalculation
from teelottery.services.timewindows import TimeWindow, find_window, parse_time

logger = logging.getLogger(__name__)

PREFERRED_MATCH = "PREFERRED_MATCH"
ALTERNATE_MATCH = "ALTERNATE_MATCH"
NO_SPACE = "NO_SPACE"
RESTRICTION = "RESTRICTION"
ERROR = "ERROR"

ASSIGNED_REASONS = (PREFERRED_MATCH, ALTERNATE_MATCH)


@dataclass
class Candidate:
    """An entry waiting to be placed, with its priority score."""

    entry: LotteryEntry
    priority: LotteryPriorityCalculation

    def sort_key(self):
        return (
            -self.priority.total_score,
            self.entry.submission_timestamp,
            self.entry.organizer_id,
            self.entry.id,
        )


@dataclass
class BlockSlot:
    """A time block with the seats still free during this run."""

    block: TimeBlock
    remaining: int

    @property
    def start_minutes(self) -> int:
        return parse_time(self.block.start_time)

    @classmethod
    def from_blocks(cls, blocks: Sequence[TimeBlock], seats_used: Optional[Dict[int, int]] = None) -> List["BlockSlot"]:
        seats_used = seats_used or {}
        slots = [cls(block=b, remaining=b.max_members - seats_used.get(b.id, 0)) for b in blocks]
        return sorted(slots, key=lambda s: (s.start_minutes, s.block.id))


@dataclass
class LotteryAssignmentResult:
    entry_id: int
    organizer_id: int
    rank: int
    reason: str
    priority: LotteryPriorityCalculation
    seats: int
    time_block_id: Optional[int] = None
    start_time: Optional[str] = None
    preference_matched: bool = False
    specific_time_matched: bool = False
    alternate_assigned: bool = False
    restriction_reasons: List[str] = field(default_factory=list)
    restriction_ids: List[int] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def assigned(self) -> bool:
        return self.reason in ASSIGNED_REASONS


AssignHook = Callable[[LotteryEntry, TimeBlock, LotteryAssignmentResult], None]


class GreedySolver:
    """
    Place entries in priority order, each into the earliest block that fits.

    No backtracking: an entry's placement is final once made. Per-entry
    failures become the entry's result reason and the pass continues.
    """

    def solve(
        self,
        candidates: Sequence[Candidate],
        blocks: Sequence[BlockSlot],
        windows: List[TimeWindow],
        checker: RestrictionChecker,
        on_assign: Optional[AssignHook] = None,
    ) -> List[LotteryAssignmentResult]:
        """
        Assign every candidate or record why it could not be placed.

        Args:
            candidates: Entries with priority scores, any order
            blocks: Block slots for the day; ``remaining`` is decremented in place
            windows: The day's time windows (empty = every block is in every window)
            checker: Restriction predicate for the day
            on_assign: Called after a block is chosen and before capacity is
                taken; raising here marks the entry ERROR and keeps the seats free

        Returns:
            One result per candidate, in placement order
        """
        ordered = sorted(candidates, key=lambda c: c.sort_key())
        slots = sorted(blocks, key=lambda s: (s.start_minutes, s.block.id))
        results = []

        for rank, candidate in enumerate(ordered, start=1):
            entry = candidate.entry
            result = LotteryAssignmentResult(
                entry_id=entry.id,
                organizer_id=entry.organizer_id,
                rank=rank,
                reason=ERROR,
                priority=candidate.priority,
                seats=entry.seats,
            )
            try:
                self._place(entry, slots, windows, checker, result, on_assign)
            except RestrictionViolation as e:
                result.reason = e.reason
                result.restriction_reasons = e.reasons
                result.restriction_ids = e.restriction_ids
            except PlacementError as e:
                result.reason = e.reason
                result.error_message = str(e)
            except Exception as e:
                logger.exception("Failed to place entry %s", entry.id)
                result.reason = ERROR
                result.error_message = f"{type(e).__name__}: {e}"

            if not result.assigned:
                logger.debug("Entry %s unassigned: %s", entry.id, result.reason)
            results.append(result)

        return results

    def _place(
        self,
        entry: LotteryEntry,
        slots: List[BlockSlot],
        windows: List[TimeWindow],
        checker: RestrictionChecker,
        result: LotteryAssignmentResult,
        on_assign: Optional[AssignHook],
    ) -> None:
        subjects = RestrictionSubjects.for_entry(entry)
        seats = entry.seats
        alternate = False

        try:
            slot = self._find_slot(
                entry.preferred_window, slots, windows, checker, subjects, seats, entry.requested_time
            )
        except (CapacityExhausted, RestrictionViolation) as first:
            if entry.alternate_window is None:
                raise
            try:
                slot = self._find_slot(entry.alternate_window, slots, windows, checker, subjects, seats)
            except (CapacityExhausted, RestrictionViolation) as second:
                raise _combine(first, second) from second
            alternate = True

        block = slot.block
        result.time_block_id = block.id
        result.start_time = block.start_time
        result.alternate_assigned = alternate
        result.preference_matched = not alternate
        result.specific_time_matched = (
            bool(entry.requested_time) and parse_time(entry.requested_time) == slot.start_minutes
        )
        result.reason = ALTERNATE_MATCH if alternate else PREFERRED_MATCH

        try:
            if on_assign is not None:
                on_assign(entry, block, result)
        except Exception:
            result.time_block_id = None
            result.start_time = None
            result.preference_matched = False
            result.specific_time_matched = False
            result.alternate_assigned = False
            raise

        slot.remaining -= seats
        checker.record_booking(subjects.member_ids)

    def _find_slot(
        self,
        window_index: int,
        slots: List[BlockSlot],
        windows: List[TimeWindow],
        checker: RestrictionChecker,
        subjects: RestrictionSubjects,
        seats: int,
        requested_time: Optional[str] = None,
    ) -> BlockSlot:
        if windows:
            window = find_window(windows, window_index)
            if window is None:
                raise PlacementError(f"Window {window_index} does not exist for this date")
            in_window = [s for s in slots if window.contains(s.start_minutes)]
        else:
            in_window = list(slots)

        if requested_time:
            minutes = parse_time(requested_time)
            requested = [s for s in in_window if s.start_minutes == minutes]
            in_window = requested + [s for s in in_window if s.start_minutes != minutes]

        had_room = False
        reasons: List[str] = []
        restriction_ids: List[int] = []
        for slot in in_window:
            if slot.remaining < seats:
                continue
            had_room = True
            check = checker.check(slot.block, subjects)
            if check.violated:
                reasons.extend(check.reasons)
                restriction_ids.extend(i for i in check.restriction_ids if i not in restriction_ids)
                continue
            return slot

        if had_room:
            raise RestrictionViolation(
                f"Every open block in window {window_index} is restricted", reasons, restriction_ids
            )
        raise CapacityExhausted(f"No block in window {window_index} has {seats} free seats")


def _combine(first: PlacementError, second: PlacementError) -> PlacementError:
    """Unplaced after both windows: restricted if either window was, else no space."""
    restricted = [e for e in (first, second) if isinstance(e, RestrictionViolation)]
    if not restricted:
        return second
    reasons, ids = [], []
    for e in restricted:
        reasons.extend(e.reasons)
        ids.extend(i for i in e.restriction_ids if i not in ids)
    return RestrictionViolation("Every open block in both windows is restricted", reasons, ids)
