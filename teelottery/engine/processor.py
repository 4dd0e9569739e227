"""Processor - runs the lottery for a date and keeps the processing-run ledger."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from teelottery.config import AlgorithmConfig, LotteryConfig
from teelottery.domain.models import (
    ASSIGNED,
    PENDING,
    PROCESSING,
    LotteryEntry,
    LotteryProcessingEntryLog,
    LotteryProcessingRun,
    TimeBlock,
    utcnow,
)
from teelottery.domain.repositories import (
    BookingRepository,
    EntryLogRepository,
    FairnessScoreRepository,
    LotteryEntryRepository,
    ProcessingRunRepository,
    SpeedProfileRepository,
    TimeBlockRepository,
)
from teelottery.errors import AssignmentError, DuplicateRunError, RunNotFoundError
from teelottery.services.algorithm_config import load_algorithm_config
from teelottery.services.fairness import (
    TRACKED_REASONS,
    is_preference_granted,
    month_key,
    record_outcome,
    revert_outcome,
)
from teelottery.services.restrictions import RestrictionChecker
from teelottery.services.scoring import score_entry
from teelottery.services.timewindows import compute_time_windows

from .solver import RESTRICTION, BlockSlot, Candidate, GreedySolver, LotteryAssignmentResult

logger = logging.getLogger(__name__)


class LotteryProcessor:
    """
    Runs the lottery for one date inside a single transaction.

    The run row is inserted first; its unique ``canonical_date`` makes a
    concurrent second run for the same date fail before any entry is touched.
    Each placement is written in its own savepoint so a failing entry is
    rolled back alone.
    """

    def __init__(
        self,
        session: Session,
        settings: Optional[LotteryConfig] = None,
        algorithm_config: Optional[AlgorithmConfig] = None,
        solver: Optional[GreedySolver] = None,
        now: Optional[datetime] = None,
    ):
        self.session = session
        self.settings = settings or LotteryConfig()
        self.algorithm_config = algorithm_config
        self.solver = solver or GreedySolver()
        self.now = now

    def _now(self) -> datetime:
        return self.now or utcnow()

    def process(self, lottery_date: date, admin_id: Optional[int] = None) -> LotteryProcessingRun:
        """
        Process a date, or return its canonical run if it was already processed.

        Raises:
            DuplicateRunError: If another run for the date committed first
        """
        existing = ProcessingRunRepository.get_canonical(self.session, lottery_date)
        if existing is not None:
            logger.info("Lottery for %s already processed (run %s)", lottery_date, existing.id)
            return existing

        try:
            run = self._execute(lottery_date, admin_id)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            if ProcessingRunRepository.get_canonical(self.session, lottery_date) is not None:
                raise DuplicateRunError(lottery_date) from e
            raise
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "Processed lottery for %s: %d/%d entries assigned (run %s)",
            lottery_date, run.assigned_count, run.total_entries, run.id,
        )
        return run

    def reprocess(self, lottery_date: date, admin_id: Optional[int] = None) -> LotteryProcessingRun:
        """
        Retract the canonical run for a date and replay the lottery.

        The old run is kept as a superseded audit record.

        Raises:
            DuplicateRunError: If the canonical run is already finalized
        """
        canonical = ProcessingRunRepository.get_canonical(self.session, lottery_date)
        if canonical is None:
            return self.process(lottery_date, admin_id)
        if canonical.finalized_at is not None:
            raise DuplicateRunError(
                lottery_date, f"Lottery for {lottery_date} is finalized and cannot be reprocessed"
            )

        try:
            retracted = self._retract(canonical)
            canonical.canonical_date = None
            canonical.superseded_at = self._now()
            self.session.flush()

            run = self._execute(lottery_date, admin_id, notes=f"Replay of run {canonical.id}")
            canonical.superseded_by_run_id = run.id
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            if ProcessingRunRepository.get_canonical(self.session, lottery_date) is not None:
                raise DuplicateRunError(lottery_date) from e
            raise
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "Reprocessed lottery for %s: retracted %d entries from run %s, new run %s assigned %d/%d",
            lottery_date, retracted, canonical.id, run.id, run.assigned_count, run.total_entries,
        )
        return run

    def finalize(self, lottery_date: date) -> LotteryProcessingRun:
        """Mark the canonical run final. Finalizing twice keeps the first timestamp."""
        run = ProcessingRunRepository.get_canonical(self.session, lottery_date)
        if run is None:
            raise RunNotFoundError(f"No processing run for {lottery_date}")
        if run.finalized_at is None:
            run.finalized_at = self._now()
            self.session.commit()
            logger.info("Finalized lottery for %s (run %s)", lottery_date, run.id)
        return run

    def override_assignment(
        self, entry_id: int, time_block_id: int, admin_id: Optional[int] = None
    ) -> LotteryEntry:
        """
        Move an assigned entry to another block on the same date.

        Restrictions are not applied to admin moves; capacity is.

        Raises:
            AssignmentError: If the entry, block or capacity does not allow the move
        """
        entry = LotteryEntryRepository.get_by_id(self.session, entry_id)
        if entry is None:
            raise AssignmentError(f"Entry {entry_id} not found")
        if entry.status != ASSIGNED:
            raise AssignmentError(f"Entry {entry_id} is {entry.status}; only assigned entries can be moved")

        run = ProcessingRunRepository.get_canonical(self.session, entry.lottery_date)
        if run is not None and run.finalized_at is not None:
            raise AssignmentError(f"Lottery for {entry.lottery_date} is finalized")

        block = TimeBlockRepository.get_by_id(self.session, time_block_id)
        if block is None:
            raise AssignmentError(f"Time block {time_block_id} not found")
        if block.teesheet_date != entry.lottery_date:
            raise AssignmentError(
                f"Time block {time_block_id} is on {block.teesheet_date}, entry is for {entry.lottery_date}"
            )
        if entry.assigned_time_block_id == block.id:
            return entry

        used = TimeBlockRepository.seats_used(self.session, [block.id])[block.id]
        if used + entry.seats > block.max_members:
            raise AssignmentError(
                f"Time block {block.start_time} has {block.max_members - used} free seats, entry needs {entry.seats}"
            )

        try:
            with self.session.begin_nested():
                BookingRepository.retract_entry(self.session, entry.id)
                BookingRepository.book_entry(self.session, entry, block)
                entry.assigned_time_block_id = block.id
                if run is not None:
                    log = EntryLogRepository.get_for_entry(self.session, run.id, entry.id)
                    if log is not None:
                        log.final_time_block_id = block.id
                        log.final_start_time = block.start_time
                self.session.flush()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Entry %s moved to %s by admin %s", entry.id, block.start_time, admin_id)
        return entry

    def _execute(
        self, lottery_date: date, admin_id: Optional[int], notes: Optional[str] = None
    ) -> LotteryProcessingRun:
        session = self.session
        now = self._now()
        config = self.algorithm_config or load_algorithm_config(session)

        run = LotteryProcessingRun(
            lottery_date=lottery_date,
            canonical_date=lottery_date,
            processed_at=now,
            processed_by_admin_id=admin_id,
            notes=notes,
        )
        session.add(run)
        session.flush()

        entries = LotteryEntryRepository.get_by_date(session, lottery_date, statuses=[PENDING])
        for entry in entries:
            entry.status = PROCESSING
        session.flush()

        blocks = TimeBlockRepository.get_by_date(session, lottery_date)
        windows = compute_time_windows(
            [b.start_time for b in blocks], self.settings.max_window_duration_minutes
        ) if blocks else []
        slots = BlockSlot.from_blocks(blocks, TimeBlockRepository.seats_used(session, [b.id for b in blocks]))

        organizer_ids = {e.organizer_id for e in entries}
        fairness_rows = FairnessScoreRepository.get_for_members(session, organizer_ids, month_key(lottery_date))
        profiles = SpeedProfileRepository.get_for_members(session, organizer_ids)

        candidates = [
            Candidate(
                entry=entry,
                priority=score_entry(
                    entry,
                    fairness_rows.get(entry.organizer_id),
                    profiles.get(entry.organizer_id),
                    config,
                    windows,
                    advance_days=self.settings.lottery_advance_days,
                ),
            )
            for entry in entries
        ]

        all_members = {m for e in entries for m in (e.member_ids or [])}
        checker = RestrictionChecker.from_session(session, lottery_date, all_members)

        def persist(entry: LotteryEntry, block: TimeBlock, result: LotteryAssignmentResult) -> None:
            with session.begin_nested():
                BookingRepository.book_entry(session, entry, block)
                entry.status = ASSIGNED
                entry.assigned_time_block_id = block.id
                entry.processed_at = now
                session.flush()

        results = self.solver.solve(candidates, slots, windows, checker, on_assign=persist)

        entries_by_id: Dict[int, LotteryEntry] = {e.id: e for e in entries}
        for result in results:
            entry = entries_by_id[result.entry_id]
            if not result.assigned:
                entry.status = PENDING
                entry.assigned_time_block_id = None
            session.add(self._entry_log(run, entry, result, now))
        session.flush()

        run.total_entries = len(entries)
        run.assigned_count = sum(1 for r in results if r.assigned)
        run.group_count = sum(1 for e in entries if e.is_group)
        run.individual_count = run.total_entries - run.group_count
        run.violation_count = sum(1 for r in results if r.reason == RESTRICTION)
        run.fairness_assigned_at = now
        session.flush()
        return run

    def _entry_log(
        self,
        run: LotteryProcessingRun,
        entry: LotteryEntry,
        result: LotteryAssignmentResult,
        now: datetime,
    ) -> LotteryProcessingEntryLog:
        priority = result.priority
        log = LotteryProcessingEntryLog(
            run_id=run.id,
            entry_id=entry.id,
            rank=result.rank,
            entry_type=entry.entry_type,
            organizer_id=entry.organizer_id,
            seats=result.seats,
            preferred_window=entry.preferred_window,
            alternate_window=entry.alternate_window,
            total_score=priority.total_score,
            fairness_component=priority.fairness_score,
            speed_component=priority.speed_bonus,
            admin_component=priority.admin_adjustment,
            submission_component=priority.submission_bonus,
            auto_assigned_time_block_id=result.time_block_id,
            auto_assigned_start_time=result.start_time,
            final_time_block_id=result.time_block_id,
            final_start_time=result.start_time,
            assignment_reason=result.reason,
            preference_matched=result.preference_matched,
            specific_time_matched=result.specific_time_matched,
            alternate_assigned=result.alternate_assigned,
            violated_restrictions=bool(result.restriction_ids),
            restriction_details=(
                {"restriction_ids": result.restriction_ids, "reasons": result.restriction_reasons}
                if result.restriction_ids
                else None
            ),
            error_message=result.error_message,
            processed_at=now,
        )

        if result.reason in TRACKED_REASONS:
            update = record_outcome(
                self.session, entry.organizer_id, entry.lottery_date, is_preference_granted(result.reason)
            )
            log.fairness_score_before = update.score_before
            log.fairness_score_after = update.score_after
            log.fairness_score_delta = update.delta
            log.preference_granted = update.granted
            log.fairness_snapshot = update.snapshot
        return log

    def _retract(self, run: LotteryProcessingRun) -> int:
        """Undo a run's bookings, entry assignments and fairness updates."""
        retracted = 0
        for log in reversed(EntryLogRepository.get_by_run(self.session, run.id)):
            entry = LotteryEntryRepository.get_by_id(self.session, log.entry_id)
            if entry is None:
                continue
            if entry.status == ASSIGNED:
                BookingRepository.retract_entry(self.session, entry.id)
                entry.status = PENDING
                entry.assigned_time_block_id = None
                entry.processed_at = None
                retracted += 1
            if log.preference_granted is not None:
                revert_outcome(
                    self.session,
                    log.organizer_id,
                    run.lottery_date,
                    log.preference_granted,
                    log.fairness_snapshot,
                )
        self.session.flush()
        return retracted


def process_lottery_date(
    session: Session,
    lottery_date: date,
    settings: Optional[LotteryConfig] = None,
    admin_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> LotteryProcessingRun:
    """
    Convenience function to run the lottery for a date.

    Args:
        session: Database session
        lottery_date: Date to process
        settings: Deployment settings
        admin_id: Member id of the admin triggering the run
        now: Processing timestamp

    Returns:
        The canonical LotteryProcessingRun for the date
    """
    return LotteryProcessor(session, settings=settings, now=now).process(lottery_date, admin_id)


def reprocess_lottery_date(
    session: Session,
    lottery_date: date,
    settings: Optional[LotteryConfig] = None,
    admin_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> LotteryProcessingRun:
    return LotteryProcessor(session, settings=settings, now=now).reprocess(lottery_date, admin_id)


def finalize_lottery_date(session: Session, lottery_date: date, now: Optional[datetime] = None) -> LotteryProcessingRun:
    return LotteryProcessor(session, now=now).finalize(lottery_date)


def override_assignment(
    session: Session, entry_id: int, time_block_id: int, admin_id: Optional[int] = None
) -> LotteryEntry:
    return LotteryProcessor(session).override_assignment(entry_id, time_block_id, admin_id)


def unassigned_results(session: Session, run: LotteryProcessingRun) -> List[LotteryProcessingEntryLog]:
    """Entry logs of a run whose entries were not placed, in rank order."""
    return [log for log in EntryLogRepository.get_by_run(session, run.id) if log.final_time_block_id is None]
