"""Repository classes for data access.

Repositories used inside a processing run only flush; the caller owns the
transaction. The ``create`` / ``bulk_create`` helpers used by the importers
commit, as the roster and teesheet are loaded outside any run.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import (
    CANCELLED,
    LotteryAlgorithmConfig,
    LotteryEntry,
    LotteryProcessingEntryLog,
    LotteryProcessingRun,
    Member,
    MemberFairnessScore,
    MemberSpeedProfile,
    PaceOfPlay,
    SystemMaintenance,
    TimeBlock,
    TimeBlockFill,
    TimeBlockMember,
    TimeRestriction,
    utcnow,
)


class MemberRepository:
    """Repository for member data access."""

    @staticmethod
    def get_all(session: Session) -> List[Member]:
        """Get all members."""
        return session.query(Member).order_by(Member.id).all()

    @staticmethod
    def get_by_id(session: Session, member_id: int) -> Optional[Member]:
        """Get member by ID."""
        return session.get(Member, member_id)

    @staticmethod
    def get_by_ids(session: Session, member_ids: Iterable[int]) -> Dict[int, Member]:
        ids = set(member_ids)
        if not ids:
            return {}
        return {m.id: m for m in session.query(Member).filter(Member.id.in_(ids)).all()}

    @staticmethod
    def all_ids(session: Session) -> List[int]:
        return [row[0] for row in session.query(Member.id).order_by(Member.id).all()]

    @staticmethod
    def bulk_create(session: Session, members: List[Member]) -> None:
        """Create multiple members."""
        session.add_all(members)
        session.commit()


class TimeBlockRepository:
    """Repository for teesheet blocks and their occupancy."""

    @staticmethod
    def get_by_id(session: Session, block_id: int) -> Optional[TimeBlock]:
        return session.get(TimeBlock, block_id)

    @staticmethod
    def get_by_date(session: Session, teesheet_date: date) -> List[TimeBlock]:
        """Get all blocks of a day, ordered by start time then id."""
        return (
            session.query(TimeBlock)
            .filter(TimeBlock.teesheet_date == teesheet_date)
            .order_by(TimeBlock.start_time, TimeBlock.id)
            .all()
        )

    @staticmethod
    def seats_used(session: Session, block_ids: Sequence[int]) -> Dict[int, int]:
        """Seats currently taken in each block (member bookings plus fills)."""
        used: Counter = Counter()
        if not block_ids:
            return {}
        member_rows = (
            session.query(TimeBlockMember.time_block_id, func.count(TimeBlockMember.id))
            .filter(TimeBlockMember.time_block_id.in_(block_ids))
            .group_by(TimeBlockMember.time_block_id)
            .all()
        )
        fill_rows = (
            session.query(TimeBlockFill.time_block_id, func.count(TimeBlockFill.id))
            .filter(TimeBlockFill.time_block_id.in_(block_ids))
            .group_by(TimeBlockFill.time_block_id)
            .all()
        )
        for block_id, count in list(member_rows) + list(fill_rows):
            used[block_id] += count
        return {block_id: used.get(block_id, 0) for block_id in block_ids}

    @staticmethod
    def bulk_create(session: Session, blocks: List[TimeBlock]) -> None:
        """Create multiple time blocks."""
        session.add_all(blocks)
        session.commit()


class BookingRepository:
    """Repository for member and fill bookings."""

    @staticmethod
    def book_entry(session: Session, entry: LotteryEntry, block: TimeBlock) -> None:
        """Seat every member and fill of an entry into a block."""
        for member_id in entry.member_ids:
            session.add(
                TimeBlockMember(
                    time_block_id=block.id,
                    member_id=member_id,
                    booking_date=block.teesheet_date,
                    booking_time=block.start_time,
                    lottery_entry_id=entry.id,
                )
            )
        for fill in entry.fills:
            session.add(
                TimeBlockFill(
                    time_block_id=block.id,
                    fill_type=fill.fill_type,
                    custom_name=fill.custom_name,
                    lottery_entry_id=entry.id,
                )
            )
        session.flush()

    @staticmethod
    def retract_entry(session: Session, entry_id: int) -> int:
        """Remove every booking created for an entry. Returns seats freed."""
        members = session.query(TimeBlockMember).filter(TimeBlockMember.lottery_entry_id == entry_id).all()
        fills = session.query(TimeBlockFill).filter(TimeBlockFill.lottery_entry_id == entry_id).all()
        for row in members + fills:
            session.delete(row)
        session.flush()
        return len(members) + len(fills)

    @staticmethod
    def count_by_member(
        session: Session, member_ids: Iterable[int], start: date, end: date
    ) -> Dict[int, int]:
        """Number of bookings per member with booking_date in [start, end]."""
        ids = set(member_ids)
        if not ids:
            return {}
        rows = (
            session.query(TimeBlockMember.member_id, func.count(TimeBlockMember.id))
            .filter(
                TimeBlockMember.member_id.in_(ids),
                TimeBlockMember.booking_date >= start,
                TimeBlockMember.booking_date <= end,
            )
            .group_by(TimeBlockMember.member_id)
            .all()
        )
        counts = {member_id: 0 for member_id in ids}
        counts.update({member_id: count for member_id, count in rows})
        return counts


class LotteryEntryRepository:
    """Repository for lottery entries."""

    @staticmethod
    def get_by_id(session: Session, entry_id: int) -> Optional[LotteryEntry]:
        return session.get(LotteryEntry, entry_id)

    @staticmethod
    def get_by_date(
        session: Session, lottery_date: date, statuses: Optional[Sequence[str]] = None
    ) -> List[LotteryEntry]:
        query = session.query(LotteryEntry).filter(LotteryEntry.lottery_date == lottery_date)
        if statuses:
            query = query.filter(LotteryEntry.status.in_(list(statuses)))
        return query.order_by(LotteryEntry.id).all()

    @staticmethod
    def get_by_organizer_and_date(
        session: Session, organizer_id: int, lottery_date: date
    ) -> Optional[LotteryEntry]:
        return (
            session.query(LotteryEntry)
            .filter(LotteryEntry.organizer_id == organizer_id, LotteryEntry.lottery_date == lottery_date)
            .first()
        )

    @staticmethod
    def count_active_for_organizer(session: Session, organizer_id: int, start: date, end: date) -> int:
        """Non-cancelled entries organized by a member with lottery_date in [start, end]."""
        return (
            session.query(func.count(LotteryEntry.id))
            .filter(
                LotteryEntry.organizer_id == organizer_id,
                LotteryEntry.lottery_date >= start,
                LotteryEntry.lottery_date <= end,
                LotteryEntry.status != CANCELLED,
            )
            .scalar()
        )

    @staticmethod
    def create(session: Session, entry: LotteryEntry) -> LotteryEntry:
        """Create a new entry."""
        session.add(entry)
        session.commit()
        session.refresh(entry)
        return entry

    @staticmethod
    def bulk_create(session: Session, entries: List[LotteryEntry]) -> None:
        """Create multiple entries."""
        session.add_all(entries)
        session.commit()


class FairnessScoreRepository:
    """Repository for monthly fairness rows."""

    @staticmethod
    def get(session: Session, member_id: int, month: str) -> Optional[MemberFairnessScore]:
        return (
            session.query(MemberFairnessScore)
            .filter(MemberFairnessScore.member_id == member_id, MemberFairnessScore.current_month == month)
            .first()
        )

    @staticmethod
    def get_for_members(session: Session, member_ids: Iterable[int], month: str) -> Dict[int, MemberFairnessScore]:
        ids = set(member_ids)
        if not ids:
            return {}
        rows = (
            session.query(MemberFairnessScore)
            .filter(MemberFairnessScore.member_id.in_(ids), MemberFairnessScore.current_month == month)
            .all()
        )
        return {row.member_id: row for row in rows}

    @staticmethod
    def get_by_month(session: Session, month: str) -> List[MemberFairnessScore]:
        return (
            session.query(MemberFairnessScore)
            .filter(MemberFairnessScore.current_month == month)
            .order_by(MemberFairnessScore.member_id)
            .all()
        )

    @staticmethod
    def month_exists(session: Session, month: str) -> bool:
        return (
            session.query(MemberFairnessScore.id).filter(MemberFairnessScore.current_month == month).first()
            is not None
        )

    @staticmethod
    def get_or_create(session: Session, member_id: int, month: str) -> MemberFairnessScore:
        row = FairnessScoreRepository.get(session, member_id, month)
        if row is None:
            row = MemberFairnessScore(
                member_id=member_id,
                current_month=month,
                total_entries_month=0,
                preferences_granted_month=0,
                preference_fulfillment_rate=0.0,
                days_without_good_time=0,
                fairness_score=0,
                last_updated=utcnow(),
            )
            session.add(row)
            session.flush()
        return row


class SpeedProfileRepository:
    """Repository for member speed profiles."""

    @staticmethod
    def get(session: Session, member_id: int) -> Optional[MemberSpeedProfile]:
        return session.get(MemberSpeedProfile, member_id)

    @staticmethod
    def get_all(session: Session) -> List[MemberSpeedProfile]:
        return session.query(MemberSpeedProfile).order_by(MemberSpeedProfile.member_id).all()

    @staticmethod
    def get_for_members(session: Session, member_ids: Iterable[int]) -> Dict[int, MemberSpeedProfile]:
        ids = set(member_ids)
        if not ids:
            return {}
        rows = session.query(MemberSpeedProfile).filter(MemberSpeedProfile.member_id.in_(ids)).all()
        return {row.member_id: row for row in rows}

    @staticmethod
    def get_or_create(session: Session, member_id: int) -> MemberSpeedProfile:
        row = session.get(MemberSpeedProfile, member_id)
        if row is None:
            row = MemberSpeedProfile(
                member_id=member_id,
                speed_tier="AVERAGE",
                admin_priority_adjustment=0,
                manual_override=False,
            )
            session.add(row)
            session.flush()
        return row


class AlgorithmConfigRepository:
    """Repository for the singleton algorithm configuration row."""

    SINGLETON_ID = 1

    @staticmethod
    def get(session: Session) -> Optional[LotteryAlgorithmConfig]:
        return session.get(LotteryAlgorithmConfig, AlgorithmConfigRepository.SINGLETON_ID)

    @staticmethod
    def upsert(session: Session, values: dict, updated_by: Optional[str] = None) -> LotteryAlgorithmConfig:
        row = AlgorithmConfigRepository.get(session)
        if row is None:
            row = LotteryAlgorithmConfig(id=AlgorithmConfigRepository.SINGLETON_ID)
            session.add(row)
        for key, value in values.items():
            setattr(row, key, value)
        row.updated_by = updated_by
        row.updated_at = utcnow()
        session.flush()
        return row


class ProcessingRunRepository:
    """Repository for processing runs."""

    @staticmethod
    def get_by_id(session: Session, run_id: int) -> Optional[LotteryProcessingRun]:
        return session.get(LotteryProcessingRun, run_id)

    @staticmethod
    def get_canonical(session: Session, lottery_date: date) -> Optional[LotteryProcessingRun]:
        """The single non-superseded run for a date, if any."""
        return (
            session.query(LotteryProcessingRun)
            .filter(LotteryProcessingRun.canonical_date == lottery_date)
            .first()
        )

    @staticmethod
    def get_by_date(session: Session, lottery_date: date) -> List[LotteryProcessingRun]:
        """Every run for a date, canonical and superseded, oldest first."""
        return (
            session.query(LotteryProcessingRun)
            .filter(LotteryProcessingRun.lottery_date == lottery_date)
            .order_by(LotteryProcessingRun.id)
            .all()
        )


class EntryLogRepository:
    """Repository for per-entry processing logs."""

    @staticmethod
    def get_by_run(session: Session, run_id: int) -> List[LotteryProcessingEntryLog]:
        return (
            session.query(LotteryProcessingEntryLog)
            .filter(LotteryProcessingEntryLog.run_id == run_id)
            .order_by(LotteryProcessingEntryLog.rank)
            .all()
        )

    @staticmethod
    def get_for_entry(session: Session, run_id: int, entry_id: int) -> Optional[LotteryProcessingEntryLog]:
        return (
            session.query(LotteryProcessingEntryLog)
            .filter(LotteryProcessingEntryLog.run_id == run_id, LotteryProcessingEntryLog.entry_id == entry_id)
            .first()
        )


class MaintenanceRepository:
    """Repository for the maintenance ledger."""

    @staticmethod
    def exists(session: Session, maintenance_type: str, month: str) -> bool:
        return (
            session.query(SystemMaintenance.id)
            .filter(SystemMaintenance.maintenance_type == maintenance_type, SystemMaintenance.month == month)
            .first()
            is not None
        )

    @staticmethod
    def record(
        session: Session,
        maintenance_type: str,
        month: str,
        records_affected: int = 0,
        notes: Optional[str] = None,
    ) -> bool:
        """
        Insert a ledger row, tolerating a concurrent insert of the same (type, month).

        Returns:
            True if this call wrote the row, False if it already existed
        """
        if MaintenanceRepository.exists(session, maintenance_type, month):
            return False
        try:
            with session.begin_nested():
                session.add(
                    SystemMaintenance(
                        maintenance_type=maintenance_type,
                        month=month,
                        completed_at=utcnow(),
                        records_affected=records_affected,
                        notes=notes,
                    )
                )
        except IntegrityError:
            return False
        return True

    @staticmethod
    def get_all(session: Session) -> List[SystemMaintenance]:
        return session.query(SystemMaintenance).order_by(SystemMaintenance.completed_at).all()


class PaceOfPlayRepository:
    """Repository for recorded pace of play."""

    @staticmethod
    def completed_rounds_since(session: Session, since: datetime) -> List[tuple]:
        """
        Completed rounds per member since a cutoff.

        Returns:
            List of (member_id, start_time, finish_time) for every member booked
            into a block whose round has both a start and a finish time.
        """
        stmt = (
            select(TimeBlockMember.member_id, PaceOfPlay.start_time, PaceOfPlay.finish_time)
            .join(PaceOfPlay, PaceOfPlay.time_block_id == TimeBlockMember.time_block_id)
            .where(
                and_(
                    PaceOfPlay.start_time.is_not(None),
                    PaceOfPlay.finish_time.is_not(None),
                    PaceOfPlay.start_time >= since,
                )
            )
            .order_by(TimeBlockMember.member_id, PaceOfPlay.start_time)
        )
        return [tuple(row) for row in session.execute(stmt).all()]

    @staticmethod
    def bulk_create(session: Session, rows: List[PaceOfPlay]) -> None:
        session.add_all(rows)
        session.commit()


class RestrictionRepository:
    """Repository for time restrictions."""

    @staticmethod
    def get_active(session: Session, category: Optional[str] = None) -> List[TimeRestriction]:
        query = session.query(TimeRestriction).filter(TimeRestriction.is_active.is_(True))
        if category:
            query = query.filter(TimeRestriction.restriction_category == category)
        return query.order_by(TimeRestriction.priority.desc(), TimeRestriction.id).all()

    @staticmethod
    def bulk_create(session: Session, restrictions: List[TimeRestriction]) -> None:
        session.add_all(restrictions)
        session.commit()
