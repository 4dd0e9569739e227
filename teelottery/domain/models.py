"""SQLAlchemy models for the tee-time lottery."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp used for every stored datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# Entry status values
PENDING = "PENDING"
PROCESSING = "PROCESSING"
ASSIGNED = "ASSIGNED"
CANCELLED = "CANCELLED"
ENTRY_STATUSES = (PENDING, PROCESSING, ASSIGNED, CANCELLED)

FILL_TYPES = ("guest", "reciprocal", "custom")


class Member(Base):
    """Club member (roster row supplied by the member directory)."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    member_number = Column(String(20), nullable=True)
    member_class = Column(String(50), nullable=False, default="REGULAR")

    speed_profile = relationship("MemberSpeedProfile", back_populates="member", uselist=False)
    fairness_scores = relationship("MemberFairnessScore", back_populates="member")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, name='{self.first_name} {self.last_name}', class='{self.member_class}')>"


class TimeBlock(Base):
    """Bookable tee time with a fixed start and seat capacity."""

    __tablename__ = "time_blocks"

    id = Column(Integer, primary_key=True)
    teesheet_date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    max_members = Column(Integer, nullable=False, default=4)

    members = relationship("TimeBlockMember", back_populates="time_block", cascade="all, delete-orphan")
    fills = relationship("TimeBlockFill", back_populates="time_block", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<TimeBlock(id={self.id}, date={self.teesheet_date}, start={self.start_time}, max={self.max_members})>"


class TimeBlockMember(Base):
    """Booking of a member into a time block."""

    __tablename__ = "time_block_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    time_block_id = Column(Integer, ForeignKey("time_blocks.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    booking_date = Column(Date, nullable=False)
    booking_time = Column(String(5), nullable=False)
    lottery_entry_id = Column(Integer, ForeignKey("lottery_entries.id"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    time_block = relationship("TimeBlock", back_populates="members")

    def __repr__(self) -> str:
        return f"<TimeBlockMember(block={self.time_block_id}, member={self.member_id}, date={self.booking_date})>"


class TimeBlockFill(Base):
    """Seat in a time block held by a guest, reciprocal or custom placeholder."""

    __tablename__ = "time_block_fills"

    id = Column(Integer, primary_key=True, autoincrement=True)
    time_block_id = Column(Integer, ForeignKey("time_blocks.id"), nullable=False, index=True)
    fill_type = Column(String(20), nullable=False)
    custom_name = Column(String(100), nullable=True)
    lottery_entry_id = Column(Integer, ForeignKey("lottery_entries.id"), nullable=True, index=True)

    time_block = relationship("TimeBlock", back_populates="fills")


class LotteryEntry(Base):
    """
    Lottery submission for one date.

    A single row covers both individual and group entries: ``member_ids`` holds
    every member including the organizer. The entry is a group when it carries
    more than one member or any fills.
    """

    __tablename__ = "lottery_entries"
    __table_args__ = (
        UniqueConstraint("organizer_id", "lottery_date", name="lottery_entries_organizer_date_unq"),
        Index("lottery_entries_date_status_idx", "lottery_date", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    organizer_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    member_ids = Column(JSON, nullable=False)
    lottery_date = Column(Date, nullable=False)
    preferred_window = Column(Integer, nullable=False)
    alternate_window = Column(Integer, nullable=True)
    requested_time = Column(String(5), nullable=True)  # Optional exact start "HH:MM"
    status = Column(String(20), nullable=False, default=PENDING)
    submission_timestamp = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
    assigned_time_block_id = Column(Integer, ForeignKey("time_blocks.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    organizer = relationship("Member")
    fills = relationship(
        "LotteryFill", back_populates="entry", cascade="all, delete-orphan", order_by="LotteryFill.id"
    )
    assigned_time_block = relationship("TimeBlock")

    @property
    def is_group(self) -> bool:
        return len(self.member_ids or []) > 1 or bool(self.fills)

    @property
    def entry_type(self) -> str:
        return "GROUP" if self.is_group else "INDIVIDUAL"

    @property
    def seats(self) -> int:
        return len(self.member_ids or []) + len(self.fills)

    def __repr__(self) -> str:
        return (
            f"<LotteryEntry(id={self.id}, organizer={self.organizer_id}, date={self.lottery_date}, "
            f"members={self.member_ids}, status={self.status})>"
        )


class LotteryFill(Base):
    """Placeholder seat requested by a group entry."""

    __tablename__ = "lottery_fills"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(Integer, ForeignKey("lottery_entries.id"), nullable=False, index=True)
    fill_type = Column(String(20), nullable=False)  # guest, reciprocal, custom
    custom_name = Column(String(100), nullable=True)

    entry = relationship("LotteryEntry", back_populates="fills")


class MemberSpeedProfile(Base):
    """Rolling pace-of-play classification and admin priority adjustment."""

    __tablename__ = "member_speed_profiles"

    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), primary_key=True)
    average_minutes = Column(Integer, nullable=True)
    speed_tier = Column(String(10), nullable=False, default="AVERAGE")  # FAST, AVERAGE, SLOW
    admin_priority_adjustment = Column(Integer, nullable=False, default=0)
    manual_override = Column(Boolean, nullable=False, default=False)
    last_calculated = Column(DateTime, nullable=True)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    member = relationship("Member", back_populates="speed_profile")

    def __repr__(self) -> str:
        return (
            f"<MemberSpeedProfile(member={self.member_id}, avg={self.average_minutes}, "
            f"tier={self.speed_tier}, adj={self.admin_priority_adjustment}, override={self.manual_override})>"
        )


class MemberFairnessScore(Base):
    """Per-member, per-month fairness accumulator."""

    __tablename__ = "member_fairness_scores"
    __table_args__ = (
        UniqueConstraint("member_id", "current_month", name="member_fairness_scores_member_month_unq"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    current_month = Column(String(7), nullable=False, index=True)  # "2025-01"
    total_entries_month = Column(Integer, nullable=False, default=0)
    preferences_granted_month = Column(Integer, nullable=False, default=0)
    preference_fulfillment_rate = Column(Float, nullable=False, default=0.0)  # 0..1
    days_without_good_time = Column(Integer, nullable=False, default=0)
    fairness_score = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime, nullable=False, default=utcnow)

    member = relationship("Member", back_populates="fairness_scores")

    def __repr__(self) -> str:
        return (
            f"<MemberFairnessScore(member={self.member_id}, month={self.current_month}, "
            f"entries={self.total_entries_month}, granted={self.preferences_granted_month}, score={self.fairness_score})>"
        )


class LotteryAlgorithmConfig(Base):
    """Singleton row (id=1) holding the club's scoring parameters."""

    __tablename__ = "lottery_algorithm_config"

    id = Column(Integer, primary_key=True, default=1)
    fast_threshold_minutes = Column(Integer, nullable=False, default=235)
    average_threshold_minutes = Column(Integer, nullable=False, default=245)
    speed_bonuses = Column(JSON, nullable=False)
    fairness_weighting = Column(Float, nullable=False, default=1.0)
    max_submission_bonus = Column(Float, nullable=False, default=5.0)
    admin_adjustment_bound = Column(Integer, nullable=False, default=25)
    enable_speed_priority = Column(Boolean, nullable=False, default=True)
    enable_fairness_system = Column(Boolean, nullable=False, default=True)
    monthly_reset_enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    updated_by = Column(String(100), nullable=True)


class LotteryProcessingRun(Base):
    """
    Audit record of one assignment pass.

    ``canonical_date`` equals ``lottery_date`` while the run is the canonical
    one for its date and is cleared when the run is superseded by a replay.
    The unique constraint on it is what stops two concurrent runs for the same
    date.
    """

    __tablename__ = "lottery_processing_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lottery_date = Column(Date, nullable=False, index=True)
    canonical_date = Column(Date, nullable=True, unique=True)
    processed_at = Column(DateTime, nullable=False, default=utcnow)
    processed_by_admin_id = Column(Integer, ForeignKey("members.id"), nullable=True)

    total_entries = Column(Integer, nullable=False, default=0)
    assigned_count = Column(Integer, nullable=False, default=0)
    group_count = Column(Integer, nullable=False, default=0)
    individual_count = Column(Integer, nullable=False, default=0)
    violation_count = Column(Integer, nullable=False, default=0)

    fairness_assigned_at = Column(DateTime, nullable=True)
    finalized_at = Column(DateTime, nullable=True)
    superseded_at = Column(DateTime, nullable=True)
    superseded_by_run_id = Column(Integer, ForeignKey("lottery_processing_runs.id"), nullable=True)

    notes = Column(Text, nullable=True)

    entry_logs = relationship(
        "LotteryProcessingEntryLog",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="LotteryProcessingEntryLog.rank",
    )

    @property
    def is_canonical(self) -> bool:
        return self.canonical_date is not None

    @property
    def unassigned_count(self) -> int:
        return self.total_entries - self.assigned_count

    def __repr__(self) -> str:
        return (
            f"<LotteryProcessingRun(id={self.id}, date={self.lottery_date}, "
            f"assigned={self.assigned_count}/{self.total_entries}, canonical={self.is_canonical})>"
        )


class LotteryProcessingEntryLog(Base):
    """Per-entry outcome of a processing run, kept for explainability."""

    __tablename__ = "lottery_processing_entry_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Integer, ForeignKey("lottery_processing_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    entry_id = Column(Integer, ForeignKey("lottery_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    rank = Column(Integer, nullable=False)
    entry_type = Column(String(20), nullable=False)  # GROUP, INDIVIDUAL
    organizer_id = Column(Integer, nullable=False)
    seats = Column(Integer, nullable=False)

    preferred_window = Column(Integer, nullable=True)
    alternate_window = Column(Integer, nullable=True)

    # Priority breakdown
    total_score = Column(Float, nullable=False, default=0.0)
    fairness_component = Column(Float, nullable=False, default=0.0)
    speed_component = Column(Float, nullable=False, default=0.0)
    admin_component = Column(Float, nullable=False, default=0.0)
    submission_component = Column(Float, nullable=False, default=0.0)

    auto_assigned_time_block_id = Column(Integer, ForeignKey("time_blocks.id"), nullable=True)
    auto_assigned_start_time = Column(String(5), nullable=True)
    final_time_block_id = Column(Integer, ForeignKey("time_blocks.id"), nullable=True)
    final_start_time = Column(String(5), nullable=True)

    # PREFERRED_MATCH, ALTERNATE_MATCH, NO_SPACE, RESTRICTION, ERROR
    assignment_reason = Column(String(50), nullable=False)
    preference_matched = Column(Boolean, nullable=False, default=False)
    specific_time_matched = Column(Boolean, nullable=False, default=False)
    alternate_assigned = Column(Boolean, nullable=False, default=False)
    violated_restrictions = Column(Boolean, nullable=False, default=False)
    restriction_details = Column(JSON, nullable=True)  # {"restriction_ids": [], "reasons": []}
    error_message = Column(Text, nullable=True)

    fairness_score_before = Column(Integer, nullable=True)
    fairness_score_after = Column(Integer, nullable=True)
    fairness_score_delta = Column(Integer, nullable=True)
    preference_granted = Column(Boolean, nullable=True)
    fairness_snapshot = Column(JSON, nullable=True)

    processed_at = Column(DateTime, nullable=False, default=utcnow)

    run = relationship("LotteryProcessingRun", back_populates="entry_logs")

    def __repr__(self) -> str:
        return (
            f"<LotteryProcessingEntryLog(run={self.run_id}, entry={self.entry_id}, rank={self.rank}, "
            f"reason={self.assignment_reason}, block={self.final_time_block_id})>"
        )


class SystemMaintenance(Base):
    """Completion record of a maintenance step for a month."""

    __tablename__ = "system_maintenance"
    __table_args__ = (
        UniqueConstraint("maintenance_type", "month", name="system_maintenance_type_month_unq"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    maintenance_type = Column(String(50), nullable=False)  # MONTHLY_RESET, SPEED_RECALCULATION, MANUAL_MAINTENANCE
    month = Column(String(7), nullable=False)
    completed_at = Column(DateTime, nullable=False, default=utcnow)
    records_affected = Column(Integer, nullable=False, default=0)
    notes = Column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<SystemMaintenance(type={self.maintenance_type}, month={self.month}, records={self.records_affected})>"


class PaceOfPlay(Base):
    """Recorded start/turn/finish times of the group playing a time block."""

    __tablename__ = "pace_of_play"

    id = Column(Integer, primary_key=True, autoincrement=True)
    time_block_id = Column(Integer, ForeignKey("time_blocks.id", ondelete="SET NULL"), nullable=True, index=True)
    start_time = Column(DateTime, nullable=True)
    turn9_time = Column(DateTime, nullable=True)
    finish_time = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # pending, on_time, behind, ahead, completed


class TimeRestriction(Base):
    """Time-of-day or frequency rule limiting who may occupy a block."""

    __tablename__ = "time_restrictions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    restriction_category = Column(String(20), nullable=False)  # MEMBER_CLASS, GUEST, LOTTERY
    restriction_type = Column(String(20), nullable=False)  # TIME, FREQUENCY
    member_classes = Column(JSON, nullable=True)  # Empty/None = every class
    days_of_week = Column(JSON, nullable=True)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(String(5), nullable=True)
    end_time = Column(String(5), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    max_count = Column(Integer, nullable=True)
    period_days = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<TimeRestriction(id={self.id}, {self.restriction_category}/{self.restriction_type}, name='{self.name}')>"
