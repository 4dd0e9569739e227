"""Domain models and data access layer."""

from .models import (
    Base,
    LotteryAlgorithmConfig,
    LotteryEntry,
    LotteryFill,
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
)
from .repositories import (
    AlgorithmConfigRepository,
    BookingRepository,
    EntryLogRepository,
    FairnessScoreRepository,
    LotteryEntryRepository,
    MaintenanceRepository,
    MemberRepository,
    PaceOfPlayRepository,
    ProcessingRunRepository,
    RestrictionRepository,
    SpeedProfileRepository,
    TimeBlockRepository,
)

__all__ = [
    "Base",
    "LotteryAlgorithmConfig",
    "LotteryEntry",
    "LotteryFill",
    "LotteryProcessingEntryLog",
    "LotteryProcessingRun",
    "Member",
    "MemberFairnessScore",
    "MemberSpeedProfile",
    "PaceOfPlay",
    "SystemMaintenance",
    "TimeBlock",
    "TimeBlockFill",
    "TimeBlockMember",
    "TimeRestriction",
    "AlgorithmConfigRepository",
    "BookingRepository",
    "EntryLogRepository",
    "FairnessScoreRepository",
    "LotteryEntryRepository",
    "MaintenanceRepository",
    "MemberRepository",
    "PaceOfPlayRepository",
    "ProcessingRunRepository",
    "RestrictionRepository",
    "SpeedProfileRepository",
    "TimeBlockRepository",
]
