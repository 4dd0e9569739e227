"""Lottery engine: greedy solver, processing runs and maintenance."""

from .maintenance import MaintenanceResult, MaintenanceScheduler, run_maintenance
from .processor import (
    LotteryProcessor,
    finalize_lottery_date,
    override_assignment,
    process_lottery_date,
    reprocess_lottery_date,
)
from .solver import BlockSlot, Candidate, GreedySolver, LotteryAssignmentResult

__all__ = [
    "MaintenanceResult",
    "MaintenanceScheduler",
    "run_maintenance",
    "LotteryProcessor",
    "finalize_lottery_date",
    "override_assignment",
    "process_lottery_date",
    "reprocess_lottery_date",
    "BlockSlot",
    "Candidate",
    "GreedySolver",
    "LotteryAssignmentResult",
]
