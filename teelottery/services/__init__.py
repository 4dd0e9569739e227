"""Services for lottery scoring, restrictions and bookkeeping."""

from .entries import cancel_entry, submit_entry, update_entry
from .fairness import calculate_fairness_score, record_outcome
from .restrictions import RestrictionChecker, RestrictionResult, RestrictionSubjects
from .scoring import LotteryPriorityCalculation, score_entry
from .stats import LotteryProcessingStats, compute_processing_stats
from .timewindows import TimeWindow, compute_time_windows

__all__ = [
    "cancel_entry",
    "submit_entry",
    "update_entry",
    "calculate_fairness_score",
    "record_outcome",
    "RestrictionChecker",
    "RestrictionResult",
    "RestrictionSubjects",
    "LotteryPriorityCalculation",
    "score_entry",
    "LotteryProcessingStats",
    "compute_processing_stats",
    "TimeWindow",
    "compute_time_windows",
]
