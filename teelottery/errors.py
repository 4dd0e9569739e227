"""Exception classes for the lottery engine."""

from __future__ import annotations

from typing import List, Sequence


class LotteryError(Exception):
    """Base exception for all lottery engine errors."""
    pass


class ConfigurationError(LotteryError):
    """Raised when configuration is missing or invalid."""
    pass


class PlacementError(LotteryError):
    """Base exception for per-entry placement failures.

    Placement errors never abort a processing run; the solver records them
    as the entry's unassigned reason.
    """
    reason = "ERROR"


class CapacityExhausted(PlacementError):
    """Raised when no block in a window has enough remaining seats."""
    reason = "NO_SPACE"


class RestrictionViolation(PlacementError):
    """Raised when every block with room is forbidden by a restriction."""
    reason = "RESTRICTION"

    def __init__(self, message: str, reasons: Sequence[str] = (), restriction_ids: Sequence[int] = ()):
        super().__init__(message)
        self.reasons: List[str] = list(reasons)
        self.restriction_ids: List[int] = list(restriction_ids)


class DuplicateRunError(LotteryError):
    """Raised when a canonical processing run already exists for a date."""

    def __init__(self, lottery_date, message: str | None = None):
        self.lottery_date = lottery_date
        super().__init__(message or f"A processing run already exists for {lottery_date}")


class EntryValidationError(LotteryError):
    """Raised when a lottery entry submission is rejected."""
    pass


class AssignmentError(LotteryError):
    """Raised when an admin assignment override cannot be applied."""
    pass


class ProfileUpdateError(LotteryError):
    """Raised when an admin speed-profile change is out of bounds."""
    pass


class RunNotFoundError(LotteryError):
    """Raised when a workflow step needs a processing run that does not exist."""
    pass
