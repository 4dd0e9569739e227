"""Partition a day's tee times into preference windows."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from teelottery.errors import ConfigurationError


@dataclass(frozen=True)
class TimeWindow:
    """Contiguous span of the teesheet day an entry can name as its preference."""

    index: int
    start_minutes: int
    end_minutes: int
    label: str
    position: str
    is_last: bool = False

    def contains(self, minutes: int) -> bool:
        if self.start_minutes <= minutes < self.end_minutes:
            return True
        return self.is_last and minutes == self.end_minutes

    @property
    def duration(self) -> int:
        return self.end_minutes - self.start_minutes


def parse_time(value: str) -> int:
    """Convert "HH:MM" (or "HH:MM:SS") to minutes from midnight."""
    try:
        parts = str(value).strip().split(":")
        hours, minutes = int(parts[0]), int(parts[1])
    except (ValueError, IndexError) as e:
        raise ConfigurationError(f"Invalid time of day: {value!r}") from e
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ConfigurationError(f"Invalid time of day: {value!r}")
    return hours * 60 + minutes


def format_time(minutes: int) -> str:
    """Minutes from midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_label_time(minutes: int) -> str:
    """Minutes from midnight to the 12-hour form used in labels, e.g. "8:00 AM"."""
    hours, mins = divmod(minutes, 60)
    hours %= 24
    suffix = "AM" if hours < 12 else "PM"
    display = hours % 12 or 12
    return f"{display}:{mins:02d} {suffix}"


def window_position(index: int, window_count: int) -> str:
    ratio = index / window_count
    if ratio < 0.25:
        return "early"
    if ratio < 0.5:
        return "mid_early"
    if ratio < 0.75:
        return "mid_late"
    return "late"


def compute_time_windows(start_times: Iterable[str], max_window_duration_minutes: int = 60) -> List[TimeWindow]:
    """
    Split the span between the first and last tee time into equal windows.

    Args:
        start_times: Block start times ("HH:MM") for the day, any order
        max_window_duration_minutes: Upper bound on a window's length

    Returns:
        Windows ordered by index; empty when the day has fewer than two
        distinct start times

    Raises:
        ConfigurationError: If the maximum is not positive or a time is invalid
    """
    if max_window_duration_minutes is None or max_window_duration_minutes <= 0:
        raise ConfigurationError("max_window_duration_minutes must be positive")

    minutes = [parse_time(t) for t in start_times]
    if not minutes:
        return []

    start, end = min(minutes), max(minutes)
    total = end - start
    if total <= 0:
        return []

    window_count = math.ceil(total / max_window_duration_minutes)
    duration = math.ceil(total / window_count)

    windows = []
    for i in range(window_count):
        w_start = start + i * duration
        w_end = min(start + (i + 1) * duration, end)
        if i == window_count - 1:
            w_end = end
        windows.append(
            TimeWindow(
                index=i,
                start_minutes=w_start,
                end_minutes=w_end,
                label=f"{format_label_time(w_start)} - {format_label_time(w_end)}",
                position=window_position(i, window_count),
                is_last=(i == window_count - 1),
            )
        )
    return windows


def find_window(windows: List[TimeWindow], index: Optional[int]) -> Optional[TimeWindow]:
    if index is None:
        return None
    for window in windows:
        if window.index == index:
            return window
    return None


def window_for_time(windows: List[TimeWindow], start_time: str) -> Optional[TimeWindow]:
    """The window containing a block start time, if any."""
    minutes = parse_time(start_time)
    for window in windows:
        if window.contains(minutes):
            return window
    return None
