"""
Splits a wall-clock time range into fixed-length slots.
"""

from typing import List

from .exceptions import InvalidIntervalError
from .models import TimeOfDay, TimeRange


def slice_interval(time_range: TimeRange, length_minutes: int) -> List[TimeRange]:
    """
    Split ``time_range`` into consecutive sub-ranges of exactly ``length_minutes``.

    Slicing starts at ``time_range.start`` and stops before any sub-range
    would pass ``time_range.end``. A trailing remainder shorter than
    ``length_minutes`` is dropped, never emitted as a short slot.

    Example:
        09:00-10:00 at 30 -> [09:00-09:30, 09:30-10:00]
        09:00-09:50 at 30 -> [09:00-09:30]

    Raises:
        InvalidIntervalError: If ``length_minutes`` is not positive
    """
    if isinstance(length_minutes, bool) or not isinstance(length_minutes, int) or length_minutes <= 0:
        raise InvalidIntervalError(f"Slot length must be a positive number of minutes, got {length_minutes!r}")

    slices: List[TimeRange] = []
    current = time_range.start.minutes
    end = time_range.end.minutes

    while current + length_minutes <= end:
        slices.append(
            TimeRange(start=TimeOfDay(current), end=TimeOfDay(current + length_minutes))
        )
        current += length_minutes

    return slices
