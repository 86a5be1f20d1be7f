"""
Core business logic for expanding a weekly pattern into concrete slots.

This is pure domain logic without any external dependencies (no API calls,
no database, no I/O). Given the same inputs it always yields the same
slots, with the same identities, in the same order.
"""

import logging
from itertools import groupby
from typing import List, Optional, Tuple

import pendulum
from pendulum import Date, DateTime

from .date_range_set import DateRangeSet
from .exceptions import InvalidRangeError, ValidationError
from .interval_slicer import slice_interval
from .models import Slot, Weekday, to_date
from .weekly_pattern import WeeklyPattern

logger = logging.getLogger(__name__)

DEFAULT_MAX_DAYS = 365


def validate_timezone(timezone: str) -> str:
    """
    Ensure ``timezone`` is a known IANA zone.

    Raises:
        ValidationError: If pendulum cannot resolve it
    """
    try:
        pendulum.timezone(timezone)
    except (ValueError, LookupError) as exc:
        raise ValidationError(f"Unknown timezone '{timezone}'") from exc
    return timezone


def resolve_window(
    timezone: str,
    window_start=None,
    window_end=None,
    horizon_days: int = DEFAULT_MAX_DAYS,
    now: Optional[DateTime] = None,
) -> Tuple[Date, Date]:
    """
    Turn a possibly open-ended window into concrete start and end dates.

    A missing start means "today" as observed in the provider's timezone,
    not the server's. A missing end means ``start + horizon_days``.
    """
    validate_timezone(timezone)
    if window_start is None:
        current = now if now is not None else pendulum.now("UTC")
        start = current.in_timezone(timezone).date()
    else:
        start = to_date(window_start)

    end = to_date(window_end) if window_end is not None else start.add(days=horizon_days)
    if start > end:
        raise InvalidRangeError(f"Window start {start} must not be after window end {end}")
    return start, end


def group_by_date(slots: List[Slot]) -> List[Tuple[Date, List[Slot]]]:
    """
    Group ordered slots by date, keeping only dates that have slots.

    Used for day-by-day paging; order follows the input.
    """
    return [(day, list(day_slots)) for day, day_slots in groupby(slots, key=lambda s: s.date)]


class AvailabilityExpander:
    """
    Expands a WeeklyPattern into dated slots within a window.

    Algorithm:
    1. Enumerate calendar dates from window start to end, capped at max_days
    2. Skip dates covered by the exclusion set
    3. Map each remaining date to its weekday in the provider's timezone
    4. Look up that weekday's ranges (disabled days contribute nothing)
    5. Slice every range into fixed-length slots, dropping those that do not
       exist in local time on DST change days
    6. Return slots ordered by date, then start time
    """

    def __init__(self, max_days: int = DEFAULT_MAX_DAYS):
        if max_days <= 0:
            raise ValidationError(f"max_days must be positive, got {max_days}")
        self.max_days = max_days

    def expand(
        self,
        pattern: WeeklyPattern,
        exclusions: DateRangeSet,
        window_start,
        window_end,
        timezone: str,
        interval_minutes: int,
        provider_id: str,
        max_days: Optional[int] = None,
    ) -> List[Slot]:
        """
        Generate all slots for the provider within the window.

        Args:
            pattern: Weekly availability template
            exclusions: Unavailable date ranges
            window_start: First date of the window (inclusive)
            window_end: Last date of the window (inclusive)
            timezone: Provider's IANA timezone
            interval_minutes: Slot length
            provider_id: Owner of the generated slots
            max_days: Override for the day cap

        Returns:
            Slots ordered by (date, start)

        Raises:
            InvalidRangeError: If the window is reversed
            InvalidIntervalError: If interval_minutes is not positive
            ValidationError: If the pattern or timezone is invalid
        """
        validate_timezone(timezone)
        pattern.validate()
        start, end = to_date(window_start), to_date(window_end)
        if start > end:
            raise InvalidRangeError(f"Window start {start} must not be after window end {end}")

        slots: List[Slot] = []

        for day in self._enumerate_dates(start, end, max_days or self.max_days):
            if exclusions.contains(day):
                continue

            weekday = self._weekday_in_timezone(day, timezone)

            for time_range in pattern.slots_for(weekday):
                for piece in slice_interval(time_range, interval_minutes):
                    slot = Slot.create(provider_id, day, piece, timezone=timezone)
                    if not slot.exists_locally():
                        logger.debug("Skipping slot %s: %s does not exist in %s", slot.id, piece, timezone)
                        continue
                    slots.append(slot)

        # Ranges per day are non-overlapping, so sorting only reorders across ranges
        slots.sort(key=lambda s: s.sort_key())
        return slots

    def preview_count(
        self,
        pattern: WeeklyPattern,
        exclusions: DateRangeSet,
        window_start,
        window_end,
        timezone: str,
        interval_minutes: int,
    ) -> int:
        """Number of slots a save with these inputs would generate."""
        return len(
            self.expand(
                pattern, exclusions, window_start, window_end,
                timezone, interval_minutes, provider_id="preview",
            )
        )

    @staticmethod
    def _enumerate_dates(start: Date, end: Date, max_days: int) -> List[Date]:
        days: List[Date] = []
        current = start

        while current <= end and len(days) < max_days:
            days.append(current)
            current = current.add(days=1)

        return days

    @staticmethod
    def _weekday_in_timezone(day: Date, timezone: str) -> Weekday:
        """Weekday of the local midnight that opens ``day`` in ``timezone``."""
        local = pendulum.datetime(day.year, day.month, day.day, tz=timezone)
        return Weekday.of(local)
