"""
Domain layer - Pure business logic without external dependencies.
"""

from .availability_expander import AvailabilityExpander, group_by_date, resolve_window
from .date_range_set import DateRangeSet
from .interval_slicer import slice_interval
from .models import (
    AvailabilitySettings,
    BookingAttempt,
    BookingIntent,
    BookingRecord,
    BookingState,
    DateRange,
    FailureReason,
    JoinCapability,
    ReceiptEvent,
    Slot,
    TimeOfDay,
    TimeRange,
    TransferReference,
    Weekday,
)
from .weekly_pattern import DayAvailability, WeeklyPattern

__all__ = [
    "AvailabilityExpander",
    "AvailabilitySettings",
    "BookingAttempt",
    "BookingIntent",
    "BookingRecord",
    "BookingState",
    "DateRange",
    "DateRangeSet",
    "DayAvailability",
    "FailureReason",
    "JoinCapability",
    "ReceiptEvent",
    "Slot",
    "TimeOfDay",
    "TimeRange",
    "TransferReference",
    "Weekday",
    "WeeklyPattern",
    "group_by_date",
    "resolve_window",
    "slice_interval",
]
