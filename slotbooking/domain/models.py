"""
Domain models for availability, slots and bookings.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum, IntEnum
from typing import List, Optional

import pendulum
from pendulum import Date, DateTime

from .exceptions import InvalidRangeError, ValidationError

MINUTES_PER_DAY = 24 * 60
CENTS = Decimal("0.01")

# Kinds of receipt events emitted by the value-transfer system
APPROVAL_RECEIPT = "approval"
TRANSFER_RECEIPT = "transfer"


def to_date(value) -> Date:
    """
    Coerce an ISO string, ``datetime.date`` or pendulum value to a pendulum Date.

    Raises:
        ValidationError: If the value is not a calendar date
    """
    if isinstance(value, DateTime):
        return value.date()
    if isinstance(value, Date):
        return value
    if isinstance(value, date):
        return pendulum.date(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            parsed = date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc
        return pendulum.date(parsed.year, parsed.month, parsed.day)
    raise ValidationError(f"Cannot interpret {value!r} as a date")


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """
    Wall-clock time as minutes since midnight.

    Invariant: 0 <= minutes < 1440.
    """
    minutes: int

    def __post_init__(self):
        if not 0 <= self.minutes < MINUTES_PER_DAY:
            raise ValidationError(f"Time of day must be within 00:00-23:59, got {self.minutes} minutes")

    @classmethod
    def parse(cls, value: str) -> "TimeOfDay":
        """Parse an ``HH:MM`` string."""
        try:
            hour_str, minute_str = value.strip().split(":")
            hour, minute = int(hour_str), int(minute_str)
        except (AttributeError, ValueError) as exc:
            raise ValidationError(f"Invalid time '{value}', expected HH:MM") from exc
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValidationError(f"Invalid time '{value}', expected HH:MM")
        return cls(hour * 60 + minute)

    @classmethod
    def of(cls, hour: int, minute: int = 0) -> "TimeOfDay":
        return cls(hour * 60 + minute)

    @property
    def hour(self) -> int:
        return self.minutes // 60

    @property
    def minute(self) -> int:
        return self.minutes % 60

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class TimeRange:
    """
    A wall-clock range within one calendar day.

    Invariant: start must be before end (no zero-length or overnight ranges).
    """
    start: TimeOfDay
    end: TimeOfDay

    def __post_init__(self):
        if self.start >= self.end:
            raise InvalidRangeError(f"Start time {self.start} must be before end time {self.end}")

    @classmethod
    def parse(cls, start: str, end: str) -> "TimeRange":
        return cls(start=TimeOfDay.parse(start), end=TimeOfDay.parse(end))

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return self.end.minutes - self.start.minutes

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another."""
        return self.start < other.end and self.end > other.start

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class DateRange:
    """
    An inclusive range of calendar dates.

    Invariant: start <= end.
    """
    start: Date
    end: Date

    def __post_init__(self):
        object.__setattr__(self, "start", to_date(self.start))
        object.__setattr__(self, "end", to_date(self.end))
        if self.start > self.end:
            raise InvalidRangeError(f"Start date {self.start} must not be after end date {self.end}")

    @classmethod
    def single(cls, day) -> "DateRange":
        return cls(start=day, end=day)

    def contains(self, day: Date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> int:
        """Number of calendar days covered, inclusive."""
        return self.end.toordinal() - self.start.toordinal() + 1

    def __str__(self) -> str:
        if self.start == self.end:
            return self.start.isoformat()
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


class Weekday(IntEnum):
    """Day of week, Monday first (matches ``date.weekday()``)."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def key(self) -> str:
        return self.name.lower()

    @classmethod
    def from_key(cls, key: str) -> "Weekday":
        try:
            return cls[key.strip().upper()]
        except KeyError as exc:
            raise ValidationError(f"Unknown weekday '{key}'") from exc

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return cls(day.weekday())


@dataclass(frozen=True)
class Slot:
    """
    One bookable (date, start, end) unit for a single provider.

    Identity is derived from provider, date and start so that regenerating
    the same window yields the same ids.
    """
    id: str
    provider_id: str
    date: Date
    start: TimeOfDay
    end: TimeOfDay
    timezone: str = "UTC"
    booked: bool = False
    booking_id: Optional[str] = None

    @staticmethod
    def make_id(provider_id: str, day: Date, start: TimeOfDay) -> str:
        return f"{provider_id}:{day.isoformat()}:{start}"

    @classmethod
    def create(
        cls,
        provider_id: str,
        day: Date,
        time_range: TimeRange,
        timezone: str = "UTC",
    ) -> "Slot":
        return cls(
            id=cls.make_id(provider_id, day, time_range.start),
            provider_id=provider_id,
            date=day,
            start=time_range.start,
            end=time_range.end,
            timezone=timezone,
        )

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)

    def duration_minutes(self) -> int:
        return self.end.minutes - self.start.minutes

    def starts_at(self) -> DateTime:
        """
        Start instant in the slot's timezone.

        A wall-clock time that occurs twice (clocks going back) resolves to
        its first occurrence.
        """
        return pendulum.datetime(
            self.date.year, self.date.month, self.date.day,
            self.start.hour, self.start.minute, tz=self.timezone, fold=0,
        )

    def ends_at(self) -> DateTime:
        """End instant: the start plus the slot length in elapsed time."""
        return self.starts_at().add(minutes=self.duration_minutes())

    def exists_locally(self) -> bool:
        """
        True if the slot's wall-clock start and end both occur on its date.

        False around DST changes when the start falls into skipped local
        time, or when the elapsed length does not end at the stated end.
        """
        start, end = self.starts_at(), self.ends_at()
        return (
            start.date() == self.date
            and (start.hour, start.minute) == (self.start.hour, self.start.minute)
            and end.date() == self.date
            and (end.hour, end.minute) == (self.end.hour, self.end.minute)
        )

    def sort_key(self):
        return (self.date, self.start)

    def with_booking(self, booking_id: Optional[str]) -> "Slot":
        return replace(self, booked=booking_id is not None, booking_id=booking_id)

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Weekday, YYYY-MM-DD | HH:MM - HH:MM (N min)
        """
        weekday = Weekday.of(self.date).name.capitalize()
        return (
            f"{weekday}, {self.date.isoformat()} | {self.start} - {self.end} "
            f"({self.duration_minutes()} min)"
        )


@dataclass(frozen=True)
class AvailabilitySettings:
    """Provider-level settings saved next to the weekly pattern."""
    provider_id: str
    timezone: str = "UTC"
    interval_minutes: int = 30
    hourly_rate: Decimal = Decimal("0")
    window_start: Optional[Date] = None
    window_end: Optional[Date] = None  # None means open-ended

    def quote(self, slot: Slot) -> Decimal:
        """Price for a slot, pro rata on the hourly rate, rounded to cents."""
        amount = Decimal(self.hourly_rate) * slot.duration_minutes() / Decimal(60)
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BookingIntent:
    """A buyer's request to reserve one slot. Not persisted until confirmed."""
    slot_id: str
    buyer_identity: str
    contact_info: str = ""


@dataclass(frozen=True)
class TransferReference:
    """
    The slot+buyer+price triple that binds a value transfer to a booking.

    Both transfer legs carry the same reference so duplicates are detectable.
    """
    slot_id: str
    buyer_identity: str
    amount: Decimal

    def as_string(self) -> str:
        return f"{self.slot_id}|{self.buyer_identity.lower()}|{Decimal(self.amount).quantize(CENTS)}"

    def matches(self, event: "ReceiptEvent") -> bool:
        return (
            event.slot_id == self.slot_id
            and event.buyer_identity.lower() == self.buyer_identity.lower()
            and Decimal(event.amount).quantize(CENTS) == Decimal(self.amount).quantize(CENTS)
        )


@dataclass(frozen=True)
class PendingTransfer:
    """Handle to a submitted transfer leg awaiting confirmation."""
    handle: str
    leg: str
    reference: TransferReference


@dataclass(frozen=True)
class ReceiptEvent:
    """One event reported by the value-transfer system on confirmation."""
    receipt_id: str
    kind: str
    slot_id: str
    buyer_identity: str
    amount: Decimal


class BookingState(str, Enum):
    REQUESTED = "requested"
    ELIGIBILITY_CHECKED = "eligibility_checked"
    TRANSFER_SUBMITTED = "transfer_submitted"
    TRANSFER_CONFIRMED = "transfer_confirmed"
    PERSISTED = "persisted"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BookingState.COMPLETED, BookingState.FAILED)


class FailureReason(str, Enum):
    SLOT_NOT_FOUND = "slot_not_found"
    ALREADY_BOOKED = "already_booked"
    SLOT_EXPIRED = "slot_expired"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TRANSFER_FAILED = "transfer_failed"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    RECEIPT_NOT_FOUND = "receipt_not_found"
    SLOT_RACE_LOST = "slot_race_lost"
    RECORD_NOT_SAVED = "record_not_saved"

    @property
    def user_message(self) -> str:
        return _FAILURE_MESSAGES[self]

    @property
    def requires_reconciliation(self) -> bool:
        return self in (
            FailureReason.CONFIRMATION_TIMEOUT,
            FailureReason.RECEIPT_NOT_FOUND,
            FailureReason.SLOT_RACE_LOST,
            FailureReason.RECORD_NOT_SAVED,
        )


_FAILURE_MESSAGES = {
    FailureReason.SLOT_NOT_FOUND: "This slot no longer exists.",
    FailureReason.ALREADY_BOOKED: "This slot is no longer available.",
    FailureReason.SLOT_EXPIRED: "This slot is no longer available.",
    FailureReason.INSUFFICIENT_FUNDS: "Your balance does not cover the price. Top up and try again.",
    FailureReason.TRANSFER_FAILED: "The payment was not submitted. Check your payment status before retrying.",
    FailureReason.CONFIRMATION_TIMEOUT: (
        "The payment was not confirmed in time. It may still complete later; "
        "do not pay again until it has been reconciled."
    ),
    FailureReason.RECEIPT_NOT_FOUND: (
        "Your payment was confirmed but could not be matched to this booking. "
        "It has been flagged for manual review."
    ),
    FailureReason.SLOT_RACE_LOST: (
        "Another buyer reserved this slot moments before you. "
        "Your payment has been recorded and flagged for refund."
    ),
    FailureReason.RECORD_NOT_SAVED: (
        "Your payment was received but the booking could not be saved. "
        "It has been flagged for refund."
    ),
}


@dataclass(frozen=True)
class BookingRecord:
    """A confirmed booking. Immutable once written."""
    booking_id: str
    slot_id: str
    provider_id: str
    buyer_identity: str
    price_quoted: Decimal
    transfer_receipt_id: str
    created_at: DateTime
    contact_info: str = ""


@dataclass
class BookingAttempt:
    """
    Durable progress of one reservation through the booking state machine.
    """
    attempt_id: str
    intent: BookingIntent
    state: BookingState = BookingState.REQUESTED
    provider_id: Optional[str] = None
    price_quoted: Optional[Decimal] = None
    booking_id: Optional[str] = None
    receipt_id: Optional[str] = None
    record: Optional[BookingRecord] = None
    failure_reason: Optional[FailureReason] = None
    failure_detail: str = ""
    refund_due: bool = False
    history: List[BookingState] = field(default_factory=lambda: [BookingState.REQUESTED])

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.state is BookingState.COMPLETED

    @property
    def reference(self) -> Optional[TransferReference]:
        if self.price_quoted is None:
            return None
        return TransferReference(
            slot_id=self.intent.slot_id,
            buyer_identity=self.intent.buyer_identity,
            amount=self.price_quoted,
        )

    def advance(self, state: BookingState) -> None:
        if self.is_terminal:
            raise ValueError(f"Attempt {self.attempt_id} is already {self.state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, reason: FailureReason, detail: str = "") -> None:
        self.advance(BookingState.FAILED)
        self.failure_reason = reason
        self.failure_detail = detail


@dataclass(frozen=True)
class JoinCapability:
    """A join link valid until the end of the booked slot."""
    booking_id: str
    holder_identity: str
    url: str
    token: str
    expires_at: DateTime

    def remaining_seconds(self, now: DateTime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))
