"""
Capability contracts for the collaborators the services depend on.

Dependency inversion toward these protocols makes it easy to plug in the
JSON-file repository, the HTTP payment gateway or the in-memory mocks used
in tests.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, NamedTuple, Optional, Protocol

from pendulum import Date

from ..domain.date_range_set import DateRangeSet
from ..domain.models import (
    AvailabilitySettings,
    BookingAttempt,
    BookingRecord,
    PendingTransfer,
    ReceiptEvent,
    Slot,
    TransferReference,
)
from ..domain.weekly_pattern import WeeklyPattern


class SavedAvailability(NamedTuple):
    pattern: WeeklyPattern
    exclusions: DateRangeSet
    settings: AvailabilitySettings


class PersistenceProtocol(Protocol):
    """Protocol describing the storage behaviour needed by the services."""

    def load_pattern(self, provider_id: str) -> Optional[SavedAvailability]:
        """Return the provider's saved availability, if any."""

    def save_pattern(
        self,
        provider_id: str,
        pattern: WeeklyPattern,
        exclusions: DateRangeSet,
        settings: AvailabilitySettings,
    ) -> None:
        """Persist the provider's pattern, exclusions and window settings."""

    def load_slots(
        self,
        provider_id: str,
        start: Optional[Date] = None,
        end: Optional[Date] = None,
    ) -> List[Slot]:
        """Return the provider's slots ordered by (date, start), optionally within dates."""

    def get_slot(self, slot_id: str) -> Optional[Slot]:
        """Return a single slot by identity."""

    def apply_slot_changes(
        self,
        provider_id: str,
        upserts: List[Slot],
        removals: List[str],
    ) -> List[str]:
        """
        Insert or replace ``upserts`` and delete ``removals`` in one step.

        Booked slots are never overwritten or deleted; their ids are returned.
        """

    def mark_booked(self, slot_id: str, booking_id: str) -> bool:
        """Atomically set booked if currently unbooked. False if already booked."""

    def mark_unbooked(self, slot_id: str, booking_id: str) -> bool:
        """Release a slot held by ``booking_id``. False if it is not held by it."""

    def save_booking_record(self, record: BookingRecord) -> None:
        """Persist a confirmed booking."""

    def get_booking_record(self, booking_id: str) -> Optional[BookingRecord]:
        """Return a confirmed booking by identity."""

    def save_attempt(self, attempt: BookingAttempt) -> None:
        """Persist the current state of a booking attempt."""

    def load_attempts(self) -> List[BookingAttempt]:
        """Return all recorded booking attempts."""


class ValueTransferProtocol(Protocol):
    """Protocol describing the payment/escrow system used for bookings."""

    async def check_eligibility(self, buyer_identity: str, amount: Decimal) -> bool:
        """Return True if the buyer's balance/allowance covers ``amount``."""

    async def authorize(
        self,
        buyer_identity: str,
        amount: Decimal,
        reference: TransferReference,
    ) -> PendingTransfer:
        """Submit the authorization (approval) leg."""

    async def submit_transfer(
        self,
        buyer_identity: str,
        recipient: str,
        amount: Decimal,
        reference: TransferReference,
    ) -> PendingTransfer:
        """Submit the transfer (escrow) leg."""

    async def await_confirmation(
        self,
        pending: PendingTransfer,
        timeout: float,
    ) -> List[ReceiptEvent]:
        """Block until the leg is final and return every event it emitted."""
