"""
Authoritative set of generated slots per provider.

The store owns two guarantees:

* regeneration never un-books, removes or retimes a booked slot;
* ``mark_booked`` is a single atomic check-and-set per slot, so of any
  number of concurrent callers on one slot at most one succeeds.

Locks are held only for the check-and-set itself, never across calls to
the value-transfer system.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import pendulum
from pendulum import Date, DateTime

from ..domain.exceptions import (
    AlreadyBookedError,
    SlotExpiredError,
    SlotLockedError,
    SlotNotFoundError,
)
from ..domain.models import Slot, to_date
from .ports import PersistenceProtocol

logger = logging.getLogger(__name__)

Clock = Callable[[], DateTime]


@dataclass
class UpsertResult:
    """Outcome of merging a regenerated window into the store."""
    inserted: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    preserved: List[str] = field(default_factory=list)
    locked: List[SlotLockedError] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.locked)


class SlotStore:
    """Slot access and mutation on top of a persistence backend."""

    def __init__(self, repository: PersistenceProtocol, clock: Clock = pendulum.now):
        self._repository = repository
        self._clock = clock
        self._guard = threading.Lock()
        self._slot_locks: Dict[str, threading.Lock] = {}
        self._provider_locks: Dict[str, threading.RLock] = {}

    def provider_lock(self, provider_id: str) -> threading.RLock:
        """Lock serializing availability saves for one provider."""
        with self._guard:
            return self._provider_locks.setdefault(provider_id, threading.RLock())

    def _slot_lock(self, slot_id: str) -> threading.Lock:
        with self._guard:
            return self._slot_locks.setdefault(slot_id, threading.Lock())

    def _drop_slot_locks(self, slot_ids: List[str]) -> None:
        with self._guard:
            for slot_id in slot_ids:
                self._slot_locks.pop(slot_id, None)

    def get(self, slot_id: str) -> Slot:
        """
        Return a slot by identity.

        Raises:
            SlotNotFoundError: If the slot does not exist
        """
        slot = self._repository.get_slot(slot_id)
        if slot is None:
            raise SlotNotFoundError(slot_id)
        return slot

    def list_slots(
        self,
        provider_id: str,
        start: Optional[Date] = None,
        end: Optional[Date] = None,
    ) -> List[Slot]:
        return self._repository.load_slots(
            provider_id,
            to_date(start) if start is not None else None,
            to_date(end) if end is not None else None,
        )

    def bookable_slots(
        self,
        provider_id: str,
        start: Optional[Date] = None,
        end: Optional[Date] = None,
        now: Optional[DateTime] = None,
    ) -> List[Slot]:
        """Unbooked slots that have not started yet, ordered by (date, start)."""
        now = now or self._clock()
        return [
            slot for slot in self.list_slots(provider_id, start, end)
            if not slot.booked and slot.starts_at() > now
        ]

    def upsert_window(self, provider_id: str, slots: List[Slot]) -> UpsertResult:
        """
        Merge a freshly expanded window with the persisted slots.

        Regeneration is authoritative for unbooked slots: new ones are
        inserted and those no longer generated are removed. Booked slots
        are matched by identity (provider+date+start) and always kept as
        they are; if the new window would drop or retime one, the change
        is refused and reported as a SlotLockedError in the result. New
        slots that would overlap a kept booked slot are not inserted.

        Args:
            provider_id: Owner of the window
            slots: Output of the expander for this provider

        Returns:
            UpsertResult describing what changed
        """
        result = UpsertResult()

        with self.provider_lock(provider_id):
            existing = {slot.id: slot for slot in self._repository.load_slots(provider_id)}
            generated = {slot.id: slot for slot in slots if slot.provider_id == provider_id}
            booked = [slot for slot in existing.values() if slot.booked]

            for slot in booked:
                candidate = generated.get(slot.id)
                if candidate is None:
                    result.locked.append(
                        SlotLockedError(slot.id, "it is booked and no longer part of the availability")
                    )
                elif candidate.end != slot.end or candidate.timezone != slot.timezone:
                    result.locked.append(
                        SlotLockedError(slot.id, f"it is booked as {slot.start}-{slot.end}")
                    )
                result.preserved.append(slot.id)

            upserts: List[Slot] = []
            kept_ids = set(result.preserved)

            for slot_id, slot in generated.items():
                if slot_id in kept_ids or self._overlaps_booked(slot, booked):
                    continue
                kept_ids.add(slot_id)
                if existing.get(slot_id) == slot:
                    result.unchanged.append(slot_id)
                else:
                    upserts.append(slot)

            removals = [slot_id for slot_id in existing if slot_id not in kept_ids]

            skipped = set(self._repository.apply_slot_changes(provider_id, upserts, removals))
            for slot_id in sorted(skipped):
                # Booked between our read and the write
                result.locked.append(SlotLockedError(slot_id, "it was booked during regeneration"))
                result.preserved.append(slot_id)

            result.inserted = [slot.id for slot in upserts if slot.id not in skipped]
            result.removed = [slot_id for slot_id in removals if slot_id not in skipped]
            self._drop_slot_locks(result.removed)

        for error in result.locked:
            logger.warning("Kept booked slot unchanged during regeneration: %s", error)

        logger.debug(
            "Upserted window for %s: %d inserted, %d removed, %d unchanged, %d preserved",
            provider_id, len(result.inserted), len(result.removed),
            len(result.unchanged), len(result.preserved),
        )
        return result

    def mark_booked(self, slot_id: str, booking_id: str, now: Optional[DateTime] = None) -> Slot:
        """
        Atomically mark an unbooked, unexpired slot as booked.

        Returns:
            The booked slot

        Raises:
            SlotNotFoundError: If the slot does not exist
            SlotExpiredError: If the slot has already ended
            AlreadyBookedError: If another booking holds the slot
        """
        with self._slot_lock(slot_id):
            slot = self.get(slot_id)
            if slot.ends_at() <= (now or self._clock()):
                raise SlotExpiredError(slot_id)
            if slot.booked:
                raise AlreadyBookedError(slot_id)
            if not self._repository.mark_booked(slot_id, booking_id):
                raise AlreadyBookedError(slot_id)

        return slot.with_booking(booking_id)

    def mark_unbooked(self, slot_id: str, booking_id: str) -> Slot:
        """
        Release a slot held by ``booking_id`` (refund and cancellation tooling).

        Raises:
            SlotNotFoundError: If the slot does not exist
            SlotLockedError: If the slot is not held by ``booking_id``
        """
        with self._slot_lock(slot_id):
            slot = self.get(slot_id)
            if not self._repository.mark_unbooked(slot_id, booking_id):
                raise SlotLockedError(slot_id, f"it is not held by booking {booking_id}")

        logger.info("Released slot %s from booking %s", slot_id, booking_id)
        return slot.with_booking(None)

    @staticmethod
    def _overlaps_booked(slot: Slot, booked: List[Slot]) -> bool:
        return any(
            other.date == slot.date and other.time_range.overlaps(slot.time_range)
            for other in booked
        )
