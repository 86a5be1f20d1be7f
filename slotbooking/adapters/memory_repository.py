"""
In-memory and JSON-file persistence backends.

``InMemoryRepository`` keeps everything in dictionaries guarded by a single
re-entrant lock; its ``mark_booked`` is the compare-and-set that makes slot
ownership unique. ``JsonFileRepository`` adds durability by loading a JSON
document on start-up and writing it back after every mutation.
"""

import copy
import json
import logging
import threading
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import pendulum
from pendulum import Date

from ..domain.date_range_set import DateRangeSet
from ..domain.models import (
    AvailabilitySettings,
    BookingAttempt,
    BookingIntent,
    BookingRecord,
    BookingState,
    FailureReason,
    Slot,
    TimeOfDay,
    to_date,
)
from ..domain.weekly_pattern import WeeklyPattern
from ..services.ports import SavedAvailability

logger = logging.getLogger(__name__)


class InMemoryRepository:
    """Thread-safe implementation of the persistence protocol."""

    def __init__(self):
        self._lock = threading.RLock()
        self._patterns: Dict[str, SavedAvailability] = {}
        self._slots: Dict[str, Slot] = {}
        self._records: Dict[str, BookingRecord] = {}
        self._attempts: Dict[str, BookingAttempt] = {}

    # ── Availability ─────────────────────────────────────────────────────

    def load_pattern(self, provider_id: str) -> Optional[SavedAvailability]:
        with self._lock:
            return self._patterns.get(provider_id)

    def save_pattern(
        self,
        provider_id: str,
        pattern: WeeklyPattern,
        exclusions: DateRangeSet,
        settings: AvailabilitySettings,
    ) -> None:
        with self._lock:
            self._patterns[provider_id] = SavedAvailability(pattern, exclusions, settings)
            self._after_write()

    # ── Slots ────────────────────────────────────────────────────────────

    def load_slots(
        self,
        provider_id: str,
        start: Optional[Date] = None,
        end: Optional[Date] = None,
    ) -> List[Slot]:
        with self._lock:
            slots = [
                slot for slot in self._slots.values()
                if slot.provider_id == provider_id
                and (start is None or slot.date >= start)
                and (end is None or slot.date <= end)
            ]
        return sorted(slots, key=lambda s: s.sort_key())

    def get_slot(self, slot_id: str) -> Optional[Slot]:
        with self._lock:
            return self._slots.get(slot_id)

    def apply_slot_changes(
        self,
        provider_id: str,
        upserts: List[Slot],
        removals: List[str],
    ) -> List[str]:
        skipped: List[str] = []
        with self._lock:
            for slot in upserts:
                current = self._slots.get(slot.id)
                if current is not None and current.booked:
                    skipped.append(slot.id)
                    continue
                self._slots[slot.id] = slot

            for slot_id in removals:
                current = self._slots.get(slot_id)
                if current is None or current.provider_id != provider_id:
                    continue
                if current.booked:
                    skipped.append(slot_id)
                    continue
                del self._slots[slot_id]

            self._after_write()
        return skipped

    def mark_booked(self, slot_id: str, booking_id: str) -> bool:
        with self._lock:
            current = self._slots.get(slot_id)
            if current is None or current.booked:
                return False
            self._slots[slot_id] = current.with_booking(booking_id)
            self._after_write()
            return True

    def mark_unbooked(self, slot_id: str, booking_id: str) -> bool:
        with self._lock:
            current = self._slots.get(slot_id)
            if current is None or current.booking_id != booking_id:
                return False
            self._slots[slot_id] = current.with_booking(None)
            self._after_write()
            return True

    # ── Bookings ─────────────────────────────────────────────────────────

    def save_booking_record(self, record: BookingRecord) -> None:
        with self._lock:
            if record.booking_id in self._records:
                raise ValueError(f"Booking record {record.booking_id} already exists")
            self._records[record.booking_id] = record
            self._after_write()

    def get_booking_record(self, booking_id: str) -> Optional[BookingRecord]:
        with self._lock:
            return self._records.get(booking_id)

    def save_attempt(self, attempt: BookingAttempt) -> None:
        with self._lock:
            self._attempts[attempt.attempt_id] = copy.deepcopy(attempt)
            self._after_write()

    def load_attempts(self) -> List[BookingAttempt]:
        with self._lock:
            return [copy.deepcopy(attempt) for attempt in self._attempts.values()]

    def _after_write(self) -> None:
        """Hook called with the lock held after every mutation."""


class JsonFileRepository(InMemoryRepository):
    """
    InMemoryRepository persisted to a JSON document.

    The whole document is rewritten after each mutation, which is fine for
    a single provider's calendar but not meant for high write volumes.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in {self.path}: {exc}") from exc

        for provider_id, saved in data.get("availability", {}).items():
            self._patterns[provider_id] = SavedAvailability(
                pattern=WeeklyPattern.from_dict(saved["pattern"]),
                exclusions=DateRangeSet.from_pairs(
                    (item["start"], item["end"]) for item in saved["exclusions"]
                ),
                settings=_settings_from_dict(saved["settings"]),
            )
        for item in data.get("slots", []):
            slot = _slot_from_dict(item)
            self._slots[slot.id] = slot
        for item in data.get("bookings", []):
            record = _record_from_dict(item)
            self._records[record.booking_id] = record
        for item in data.get("attempts", []):
            attempt = _attempt_from_dict(item)
            self._attempts[attempt.attempt_id] = attempt

        logger.debug(
            "Loaded %d slots and %d bookings from %s",
            len(self._slots), len(self._records), self.path,
        )

    def _after_write(self) -> None:
        document = {
            "availability": {
                provider_id: {
                    "pattern": saved.pattern.to_dict(),
                    "exclusions": saved.exclusions.to_list(),
                    "settings": _settings_to_dict(saved.settings),
                }
                for provider_id, saved in self._patterns.items()
            },
            "slots": [_slot_to_dict(slot) for slot in self._slots.values()],
            "bookings": [_record_to_dict(record) for record in self._records.values()],
            "attempts": [_attempt_to_dict(attempt) for attempt in self._attempts.values()],
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2)
        tmp_path.replace(self.path)


def _optional_date(value: Optional[str]) -> Optional[Date]:
    return to_date(value) if value else None


def _settings_to_dict(settings: AvailabilitySettings) -> Dict[str, Any]:
    return {
        "provider_id": settings.provider_id,
        "timezone": settings.timezone,
        "interval_minutes": settings.interval_minutes,
        "hourly_rate": str(settings.hourly_rate),
        "window_start": settings.window_start.isoformat() if settings.window_start else None,
        "window_end": settings.window_end.isoformat() if settings.window_end else None,
    }


def _settings_from_dict(data: Dict[str, Any]) -> AvailabilitySettings:
    return AvailabilitySettings(
        provider_id=data["provider_id"],
        timezone=data["timezone"],
        interval_minutes=int(data["interval_minutes"]),
        hourly_rate=Decimal(data["hourly_rate"]),
        window_start=_optional_date(data.get("window_start")),
        window_end=_optional_date(data.get("window_end")),
    )


def _slot_to_dict(slot: Slot) -> Dict[str, Any]:
    return {
        "id": slot.id,
        "provider_id": slot.provider_id,
        "date": slot.date.isoformat(),
        "start": str(slot.start),
        "end": str(slot.end),
        "timezone": slot.timezone,
        "booked": slot.booked,
        "booking_id": slot.booking_id,
    }


def _slot_from_dict(data: Dict[str, Any]) -> Slot:
    return Slot(
        id=data["id"],
        provider_id=data["provider_id"],
        date=to_date(data["date"]),
        start=TimeOfDay.parse(data["start"]),
        end=TimeOfDay.parse(data["end"]),
        timezone=data.get("timezone", "UTC"),
        booked=bool(data.get("booked", False)),
        booking_id=data.get("booking_id"),
    )


def _record_to_dict(record: BookingRecord) -> Dict[str, Any]:
    return {
        "booking_id": record.booking_id,
        "slot_id": record.slot_id,
        "provider_id": record.provider_id,
        "buyer_identity": record.buyer_identity,
        "price_quoted": str(record.price_quoted),
        "transfer_receipt_id": record.transfer_receipt_id,
        "created_at": record.created_at.to_iso8601_string(),
        "contact_info": record.contact_info,
    }


def _record_from_dict(data: Dict[str, Any]) -> BookingRecord:
    return BookingRecord(
        booking_id=data["booking_id"],
        slot_id=data["slot_id"],
        provider_id=data["provider_id"],
        buyer_identity=data["buyer_identity"],
        price_quoted=Decimal(data["price_quoted"]),
        transfer_receipt_id=data["transfer_receipt_id"],
        created_at=pendulum.parse(data["created_at"]),
        contact_info=data.get("contact_info", ""),
    )


def _attempt_to_dict(attempt: BookingAttempt) -> Dict[str, Any]:
    return {
        "attempt_id": attempt.attempt_id,
        "intent": {
            "slot_id": attempt.intent.slot_id,
            "buyer_identity": attempt.intent.buyer_identity,
            "contact_info": attempt.intent.contact_info,
        },
        "state": attempt.state.value,
        "provider_id": attempt.provider_id,
        "price_quoted": str(attempt.price_quoted) if attempt.price_quoted is not None else None,
        "booking_id": attempt.booking_id,
        "receipt_id": attempt.receipt_id,
        "record": _record_to_dict(attempt.record) if attempt.record else None,
        "failure_reason": attempt.failure_reason.value if attempt.failure_reason else None,
        "failure_detail": attempt.failure_detail,
        "refund_due": attempt.refund_due,
        "history": [state.value for state in attempt.history],
    }


def _attempt_from_dict(data: Dict[str, Any]) -> BookingAttempt:
    return BookingAttempt(
        attempt_id=data["attempt_id"],
        intent=BookingIntent(**data["intent"]),
        state=BookingState(data["state"]),
        provider_id=data.get("provider_id"),
        price_quoted=Decimal(data["price_quoted"]) if data.get("price_quoted") is not None else None,
        booking_id=data.get("booking_id"),
        receipt_id=data.get("receipt_id"),
        record=_record_from_dict(data["record"]) if data.get("record") else None,
        failure_reason=FailureReason(data["failure_reason"]) if data.get("failure_reason") else None,
        failure_detail=data.get("failure_detail", ""),
        refund_due=bool(data.get("refund_due", False)),
        history=[BookingState(value) for value in data.get("history", [])],
    )
