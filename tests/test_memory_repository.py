"""
Tests for the in-memory and JSON-file repositories.
"""

import json
from decimal import Decimal

import pendulum
import pytest

from slotbooking.adapters.memory_repository import InMemoryRepository, JsonFileRepository
from slotbooking.domain.date_range_set import DateRangeSet
from slotbooking.domain.models import (
    AvailabilitySettings,
    BookingAttempt,
    BookingIntent,
    BookingRecord,
    BookingState,
    FailureReason,
    Slot,
    TimeRange,
    Weekday,
    to_date,
)
from slotbooking.domain.weekly_pattern import WeeklyPattern


def _slot(start="09:00", end="09:30") -> Slot:
    return Slot.create("alice", to_date("2025-01-06"), TimeRange.parse(start, end), timezone="Europe/Berlin")


def _record() -> BookingRecord:
    return BookingRecord(
        booking_id="b-1",
        slot_id=_slot().id,
        provider_id="alice",
        buyer_identity="0xa",
        price_quoted=Decimal("25.00"),
        transfer_receipt_id="r-1",
        created_at=pendulum.datetime(2025, 1, 1, 8, 0, tz="UTC"),
        contact_info="@a",
    )


class TestInMemoryRepository:
    """Tests for InMemoryRepository."""

    def test_apply_slot_changes_skips_booked(self):
        repository = InMemoryRepository()
        repository.apply_slot_changes("alice", [_slot(), _slot("09:30", "10:00")], [])
        repository.mark_booked(_slot().id, "b-1")

        skipped = repository.apply_slot_changes(
            "alice", [_slot("09:00", "10:00")], [_slot().id, _slot("09:30", "10:00").id],
        )

        assert skipped == [_slot().id, _slot().id]
        assert repository.get_slot(_slot().id).booked
        assert repository.get_slot(_slot("09:30", "10:00").id) is None

    def test_mark_booked_is_compare_and_set(self):
        repository = InMemoryRepository()
        repository.apply_slot_changes("alice", [_slot()], [])

        assert repository.mark_booked(_slot().id, "b-1")
        assert not repository.mark_booked(_slot().id, "b-2")
        assert not repository.mark_booked("missing", "b-3")

    def test_booking_records_are_write_once(self):
        repository = InMemoryRepository()
        repository.save_booking_record(_record())

        with pytest.raises(ValueError):
            repository.save_booking_record(_record())

    def test_attempts_are_snapshots(self):
        repository = InMemoryRepository()
        attempt = BookingAttempt(attempt_id="a-1", intent=BookingIntent(_slot().id, "0xa"))
        repository.save_attempt(attempt)

        attempt.advance(BookingState.ELIGIBILITY_CHECKED)

        assert repository.load_attempts()[0].state is BookingState.REQUESTED


class TestJsonFileRepository:
    """Tests for JsonFileRepository durability."""

    def test_reload_restores_everything(self, tmp_path):
        path = tmp_path / "data.json"
        repository = JsonFileRepository(path)
        pattern = WeeklyPattern.from_ranges({Weekday.MONDAY: [TimeRange.parse("09:00", "11:00")]})
        exclusions = DateRangeSet.from_pairs([("2025-02-10", "2025-02-14")])
        settings = AvailabilitySettings(
            provider_id="alice", timezone="Europe/Berlin", hourly_rate=Decimal("50"),
            window_start=to_date("2025-01-06"),
        )
        attempt = BookingAttempt(
            attempt_id="a-1",
            intent=BookingIntent(_slot().id, "0xa", "@a"),
            price_quoted=Decimal("25.00"),
            receipt_id="r-1",
        )
        attempt.fail(FailureReason.SLOT_RACE_LOST, "lost")
        attempt.refund_due = True

        repository.save_pattern("alice", pattern, exclusions, settings)
        repository.apply_slot_changes("alice", [_slot(), _slot("09:30", "10:00")], [])
        repository.mark_booked(_slot().id, "b-1")
        repository.save_booking_record(_record())
        repository.save_attempt(attempt)

        reloaded = JsonFileRepository(path)

        saved = reloaded.load_pattern("alice")
        assert saved.pattern == pattern
        assert saved.exclusions == exclusions
        assert saved.settings == settings
        assert reloaded.load_slots("alice") == repository.load_slots("alice")
        assert reloaded.get_booking_record("b-1") == _record()
        restored = reloaded.load_attempts()[0]
        assert restored.failure_reason is FailureReason.SLOT_RACE_LOST
        assert restored.refund_due
        assert restored.history == attempt.history

    def test_file_is_plain_json(self, tmp_path):
        path = tmp_path / "data.json"
        JsonFileRepository(path).apply_slot_changes("alice", [_slot()], [])

        data = json.loads(path.read_text(encoding="utf-8"))

        assert data["slots"][0]["id"] == "alice:2025-01-06:09:00"
        assert not (tmp_path / "data.json.tmp").exists()

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid JSON"):
            JsonFileRepository(path)
