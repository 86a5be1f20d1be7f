"""
Tests for the slot store: regeneration merge and atomic booking.
"""

from concurrent.futures import ThreadPoolExecutor

import pendulum
import pytest

from slotbooking.adapters.memory_repository import InMemoryRepository
from slotbooking.domain.availability_expander import AvailabilityExpander
from slotbooking.domain.date_range_set import DateRangeSet
from slotbooking.domain.exceptions import (
    AlreadyBookedError,
    SlotExpiredError,
    SlotLockedError,
    SlotNotFoundError,
)
from slotbooking.domain.models import Slot, TimeOfDay, TimeRange, Weekday, to_date
from slotbooking.domain.weekly_pattern import WeeklyPattern
from slotbooking.services.slot_store import SlotStore

NOW = pendulum.datetime(2025, 1, 1, 8, 0, tz="UTC")
MONDAY = "2025-01-06"


def _store() -> SlotStore:
    return SlotStore(InMemoryRepository(), clock=lambda: NOW)


def _expand(start="09:00", end="11:00", interval=30, window_end=MONDAY):
    pattern = WeeklyPattern.from_ranges({Weekday.MONDAY: [TimeRange.parse(start, end)]})
    return AvailabilityExpander().expand(pattern, DateRangeSet(), MONDAY, window_end, "UTC", interval, "alice")


def _try_book(store: SlotStore, slot_id: str, booking_id: str) -> bool:
    try:
        store.mark_booked(slot_id, booking_id)
    except AlreadyBookedError:
        return False
    return True


class TestUpsertWindow:
    """Tests for merging regenerated windows."""

    def test_initial_insert(self):
        store = _store()
        result = store.upsert_window("alice", _expand())

        assert len(result.inserted) == 4
        assert not result.has_conflicts
        assert [str(s.start) for s in store.list_slots("alice")] == ["09:00", "09:30", "10:00", "10:30"]

    def test_rerun_is_a_no_op(self):
        store = _store()
        store.upsert_window("alice", _expand())

        result = store.upsert_window("alice", _expand())

        assert result.inserted == []
        assert result.removed == []
        assert len(result.unchanged) == 4

    def test_booked_slot_survives_shrinking_window(self):
        store = _store()
        store.upsert_window("alice", _expand())
        store.mark_booked("alice:2025-01-06:10:30", "b-1")

        result = store.upsert_window("alice", _expand("09:00", "10:00"))

        assert result.preserved == ["alice:2025-01-06:10:30"]
        assert len(result.locked) == 1
        assert isinstance(result.locked[0], SlotLockedError)
        kept = store.get("alice:2025-01-06:10:30")
        assert kept.booked and kept.booking_id == "b-1"
        assert "alice:2025-01-06:10:00" in result.removed

    def test_booked_slot_is_never_retimed(self):
        """Changing the interval regenerates everything except booked slots."""
        store = _store()
        store.upsert_window("alice", _expand())
        store.mark_booked("alice:2025-01-06:09:00", "b-1")

        result = store.upsert_window("alice", _expand(interval=60))

        slot = store.get("alice:2025-01-06:09:00")
        assert slot.end == TimeOfDay.of(9, 30)
        assert slot.booked
        assert [e.slot_id for e in result.locked] == ["alice:2025-01-06:09:00"]
        assert result.inserted == ["alice:2025-01-06:10:00"]
        assert sorted(result.removed) == ["alice:2025-01-06:09:30", "alice:2025-01-06:10:30"]
        assert store.get("alice:2025-01-06:10:00").end == TimeOfDay.of(11)

    def test_new_slots_overlapping_booked_are_skipped(self):
        store = _store()
        store.upsert_window("alice", _expand(interval=60))
        store.mark_booked("alice:2025-01-06:09:00", "b-1")  # 09:00-10:00

        store.upsert_window("alice", _expand("09:30", "11:00", interval=30))

        starts = [str(s.start) for s in store.list_slots("alice")]
        assert starts == ["09:00", "10:00", "10:30"]

    def test_other_providers_untouched(self):
        store = _store()
        store.upsert_window("alice", _expand())
        bob = [Slot.create("bob", to_date(MONDAY), TimeRange.parse("09:00", "10:00"))]
        store.upsert_window("bob", bob)

        store.upsert_window("alice", [])

        assert store.list_slots("alice") == []
        assert len(store.list_slots("bob")) == 1


class TestMarkBooked:
    """Tests for the atomic check-and-set."""

    def test_books_once(self):
        store = _store()
        store.upsert_window("alice", _expand())

        booked = store.mark_booked("alice:2025-01-06:09:00", "b-1")

        assert booked.booking_id == "b-1"
        with pytest.raises(AlreadyBookedError):
            store.mark_booked("alice:2025-01-06:09:00", "b-2")

    def test_unknown_slot(self):
        with pytest.raises(SlotNotFoundError):
            _store().mark_booked("alice:2030-01-01:09:00", "b-1")

    def test_expired_slot_rejected(self):
        store = SlotStore(InMemoryRepository(), clock=lambda: pendulum.datetime(2025, 1, 6, 9, 30, tz="UTC"))
        store.upsert_window("alice", _expand())

        with pytest.raises(SlotExpiredError):
            store.mark_booked("alice:2025-01-06:09:00", "b-1")
        # Started but not ended is still bookable
        store.mark_booked("alice:2025-01-06:09:30", "b-2")

    def test_thousand_concurrent_callers_single_winner(self):
        store = _store()
        store.upsert_window("alice", _expand())

        with ThreadPoolExecutor(max_workers=32) as pool:
            results = list(pool.map(
                lambda n: _try_book(store, "alice:2025-01-06:09:00", f"b-{n}"),
                range(1000),
            ))

        assert results.count(True) == 1

    def test_thousand_pairwise_races(self):
        """Two simultaneous bookings per slot, across 1000 slots."""
        store = _store()
        pattern = WeeklyPattern.from_ranges({day: [TimeRange.parse("00:00", "23:30")] for day in Weekday})
        slots = AvailabilityExpander().expand(
            pattern, DateRangeSet(), MONDAY, "2025-01-27", "UTC", 30, "alice",
        )[:1000]
        store.upsert_window("alice", slots)
        assert len(slots) == 1000

        jobs = [(slot.id, f"{slot.id}#{n}") for slot in slots for n in range(2)]
        with ThreadPoolExecutor(max_workers=32) as pool:
            outcomes = list(pool.map(lambda job: (job[0], _try_book(store, *job)), jobs))

        wins = {}
        for slot_id, won in outcomes:
            wins[slot_id] = wins.get(slot_id, 0) + int(won)
        assert set(wins.values()) == {1}

    def test_mark_unbooked_requires_holder(self):
        store = _store()
        store.upsert_window("alice", _expand())
        store.mark_booked("alice:2025-01-06:09:00", "b-1")

        with pytest.raises(SlotLockedError):
            store.mark_unbooked("alice:2025-01-06:09:00", "b-2")

        released = store.mark_unbooked("alice:2025-01-06:09:00", "b-1")
        assert not released.booked
        assert not store.get("alice:2025-01-06:09:00").booked

    def test_removed_slots_release_their_locks(self):
        store = _store()
        store.upsert_window("alice", _expand())
        store.mark_booked("alice:2025-01-06:09:00", "b-1")
        store.mark_booked("alice:2025-01-06:09:30", "b-2")
        store.mark_unbooked("alice:2025-01-06:09:30", "b-2")

        result = store.upsert_window("alice", _expand("09:00", "09:30"))

        assert "alice:2025-01-06:09:30" in result.removed
        assert set(store._slot_locks) == {"alice:2025-01-06:09:00"}


class TestBookableSlots:
    """Tests for listing slots a buyer can still book."""

    def test_excludes_booked_and_started(self):
        store = SlotStore(InMemoryRepository(), clock=lambda: pendulum.datetime(2025, 1, 6, 9, 15, tz="UTC"))
        store.upsert_window("alice", _expand())
        store.mark_booked("alice:2025-01-06:10:00", "b-1")

        bookable = store.bookable_slots("alice")

        assert [s.id for s in bookable] == ["alice:2025-01-06:09:30", "alice:2025-01-06:10:30"]

    def test_filters_by_date(self):
        store = _store()
        store.upsert_window("alice", _expand(window_end="2025-01-20"))

        bookable = store.bookable_slots("alice", "2025-01-13", "2025-01-13")

        assert {s.date for s in bookable} == {pendulum.date(2025, 1, 13)}
