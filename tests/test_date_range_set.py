"""
Tests for DateRangeSet normalization and membership.
"""

import pendulum
import pytest

from slotbooking.domain.date_range_set import DateRangeSet
from slotbooking.domain.exceptions import InvalidRangeError
from slotbooking.domain.models import DateRange


class TestDateRangeSet:
    """Tests for DateRangeSet."""

    def test_overlapping_ranges_merge(self):
        """Ranges sharing a day collapse into one."""
        ranges = DateRangeSet().add(DateRange("2025-01-01", "2025-01-05"))
        ranges = ranges.add(DateRange("2025-01-05", "2025-01-10"))

        assert list(ranges) == [DateRange("2025-01-01", "2025-01-10")]

    def test_adjacent_ranges_merge(self):
        """A gap of one day or less is closed."""
        ranges = DateRangeSet.from_pairs([("2025-01-01", "2025-01-05"), ("2025-01-06", "2025-01-08")])

        assert ranges.to_list() == [{"start": "2025-01-01", "end": "2025-01-08"}]

    def test_separate_ranges_stay_sorted(self):
        ranges = DateRangeSet.from_pairs([
            ("2025-03-01", "2025-03-02"),
            ("2025-01-01", "2025-01-01"),
            ("2025-02-10", "2025-02-14"),
        ])

        assert [r.start for r in ranges] == [
            pendulum.date(2025, 1, 1),
            pendulum.date(2025, 2, 10),
            pendulum.date(2025, 3, 1),
        ]
        assert len(ranges) == 3

    def test_contained_range_is_absorbed(self):
        ranges = DateRangeSet.from_pairs([("2025-01-01", "2025-01-31"), ("2025-01-10", "2025-01-12")])

        assert list(ranges) == [DateRange("2025-01-01", "2025-01-31")]

    def test_add_is_idempotent(self):
        base = DateRangeSet.from_pairs([("2025-01-01", "2025-01-05")])
        once = base.add(DateRange("2025-02-01", "2025-02-03"))
        twice = once.add(DateRange("2025-02-01", "2025-02-03"))

        assert once == twice
        assert hash(once) == hash(twice)

    def test_add_returns_new_set(self):
        base = DateRangeSet()
        base.add(DateRange("2025-01-01", "2025-01-02"))

        assert len(base) == 0

    def test_contains_inclusive_bounds(self):
        ranges = DateRangeSet.from_pairs([("2025-01-01", "2025-01-05"), ("2025-02-10", "2025-02-14")])

        assert ranges.contains("2025-01-01")
        assert ranges.contains(pendulum.date(2025, 1, 5))
        assert "2025-02-12" in ranges
        assert not ranges.contains("2024-12-31")
        assert not ranges.contains("2025-01-06")
        assert not ranges.contains("2025-02-15")

    def test_empty_set_contains_nothing(self):
        assert not DateRangeSet().contains("2025-01-01")

    def test_discard_removes_stored_range(self):
        ranges = DateRangeSet.from_pairs([("2025-01-01", "2025-01-05"), ("2025-02-10", "2025-02-14")])
        remaining = ranges.discard(DateRange("2025-01-01", "2025-01-05"))

        assert list(remaining) == [DateRange("2025-02-10", "2025-02-14")]
        assert not remaining.contains("2025-01-03")

    def test_reversed_range_rejected(self):
        with pytest.raises(InvalidRangeError):
            DateRangeSet.from_pairs([("2025-01-05", "2025-01-01")])
