"""
Normalized set of inclusive calendar date ranges (unavailable periods).
"""

from bisect import bisect_right
from typing import Iterable, Iterator, List, Tuple

from pendulum import Date

from .models import DateRange, to_date


class DateRangeSet:
    """
    Immutable set of DateRange values kept in normalized form.

    Normalized means sorted by start, with any two ranges that overlap or
    touch (gap of at most one day) merged into one. After normalization no
    two ranges overlap or touch, so membership is a single binary search.
    """

    def __init__(self, ranges: Iterable[DateRange] = ()):
        self._ranges: Tuple[DateRange, ...] = tuple(self._normalize(list(ranges)))
        self._starts: List[Date] = [r.start for r in self._ranges]

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[object, object]]) -> "DateRangeSet":
        """Build a set from ``(start, end)`` pairs of dates or ISO strings."""
        return cls(DateRange(start=start, end=end) for start, end in pairs)

    def add(self, date_range: DateRange) -> "DateRangeSet":
        """
        Return a new set with ``date_range`` inserted and re-normalized.

        Adding a range that is already covered yields an equal set.
        """
        return DateRangeSet(self._ranges + (date_range,))

    def discard(self, date_range: DateRange) -> "DateRangeSet":
        """Return a new set without the given stored range (no-op if absent)."""
        return DateRangeSet(r for r in self._ranges if r != date_range)

    def contains(self, day) -> bool:
        """True iff some normalized range covers ``day`` inclusively."""
        day = to_date(day)
        index = bisect_right(self._starts, day) - 1
        return index >= 0 and self._ranges[index].end >= day

    def to_list(self) -> List[dict]:
        return [
            {"start": r.start.isoformat(), "end": r.end.isoformat()}
            for r in self._ranges
        ]

    @staticmethod
    def _normalize(ranges: List[DateRange]) -> List[DateRange]:
        """
        Sort by start and merge overlapping or adjacent ranges.

        Example: [01-01..01-05, 01-05..01-10, 01-11..01-12] -> [01-01..01-12]
        """
        if not ranges:
            return []

        sorted_ranges = sorted(ranges, key=lambda r: (r.start, r.end))
        merged: List[DateRange] = [sorted_ranges[0]]

        for current in sorted_ranges[1:]:
            last = merged[-1]

            if current.start.toordinal() <= last.end.toordinal() + 1:
                if current.end > last.end:
                    merged[-1] = DateRange(start=last.start, end=current.end)
            else:
                merged.append(current)

        return merged

    def __iter__(self) -> Iterator[DateRange]:
        return iter(self._ranges)

    def __len__(self) -> int:
        return len(self._ranges)

    def __contains__(self, day) -> bool:
        return self.contains(day)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DateRangeSet):
            return NotImplemented
        return self._ranges == other._ranges

    def __hash__(self) -> int:
        return hash(self._ranges)

    def __repr__(self) -> str:
        return f"DateRangeSet([{', '.join(str(r) for r in self._ranges)}])"
