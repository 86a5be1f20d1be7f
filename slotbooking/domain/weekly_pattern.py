"""
Recurring per-weekday availability template.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Tuple

from .exceptions import ValidationError
from .models import TimeRange, Weekday

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DayAvailability:
    """Availability for one weekday: an on/off flag plus its time ranges."""
    enabled: bool = False
    ranges: Tuple[TimeRange, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "ranges", tuple(self.ranges))


@dataclass(frozen=True)
class WeeklyPattern:
    """
    Mapping from each of the seven weekdays to a DayAvailability.

    Weekdays missing from ``days`` are treated as disabled.
    """
    days: Mapping[Weekday, DayAvailability] = field(default_factory=dict)

    def __post_init__(self):
        unknown = [key for key in self.days if not isinstance(key, Weekday)]
        if unknown:
            raise ValidationError(f"Weekly pattern keys must be weekdays, got {unknown}")
        full = {day: self.days.get(day, DayAvailability()) for day in Weekday}
        object.__setattr__(self, "days", full)

    @classmethod
    def from_ranges(cls, ranges: Mapping[Weekday, Iterable[TimeRange]]) -> "WeeklyPattern":
        """Build a pattern enabling exactly the given weekdays."""
        return cls(
            days={
                day: DayAvailability(enabled=True, ranges=tuple(day_ranges))
                for day, day_ranges in ranges.items()
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping]) -> "WeeklyPattern":
        """
        Build a pattern from its serialized form.

        Example:
            {"monday": {"enabled": True, "ranges": [{"start": "09:00", "end": "11:00"}]}}
        """
        days: Dict[Weekday, DayAvailability] = {}
        for key, value in (data or {}).items():
            weekday = Weekday.from_key(key)
            ranges = tuple(
                TimeRange.parse(item["start"], item["end"])
                for item in value.get("ranges", [])
            )
            days[weekday] = DayAvailability(enabled=bool(value.get("enabled", False)), ranges=ranges)
        return cls(days=days)

    def to_dict(self) -> Dict[str, dict]:
        return {
            day.key: {
                "enabled": availability.enabled,
                "ranges": [
                    {"start": str(r.start), "end": str(r.end)}
                    for r in availability.ranges
                ],
            }
            for day, availability in self.days.items()
        }

    def validate(self) -> List[str]:
        """
        Check the pattern and return warnings.

        Overlapping ranges within a day and ranges on a disabled day are
        errors. An enabled day with no ranges is only a warning: it simply
        produces no slots.

        Returns:
            List of warning messages (empty if the pattern is clean)

        Raises:
            ValidationError: If any day is inconsistent
        """
        warnings: List[str] = []

        for day, availability in self.days.items():
            if not availability.enabled:
                if availability.ranges:
                    raise ValidationError(f"{day.key} is disabled but has time ranges")
                continue

            if not availability.ranges:
                message = f"{day.key} is enabled but has no time ranges; no slots will be offered"
                logger.warning(message)
                warnings.append(message)
                continue

            ordered = sorted(availability.ranges, key=lambda r: r.start)
            for previous, current in zip(ordered, ordered[1:]):
                if current.overlaps(previous):
                    raise ValidationError(
                        f"{day.key} has overlapping ranges {previous} and {current}"
                    )

        return warnings

    def slots_for(self, weekday: Weekday) -> List[TimeRange]:
        """Time ranges for ``weekday`` ordered by start; empty if disabled."""
        availability = self.days[Weekday(weekday)]
        if not availability.enabled:
            return []
        return sorted(availability.ranges, key=lambda r: r.start)

    def enabled_days(self) -> List[Weekday]:
        return [day for day, availability in self.days.items() if availability.enabled]
