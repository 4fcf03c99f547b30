"""
billing_batch.domain.time_of_year -- Annual recurrence rule.  ZERO I/O.

A ``TimeOfYear`` is the month/day/time-of-day at which a recurrence comes
due every year.  It is derived once from the recurrence's event time and
persisted in serialized form (``"MM DD HH:MM:SS.ffffff"``) so that the
series can be re-enumerated on every run without any stored progress.

A February 29 start is normalized to February 28: the anniversary then
falls on Feb 28 every year, leap years included, rather than being skipped
in three years out of four.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator

from dateutil.relativedelta import relativedelta

from billing_kernel.exceptions import MalformedRecurrenceError

_SERIALIZED = re.compile(
    r"^(?P<month>\d{2}) (?P<day>\d{2}) "
    r"(?P<hour>\d{2}):(?P<minute>\d{2}):(?P<second>\d{2})\.(?P<microsecond>\d{6})$"
)

# A non-leap year: validates month/day combinations and rejects Feb 29.
_REFERENCE_YEAR = 2001

_MAX_YEAR = 9999


@dataclass(frozen=True)
class TimeOfYear:
    """Instant within a year, repeated annually (always UTC)."""

    month: int
    day: int
    hour: int = 0
    minute: int = 0
    second: int = 0
    microsecond: int = 0

    def __post_init__(self) -> None:
        try:
            datetime(
                _REFERENCE_YEAR, self.month, self.day,
                self.hour, self.minute, self.second, self.microsecond,
            )
        except ValueError as e:
            raise MalformedRecurrenceError(self.serialize(), str(e)) from e

    @classmethod
    def from_instant(cls, instant: datetime) -> TimeOfYear:
        """Derive the annual rule from a recurrence's event time."""
        if instant.tzinfo is None:
            raise ValueError(f"TimeOfYear requires an aware datetime: {instant!r}")
        instant = instant.astimezone(timezone.utc)
        if instant.month == 2 and instant.day == 29:
            # Clamps to Feb 28 of the following (non-leap) year.
            instant = instant + relativedelta(years=1)
        return cls(
            month=instant.month,
            day=instant.day,
            hour=instant.hour,
            minute=instant.minute,
            second=instant.second,
            microsecond=instant.microsecond,
        )

    @classmethod
    def parse(cls, value: str) -> TimeOfYear:
        """Parse the serialized form; raises MalformedRecurrenceError."""
        match = _SERIALIZED.match(value or "")
        if match is None:
            raise MalformedRecurrenceError(value, "expected 'MM DD HH:MM:SS.ffffff'")
        return cls(**{k: int(v) for k, v in match.groupdict().items()})

    def serialize(self) -> str:
        return (
            f"{self.month:02d} {self.day:02d} "
            f"{self.hour:02d}:{self.minute:02d}:{self.second:02d}.{self.microsecond:06d}"
        )

    def in_year(self, year: int) -> datetime:
        return datetime(
            year, self.month, self.day,
            self.hour, self.minute, self.second, self.microsecond,
            tzinfo=timezone.utc,
        )

    def instances_in_range(self, lower: datetime, upper_exclusive: datetime) -> Iterator[datetime]:
        """
        Lazily yield each year's instant in ``[lower, upper_exclusive)``.

        Ascending, finite and restartable: calling again with the same bounds
        yields the same sequence.
        """
        if lower.tzinfo is None or upper_exclusive.tzinfo is None:
            raise ValueError("instances_in_range requires aware datetimes")
        year = lower.astimezone(timezone.utc).year
        last_year = min(upper_exclusive.astimezone(timezone.utc).year, _MAX_YEAR)
        while year <= last_year:
            instant = self.in_year(year)
            if instant >= upper_exclusive:
                return
            if instant >= lower:
                yield instant
            year += 1

    def __str__(self) -> str:
        return self.serialize()
