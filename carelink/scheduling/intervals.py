"""Half-open interval arithmetic shared by slot generation and booking checks."""

from datetime import date, datetime, time
from typing import NamedTuple


def overlaps(start_a, end_a, start_b, end_b) -> bool:
    """True when [start_a, end_a) and [start_b, end_b) intersect.

    Touching endpoints do not overlap, so a 09:30-10:00 visit sits next to a
    10:00-10:30 one.
    """
    return start_a < end_b and end_a > start_b


def combine(day: date, moment: time) -> datetime:
    return datetime.combine(day, moment)


class TimeRange(NamedTuple):
    start: datetime
    end: datetime

    @classmethod
    def on(cls, day: date, start: time, end: time) -> 'TimeRange':
        return cls(combine(day, start), combine(day, end))

    def overlaps(self, other: 'TimeRange') -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)
