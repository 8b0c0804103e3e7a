"""Time-window calculator.

Turns one weekday's office hours into candidate visit slots. Candidates are
stepped by the schedule granularity, not by the visit length, so neighbouring
candidates may overlap until the conflict detector filters them.
"""

from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import NamedTuple, Protocol

from carelink.core.config import LEAD_TIME_MINUTES
from carelink.scheduling.intervals import combine


class VisitType(str, Enum):
    FIRST_VISIT = 'first_visit'
    FOLLOW_UP = 'follow_up'
    URGENT = 'urgent'
    ROUTINE = 'routine'


VISIT_DURATIONS = {
    VisitType.FIRST_VISIT: 60,
    VisitType.FOLLOW_UP: 30,
    VisitType.URGENT: 20,
    VisitType.ROUTINE: 30,
}


class SlotStatus(str, Enum):
    AVAILABLE = 'available'
    TOO_SOON = 'too_soon'
    BOOKED = 'booked'
    UNAVAILABLE = 'unavailable'


class ScheduleWindow(Protocol):
    start_time: time
    end_time: time
    slot_duration: int


class Slot(NamedTuple):
    start: datetime
    end: datetime
    duration_minutes: int
    status: SlotStatus = SlotStatus.AVAILABLE

    @property
    def is_bookable(self) -> bool:
        return self.status == SlotStatus.AVAILABLE


def parse_visit_type(value: str | VisitType) -> VisitType:
    try:
        return VisitType(value.strip().lower() if isinstance(value, str) else value)
    except ValueError as exc:
        raise ValueError('Invalid visit type.') from exc


def visit_duration(visit_type: str | VisitType) -> int:
    return VISIT_DURATIONS[parse_visit_type(visit_type)]


def day_of_week(target_date: date) -> int:
    """Weekday index used by schedules: 0 = Sunday ... 6 = Saturday."""
    return (target_date.weekday() + 1) % 7


def generate_candidate_slots(
    window: ScheduleWindow | None,
    visit_type: str | VisitType,
    target_date: date,
    now: datetime,
    lead_time_minutes: int = LEAD_TIME_MINUTES,
) -> list[Slot]:
    if window is None:
        return []
    if window.slot_duration <= 0:
        raise ValueError('Slot granularity must be positive.')

    duration = visit_duration(visit_type)
    step = timedelta(minutes=window.slot_duration)
    length = timedelta(minutes=duration)
    window_end = combine(target_date, window.end_time)
    earliest_start = now + timedelta(minutes=lead_time_minutes)

    slots: list[Slot] = []
    current = combine(target_date, window.start_time)
    while current + length <= window_end:
        slot_status = SlotStatus.AVAILABLE
        if target_date == now.date() and current < earliest_start:
            slot_status = SlotStatus.TOO_SOON
        slots.append(Slot(current, current + length, duration, slot_status))
        current += step

    return slots
