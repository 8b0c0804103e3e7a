"""Conflict detector.

A slot is bookable when it overlaps neither a live appointment of the doctor
on that day nor an unavailability period scoped to the office (or to every
office). The pure helpers work on plain ranges; the loaders read them from the
store so the same rule runs at request time and again at confirm time.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, NamedTuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from carelink.models.appointment import Appointment
from carelink.models.unavailability import Unavailability
from carelink.scheduling.appointment_states import ACTIVE_STATUSES
from carelink.scheduling.intervals import TimeRange, combine
from carelink.scheduling.slots import Slot, SlotStatus


class Availability(NamedTuple):
    bookable: bool
    reason: str | None = None


BOOKABLE = Availability(True)


def check_slot(
    start: datetime,
    end: datetime,
    busy: Iterable[TimeRange],
    unavailable: Iterable[TimeRange],
) -> Availability:
    candidate = TimeRange(start, end)

    if any(candidate.overlaps(other) for other in busy):
        return Availability(False, SlotStatus.BOOKED.value)

    if any(candidate.overlaps(period) for period in unavailable):
        return Availability(False, SlotStatus.UNAVAILABLE.value)

    return BOOKABLE


def filter_slots(
    candidates: Iterable[Slot],
    busy: Iterable[TimeRange],
    unavailable: Iterable[TimeRange],
) -> list[Slot]:
    """Mark every still-available candidate that collides with something."""
    busy = list(busy)
    unavailable = list(unavailable)
    marked: list[Slot] = []

    for slot in candidates:
        if slot.status != SlotStatus.AVAILABLE:
            marked.append(slot)
            continue
        availability = check_slot(slot.start, slot.end, busy, unavailable)
        if availability.bookable:
            marked.append(slot)
        else:
            marked.append(slot._replace(status=SlotStatus(availability.reason)))

    return marked


def load_busy_appointments(
    db: Session,
    doctor_id: int,
    on_date: date,
    exclude_appointment_id: int | None = None,
) -> list[TimeRange]:
    query = db.query(Appointment.appointment_date, Appointment.start_time, Appointment.end_time).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == on_date,
        Appointment.status.in_([status.value for status in ACTIVE_STATUSES]),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return [TimeRange.on(day, start, end) for day, start, end in query.all()]


def load_unavailability(
    db: Session,
    doctor_id: int,
    office_id: int | None,
    range_start: datetime,
    range_end: datetime,
) -> list[TimeRange]:
    office_scope = Unavailability.office_id.is_(None)
    if office_id is not None:
        office_scope = or_(office_scope, Unavailability.office_id == office_id)

    periods = db.query(Unavailability.start_datetime, Unavailability.end_datetime).filter(
        Unavailability.doctor_id == doctor_id,
        office_scope,
        Unavailability.start_datetime < range_end,
        Unavailability.end_datetime > range_start,
    ).all()

    return [TimeRange(start, end) for start, end in periods]


def day_bounds(on_date: date) -> tuple[datetime, datetime]:
    start = combine(on_date, time.min)
    return start, start + timedelta(days=1)


def detect_conflict(
    db: Session,
    doctor_id: int,
    office_id: int | None,
    on_date: date,
    start: time,
    end: time,
    exclude_appointment_id: int | None = None,
) -> Availability:
    slot = TimeRange.on(on_date, start, end)
    busy = load_busy_appointments(db, doctor_id, on_date, exclude_appointment_id)
    unavailable = load_unavailability(db, doctor_id, office_id, slot.start, slot.end)
    return check_slot(slot.start, slot.end, busy, unavailable)
