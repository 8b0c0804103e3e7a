"""Doctor-owned scheduling inputs: offices, weekly hours and unavailability."""

import logging
from datetime import date, datetime, time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carelink.core.config import MAX_SLOT_GRANULARITY_MINUTES, MIN_SLOT_GRANULARITY_MINUTES
from carelink.errors import InvariantViolation, ResourceNotFound, ValidationFailed
from carelink.models.office import Office, WeeklySchedule
from carelink.models.unavailability import Unavailability
from carelink.models.user import User
from carelink.scheduling.slots import day_of_week

logger = logging.getLogger(__name__)

OFFICE_FIELDS = ('name', 'address', 'city', 'postal_code', 'phone', 'notes')


def get_owned_office(db: Session, doctor: User, office_id: int, active_only: bool = True) -> Office:
    query = db.query(Office).filter(Office.id == office_id, Office.doctor_id == doctor.id)
    if active_only:
        query = query.filter(Office.is_active.is_(True))
    office = query.first()
    if office is None:
        raise ResourceNotFound('Office not found.')
    return office


def get_doctor_office(db: Session, doctor_id: int, office_id: int) -> Office:
    """Active office belonging to ``doctor_id``, as seen by any caller."""
    office = db.query(Office).filter(
        Office.id == office_id,
        Office.doctor_id == doctor_id,
        Office.is_active.is_(True),
    ).first()
    if office is None:
        raise ValidationFailed('The office does not belong to this doctor or is no longer active.')
    return office


def create_office(db: Session, doctor: User, **fields) -> Office:
    office = Office(doctor_id=doctor.id, is_active=True, **{key: fields.get(key) for key in OFFICE_FIELDS})
    db.add(office)
    db.commit()
    db.refresh(office)
    logger.info('Doctor %s created office %s', doctor.id, office.id)
    return office


def update_office(db: Session, doctor: User, office_id: int, **fields) -> Office:
    office = get_owned_office(db, doctor, office_id)
    for key in OFFICE_FIELDS:
        if key in fields:
            setattr(office, key, fields[key])
    db.commit()
    db.refresh(office)
    return office


def deactivate_office(db: Session, doctor: User, office_id: int) -> Office:
    """Soft-delete an office and its weekly hours; appointment history stays intact."""
    office = get_owned_office(db, doctor, office_id, active_only=False)
    office.is_active = False
    db.query(WeeklySchedule).filter(
        WeeklySchedule.office_id == office.id,
        WeeklySchedule.is_active.is_(True),
    ).update({WeeklySchedule.is_active: False}, synchronize_session=False)
    db.commit()
    db.refresh(office)
    logger.info('Doctor %s deactivated office %s', doctor.id, office.id)
    return office


def list_offices(db: Session, doctor_id: int, include_inactive: bool = False) -> list[Office]:
    query = db.query(Office).filter(Office.doctor_id == doctor_id)
    if not include_inactive:
        query = query.filter(Office.is_active.is_(True))
    return query.order_by(Office.created_at.desc(), Office.id.desc()).all()


def validate_schedule(day: int, start_time: time, end_time: time, slot_duration: int) -> None:
    if not 0 <= day <= 6:
        raise ValidationFailed('Day of week must be between 0 (Sunday) and 6 (Saturday).')
    if start_time >= end_time:
        raise ValidationFailed('Start time must be before end time.')
    if not MIN_SLOT_GRANULARITY_MINUTES <= slot_duration <= MAX_SLOT_GRANULARITY_MINUTES:
        raise ValidationFailed(
            f'Slot duration must be between {MIN_SLOT_GRANULARITY_MINUTES} '
            f'and {MAX_SLOT_GRANULARITY_MINUTES} minutes.'
        )


def set_schedule(
    db: Session,
    doctor: User,
    office_id: int,
    day: int,
    start_time: time,
    end_time: time,
    slot_duration: int,
) -> WeeklySchedule:
    """Replace the active hours for one office weekday in a single transaction."""
    validate_schedule(day, start_time, end_time, slot_duration)
    office = get_owned_office(db, doctor, office_id)

    try:
        db.query(WeeklySchedule).filter(
            WeeklySchedule.office_id == office.id,
            WeeklySchedule.day_of_week == day,
            WeeklySchedule.is_active.is_(True),
        ).update({WeeklySchedule.is_active: False}, synchronize_session=False)

        schedule = WeeklySchedule(
            doctor_id=doctor.id,
            office_id=office.id,
            day_of_week=day,
            start_time=start_time,
            end_time=end_time,
            slot_duration=slot_duration,
            is_active=True,
        )
        db.add(schedule)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvariantViolation('Office hours for this day were changed concurrently. Please retry.') from exc

    db.refresh(schedule)
    logger.info('Doctor %s set office %s hours for day %s', doctor.id, office.id, day)
    return schedule


def remove_schedule(db: Session, doctor: User, office_id: int, day: int) -> None:
    if not 0 <= day <= 6:
        raise ValidationFailed('Day of week must be between 0 (Sunday) and 6 (Saturday).')
    office = get_owned_office(db, doctor, office_id, active_only=False)
    db.query(WeeklySchedule).filter(
        WeeklySchedule.office_id == office.id,
        WeeklySchedule.day_of_week == day,
        WeeklySchedule.is_active.is_(True),
    ).update({WeeklySchedule.is_active: False}, synchronize_session=False)
    db.commit()


def list_schedules(db: Session, doctor_id: int, office_id: int | None = None) -> list[WeeklySchedule]:
    query = db.query(WeeklySchedule).filter(
        WeeklySchedule.doctor_id == doctor_id,
        WeeklySchedule.is_active.is_(True),
    )
    if office_id is not None:
        query = query.filter(WeeklySchedule.office_id == office_id)
    return query.order_by(WeeklySchedule.day_of_week, WeeklySchedule.start_time).all()


def get_active_schedule(db: Session, doctor_id: int, office_id: int, on_date: date) -> WeeklySchedule | None:
    return db.query(WeeklySchedule).filter(
        WeeklySchedule.doctor_id == doctor_id,
        WeeklySchedule.office_id == office_id,
        WeeklySchedule.day_of_week == day_of_week(on_date),
        WeeklySchedule.is_active.is_(True),
    ).first()


def add_unavailability(
    db: Session,
    doctor: User,
    start_datetime: datetime,
    end_datetime: datetime,
    office_id: int | None = None,
    reason: str | None = None,
) -> Unavailability:
    if start_datetime >= end_datetime:
        raise ValidationFailed('Unavailability must end after it starts.')
    if office_id is not None:
        get_owned_office(db, doctor, office_id, active_only=False)

    period = Unavailability(
        doctor_id=doctor.id,
        office_id=office_id,
        start_datetime=start_datetime,
        end_datetime=end_datetime,
        reason=reason,
    )
    db.add(period)
    db.commit()
    db.refresh(period)
    logger.info('Doctor %s marked unavailable %s - %s', doctor.id, start_datetime, end_datetime)
    return period


def remove_unavailability(db: Session, doctor: User, period_id: int) -> None:
    period = db.query(Unavailability).filter(
        Unavailability.id == period_id,
        Unavailability.doctor_id == doctor.id,
    ).first()
    if period is None:
        raise ResourceNotFound('Unavailability period not found.')
    db.delete(period)
    db.commit()


def list_unavailability(db: Session, doctor_id: int, since: datetime | None = None) -> list[Unavailability]:
    query = db.query(Unavailability).filter(Unavailability.doctor_id == doctor_id)
    if since is not None:
        query = query.filter(Unavailability.end_datetime > since)
    return query.order_by(Unavailability.start_datetime.asc()).all()
