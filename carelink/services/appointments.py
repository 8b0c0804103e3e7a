"""Appointment service: slot lookup, booking requests and their lifecycle.

Every mutation is one transaction. The conflict check is repeated inside the
write transaction after taking a write lock on the doctor row, so overlapping
requests for one doctor are checked one at a time. The partial unique index on
live appointments turns a racing duplicate start into an ``IntegrityError``.
Status changes are conditional updates on the status that was read, so two
racing transitions cannot both apply.
"""

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carelink.core.config import LEAD_TIME_MINUTES
from carelink.errors import InvariantViolation, ResourceNotFound, ValidationFailed
from carelink.models.appointment import Appointment
from carelink.models.user import DOCTOR_ROLE, PATIENT_ROLE, User, lock_user
from carelink.scheduling.appointment_states import (
    AppointmentAction,
    AppointmentStatus,
    cancel_action_for,
    next_status,
)
from carelink.scheduling.conflicts import (
    Availability,
    day_bounds,
    detect_conflict,
    filter_slots,
    load_busy_appointments,
    load_unavailability,
)
from carelink.scheduling.intervals import combine
from carelink.scheduling.slots import Slot, SlotStatus, VisitType, generate_candidate_slots, parse_visit_type
from carelink.services import notifications
from carelink.services.offices import get_active_schedule, get_doctor_office

logger = logging.getLogger(__name__)

DEFAULT_CANCELLATION_REASON = 'Appointment cancelled'
DOCTOR_ACTIONS = (AppointmentAction.CONFIRM, AppointmentAction.RESCHEDULE, AppointmentAction.REJECT)
CONFLICT_MESSAGES = {
    SlotStatus.BOOKED.value: 'This time is already booked.',
    SlotStatus.UNAVAILABLE.value: 'The doctor is unavailable at this time.',
}


def _visit_type(value: str | VisitType) -> VisitType:
    try:
        return parse_visit_type(value)
    except ValueError as exc:
        raise ValidationFailed(str(exc)) from exc


def _validate_future_date(on_date: date, now: datetime) -> None:
    if on_date < now.date():
        raise ValidationFailed('The appointment date must not be in the past.')


def _validate_slot_times(start_time: time, end_time: time) -> None:
    if start_time >= end_time:
        raise ValidationFailed('The appointment must end after it starts.')


def _get_doctor(db: Session, doctor_id: int) -> User:
    doctor = db.query(User).filter(User.id == doctor_id, User.role == DOCTOR_ROLE).first()
    if doctor is None:
        raise ResourceNotFound('Doctor not found.')
    return doctor


def _raise_if_conflicting(availability: Availability) -> None:
    if not availability.bookable:
        raise InvariantViolation(CONFLICT_MESSAGES.get(availability.reason, 'This time is not available.'))


def get_appointment_for(db: Session, actor: User, appointment_id: int) -> Appointment:
    """Appointment visible to ``actor``; others get the same not-found error."""
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None or actor.id not in (appointment.patient_id, appointment.doctor_id):
        raise ResourceNotFound('Appointment not found.')
    return appointment


def compute_available_slots(
    db: Session,
    doctor_id: int,
    office_id: int,
    on_date: date,
    visit_type: str | VisitType = VisitType.FOLLOW_UP,
    now: datetime | None = None,
    include_unavailable: bool = False,
) -> list[Slot]:
    now = now or datetime.now()
    visit = _visit_type(visit_type)
    _validate_future_date(on_date, now)
    get_doctor_office(db, doctor_id, office_id)

    schedule = get_active_schedule(db, doctor_id, office_id, on_date)
    candidates = generate_candidate_slots(schedule, visit, on_date, now, LEAD_TIME_MINUTES)
    if not candidates:
        return []

    day_start, day_end = day_bounds(on_date)
    slots = filter_slots(
        candidates,
        load_busy_appointments(db, doctor_id, on_date),
        load_unavailability(db, doctor_id, office_id, day_start, day_end),
    )

    if include_unavailable:
        return slots
    return [slot for slot in slots if slot.is_bookable]


def check_availability(
    db: Session,
    doctor_id: int,
    office_id: int,
    on_date: date,
    start_time: time,
    end_time: time,
) -> Availability:
    _validate_slot_times(start_time, end_time)
    get_doctor_office(db, doctor_id, office_id)
    return detect_conflict(db, doctor_id, office_id, on_date, start_time, end_time)


def request_appointment(
    db: Session,
    patient: User,
    doctor_id: int,
    office_id: int,
    on_date: date,
    start_time: time,
    end_time: time,
    visit_type: str | VisitType = VisitType.FOLLOW_UP,
    notes: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    now = now or datetime.now()
    visit = _visit_type(visit_type)
    _validate_future_date(on_date, now)
    _validate_slot_times(start_time, end_time)
    if combine(on_date, start_time) < now + timedelta(minutes=LEAD_TIME_MINUTES):
        raise ValidationFailed(f'Appointments must be requested at least {LEAD_TIME_MINUTES} minutes in advance.')

    doctor = _get_doctor(db, doctor_id)
    office = get_doctor_office(db, doctor.id, office_id)

    schedule = get_active_schedule(db, doctor.id, office.id, on_date)
    if schedule is None or start_time < schedule.start_time or end_time > schedule.end_time:
        raise ValidationFailed('The requested time is outside the office hours.')

    try:
        lock_user(db, doctor.id)
        _raise_if_conflicting(detect_conflict(db, doctor.id, office.id, on_date, start_time, end_time))

        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            requested_office_id=office.id,
            appointment_date=on_date,
            start_time=start_time,
            end_time=end_time,
            status=AppointmentStatus.REQUESTED.value,
            visit_type=visit.value,
            patient_notes=notes,
        )
        db.add(appointment)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvariantViolation(CONFLICT_MESSAGES[SlotStatus.BOOKED.value]) from exc
    except InvariantViolation:
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info(
        'Patient %s requested appointment %s with doctor %s on %s %s',
        patient.id, appointment.id, doctor.id, on_date, start_time,
    )
    notifications.notify_appointment_event(appointment, patient, doctor, 'requested')
    return appointment


def _apply_transition(db: Session, appointment: Appointment, expected: AppointmentStatus, values: dict) -> None:
    updated = db.query(Appointment).filter(
        Appointment.id == appointment.id,
        Appointment.status == expected.value,
    ).update({**values, Appointment.updated_at: datetime.now()}, synchronize_session=False)
    if updated != 1:
        raise InvariantViolation('The appointment was changed by someone else. Please refresh and retry.')


def respond_to_appointment(
    db: Session,
    doctor: User,
    appointment_id: int,
    action: str | AppointmentAction,
    confirmed_office_id: int | None = None,
    new_date: date | None = None,
    new_start_time: time | None = None,
    new_end_time: time | None = None,
    doctor_notes: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Confirm, reschedule or reject a requested appointment."""
    now = now or datetime.now()
    try:
        action = AppointmentAction(action)
    except ValueError as exc:
        raise ValidationFailed('Action must be one of confirm, reschedule or reject.') from exc
    if action not in DOCTOR_ACTIONS:
        raise ValidationFailed('Action must be one of confirm, reschedule or reject.')

    if action == AppointmentAction.RESCHEDULE:
        if new_date is None or new_start_time is None:
            raise ValidationFailed('A new date and start time are required to reschedule.')
        _validate_future_date(new_date, now)

    appointment = get_appointment_for(db, doctor, appointment_id)
    if appointment.doctor_id != doctor.id:
        raise ResourceNotFound('Appointment not found.')

    current = AppointmentStatus(appointment.status)
    target = next_status(current, action, DOCTOR_ROLE)
    values = {Appointment.status: target.value}
    if doctor_notes is not None:
        values[Appointment.doctor_notes] = doctor_notes

    try:
        if action != AppointmentAction.REJECT:
            office = get_doctor_office(db, doctor.id, confirmed_office_id or appointment.requested_office_id)
            on_date, start_time, end_time = appointment.appointment_date, appointment.start_time, appointment.end_time
            if action == AppointmentAction.RESCHEDULE:
                on_date, start_time = new_date, new_start_time
                end_time = new_end_time or (
                    combine(new_date, new_start_time) + timedelta(minutes=_duration_of(appointment))
                ).time()
                _validate_slot_times(start_time, end_time)
                values.update({
                    Appointment.appointment_date: on_date,
                    Appointment.start_time: start_time,
                    Appointment.end_time: end_time,
                })

            lock_user(db, doctor.id)
            _raise_if_conflicting(detect_conflict(
                db, doctor.id, office.id, on_date, start_time, end_time,
                exclude_appointment_id=appointment.id,
            ))
            values[Appointment.confirmed_office_id] = office.id

        _apply_transition(db, appointment, current, values)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvariantViolation(CONFLICT_MESSAGES[SlotStatus.BOOKED.value]) from exc
    except (InvariantViolation, ValidationFailed):
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info('Doctor %s set appointment %s to %s', doctor.id, appointment.id, target.value)
    patient = db.get(User, appointment.patient_id)
    if patient is not None:
        notifications.notify_appointment_event(appointment, patient, doctor, target.value)
    return appointment


def _duration_of(appointment: Appointment) -> int:
    span = combine(appointment.appointment_date, appointment.end_time) - combine(
        appointment.appointment_date, appointment.start_time
    )
    return int(span.total_seconds() // 60)


def cancel_appointment(db: Session, actor: User, appointment_id: int, reason: str | None = None) -> Appointment:
    appointment = get_appointment_for(db, actor, appointment_id)

    if actor.role == DOCTOR_ROLE and appointment.doctor_id == actor.id:
        role, notes_column = DOCTOR_ROLE, Appointment.doctor_notes
    elif actor.role == PATIENT_ROLE and appointment.patient_id == actor.id:
        role, notes_column = PATIENT_ROLE, Appointment.patient_notes
    else:
        raise ResourceNotFound('Appointment not found.')

    current = AppointmentStatus(appointment.status)
    target = next_status(current, cancel_action_for(role), role)

    try:
        _apply_transition(db, appointment, current, {
            Appointment.status: target.value,
            notes_column: (reason or '').strip() or DEFAULT_CANCELLATION_REASON,
        })
        db.commit()
    except InvariantViolation:
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info('Appointment %s cancelled by %s %s', appointment.id, role, actor.id)
    patient = db.get(User, appointment.patient_id)
    doctor = db.get(User, appointment.doctor_id)
    if patient is not None and doctor is not None:
        notifications.notify_appointment_event(appointment, patient, doctor, target.value)
    return appointment


def list_appointments(
    db: Session,
    actor: User,
    status: str | None = None,
    on_date: date | None = None,
    date_range: str = 'all',
    today: date | None = None,
) -> list[Appointment]:
    if actor.role == DOCTOR_ROLE:
        query = db.query(Appointment).filter(Appointment.doctor_id == actor.id)
    else:
        query = db.query(Appointment).filter(Appointment.patient_id == actor.id)

    if status:
        try:
            query = query.filter(Appointment.status == AppointmentStatus(status).value)
        except ValueError as exc:
            raise ValidationFailed('Invalid appointment status.') from exc
    if on_date is not None:
        query = query.filter(Appointment.appointment_date == on_date)

    today = today or date.today()
    if date_range == 'upcoming':
        query = query.filter(Appointment.appointment_date >= today)
    elif date_range == 'past':
        query = query.filter(Appointment.appointment_date < today)
    elif date_range != 'all':
        raise ValidationFailed("Date range must be 'upcoming', 'past' or 'all'.")

    return query.order_by(Appointment.appointment_date.asc(), Appointment.start_time.asc()).all()
