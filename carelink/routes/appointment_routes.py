import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carelink.auth.dependencies import get_current_doctor, get_current_patient, get_current_user
from carelink.core.config import APPOINTMENT_REQUEST_RATE_LIMIT
from carelink.database import get_db
from carelink.errors import StoreUnavailable
from carelink.models.appointment import Appointment
from carelink.models.user import User
from carelink.routes.common import ensure_database_ready, normalize_notes
from carelink.scheduling.appointment_states import display_status
from carelink.scheduling.slots import VISIT_DURATIONS, Slot, VisitType
from carelink.services import appointments
from carelink.services.rate_limiter import rate_limit

router = APIRouter(prefix='/appointments', tags=['appointments'])

logger = logging.getLogger(__name__)


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    office_id: int
    appointment_date: date
    start_time: time
    end_time: time
    visit_type: VisitType = VisitType.FOLLOW_UP
    patient_notes: str | None = None

    @field_validator('visit_type', mode='before')
    @classmethod
    def normalize_visit_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator('patient_notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class RespondToAppointmentRequest(BaseModel):
    action: str
    confirmed_office_id: int | None = None
    appointment_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    doctor_notes: str | None = None

    @field_validator('action')
    @classmethod
    def validate_action(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {'confirm', 'reschedule', 'reject'}:
            raise ValueError('Action must be one of confirm, reschedule or reject.')
        return normalized

    @field_validator('doctor_notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class SlotResponse(BaseModel):
    appointment_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    status: str
    is_available: bool

    @classmethod
    def from_slot(cls, slot: Slot) -> 'SlotResponse':
        return cls(
            appointment_date=slot.start.date(),
            start_time=slot.start.time(),
            end_time=slot.end.time(),
            duration_minutes=slot.duration_minutes,
            status=slot.status.value,
            is_available=slot.is_bookable,
        )


class AvailabilityResponse(BaseModel):
    available: bool
    reason: str | None = None


class VisitTypeOptionResponse(BaseModel):
    visit_type: str
    duration_minutes: int


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    requested_office_id: int
    confirmed_office_id: int | None = None
    appointment_date: date
    start_time: time
    end_time: time
    status: str
    display_status: str
    visit_type: str
    patient_notes: str | None = None
    doctor_notes: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_appointment(cls, appointment: Appointment, now: datetime | None = None) -> 'AppointmentResponse':
        return cls(
            id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            requested_office_id=appointment.requested_office_id,
            confirmed_office_id=appointment.confirmed_office_id,
            appointment_date=appointment.appointment_date,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            status=appointment.status,
            display_status=display_status(appointment, now or datetime.now()),
            visit_type=appointment.visit_type,
            patient_notes=appointment.patient_notes,
            doctor_notes=appointment.doctor_notes,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )


@router.get('/visit-types', response_model=list[VisitTypeOptionResponse])
def list_visit_types():
    return [
        VisitTypeOptionResponse(visit_type=visit_type.value, duration_minutes=duration_minutes)
        for visit_type, duration_minutes in VISIT_DURATIONS.items()
    ]


@router.get('/slots', response_model=list[SlotResponse])
def list_available_slots(
    doctor_id: int = Query(...),
    office_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    visit_type: str = Query(default=VisitType.FOLLOW_UP.value),
    include_unavailable: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = appointments.compute_available_slots(
            db,
            doctor_id=doctor_id,
            office_id=office_id,
            on_date=slot_date,
            visit_type=visit_type,
            include_unavailable=include_unavailable,
        )
        return [SlotResponse.from_slot(slot) for slot in slots]
    except SQLAlchemyError as exc:
        logger.exception('Slot lookup failed for doctor %s office %s', doctor_id, office_id)
        raise StoreUnavailable() from exc


@router.get('/availability', response_model=AvailabilityResponse)
def check_slot_availability(
    doctor_id: int = Query(...),
    office_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    start_time: time = Query(...),
    end_time: time = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        availability = appointments.check_availability(db, doctor_id, office_id, slot_date, start_time, end_time)
        return AvailabilityResponse(available=availability.bookable, reason=availability.reason)
    except SQLAlchemyError as exc:
        logger.exception('Availability check failed for doctor %s', doctor_id)
        raise StoreUnavailable() from exc


@router.get('', response_model=list[AppointmentResponse])
def list_my_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    appointment_date: date | None = Query(default=None, alias='date'),
    date_range: str = Query(default='all'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        records = appointments.list_appointments(
            db,
            current_user,
            status=status_filter,
            on_date=appointment_date,
            date_range=date_range,
        )
        now = datetime.now()
        return [AppointmentResponse.from_appointment(record, now) for record in records]
    except SQLAlchemyError as exc:
        logger.exception('Listing appointments failed for user %s', current_user.id)
        raise StoreUnavailable() from exc


@router.post(
    '',
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit('appointment_request', APPOINTMENT_REQUEST_RATE_LIMIT, by_user=True))],
)
def request_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = appointments.request_appointment(
            db,
            current_user,
            doctor_id=data.doctor_id,
            office_id=data.office_id,
            on_date=data.appointment_date,
            start_time=data.start_time,
            end_time=data.end_time,
            visit_type=data.visit_type,
            notes=data.patient_notes,
        )
        return AppointmentResponse.from_appointment(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Appointment request failed for patient %s', current_user.id)
        raise StoreUnavailable() from exc


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def respond_to_appointment(
    appointment_id: int,
    data: RespondToAppointmentRequest,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = appointments.respond_to_appointment(
            db,
            current_user,
            appointment_id,
            action=data.action,
            confirmed_office_id=data.confirmed_office_id,
            new_date=data.appointment_date,
            new_start_time=data.start_time,
            new_end_time=data.end_time,
            doctor_notes=data.doctor_notes,
        )
        return AppointmentResponse.from_appointment(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Responding to appointment %s failed', appointment_id)
        raise StoreUnavailable() from exc


@router.patch('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = appointments.cancel_appointment(db, current_user, appointment_id, reason=data.reason)
        return AppointmentResponse.from_appointment(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Cancelling appointment %s failed', appointment_id)
        raise StoreUnavailable() from exc
