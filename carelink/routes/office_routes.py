import logging
from datetime import datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carelink.auth.dependencies import get_current_doctor, get_current_user
from carelink.core.config import DEFAULT_SLOT_GRANULARITY_MINUTES
from carelink.database import get_db
from carelink.errors import StoreUnavailable
from carelink.models.user import User
from carelink.routes.common import ensure_database_ready
from carelink.services import offices

router = APIRouter(tags=['offices'])

logger = logging.getLogger(__name__)


def strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class OfficeRequest(BaseModel):
    name: str
    address: str
    city: str
    postal_code: str | None = None
    phone: str | None = None
    notes: str | None = None

    @field_validator('name', 'address', 'city')
    @classmethod
    def validate_required(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('This field is required.')
        return normalized

    @field_validator('postal_code', 'phone', 'notes')
    @classmethod
    def normalize_optional(cls, value: str | None) -> str | None:
        return strip_optional(value)


class OfficeUpdateRequest(BaseModel):
    name: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    phone: str | None = None
    notes: str | None = None

    @field_validator('name', 'address', 'city')
    @classmethod
    def validate_required(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('This field cannot be blank.')
        return normalized

    @field_validator('postal_code', 'phone', 'notes')
    @classmethod
    def normalize_optional(cls, value: str | None) -> str | None:
        return strip_optional(value)


class OfficeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    name: str
    address: str
    city: str
    postal_code: str | None = None
    phone: str | None = None
    notes: str | None = None
    is_active: bool


class ScheduleRequest(BaseModel):
    start_time: time
    end_time: time
    slot_duration: int = DEFAULT_SLOT_GRANULARITY_MINUTES


class ScheduleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    office_id: int
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration: int


class UnavailabilityRequest(BaseModel):
    start_datetime: datetime
    end_datetime: datetime
    office_id: int | None = None
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def normalize_reason(cls, value: str | None) -> str | None:
        return strip_optional(value)


class UnavailabilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    office_id: int | None = None
    start_datetime: datetime
    end_datetime: datetime
    reason: str | None = None


@router.get('/offices', response_model=list[OfficeResponse])
def list_my_offices(
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        records = offices.list_offices(db, current_user.id, include_inactive=include_inactive)
        return [OfficeResponse.model_validate(record) for record in records]
    except SQLAlchemyError as exc:
        logger.exception('Listing offices failed for doctor %s', current_user.id)
        raise StoreUnavailable() from exc


@router.get('/doctors/{doctor_id}/offices', response_model=list[OfficeResponse])
def list_doctor_offices(
    doctor_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return [OfficeResponse.model_validate(record) for record in offices.list_offices(db, doctor_id)]
    except SQLAlchemyError as exc:
        logger.exception('Listing offices failed for doctor %s', doctor_id)
        raise StoreUnavailable() from exc


@router.post('/offices', response_model=OfficeResponse, status_code=status.HTTP_201_CREATED)
def create_office(
    data: OfficeRequest,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        office = offices.create_office(db, current_user, **data.model_dump())
        return OfficeResponse.model_validate(office)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Creating office failed for doctor %s', current_user.id)
        raise StoreUnavailable() from exc


@router.put('/offices/{office_id}', response_model=OfficeResponse)
def update_office(
    office_id: int,
    data: OfficeUpdateRequest,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        office = offices.update_office(db, current_user, office_id, **data.model_dump(exclude_unset=True))
        return OfficeResponse.model_validate(office)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Updating office %s failed', office_id)
        raise StoreUnavailable() from exc


@router.delete('/offices/{office_id}', response_model=OfficeResponse)
def deactivate_office(
    office_id: int,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        office = offices.deactivate_office(db, current_user, office_id)
        return OfficeResponse.model_validate(office)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Deactivating office %s failed', office_id)
        raise StoreUnavailable() from exc


@router.get('/offices/{office_id}/schedules', response_model=list[ScheduleResponse])
def list_office_schedules(
    office_id: int,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        records = offices.list_schedules(db, current_user.id, office_id=office_id)
        return [ScheduleResponse.model_validate(record) for record in records]
    except SQLAlchemyError as exc:
        logger.exception('Listing schedules failed for office %s', office_id)
        raise StoreUnavailable() from exc


@router.put('/offices/{office_id}/schedules/{day}', response_model=ScheduleResponse)
def set_office_schedule(
    office_id: int,
    day: int,
    data: ScheduleRequest,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        schedule = offices.set_schedule(
            db,
            current_user,
            office_id,
            day,
            data.start_time,
            data.end_time,
            data.slot_duration,
        )
        return ScheduleResponse.model_validate(schedule)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Setting schedule failed for office %s day %s', office_id, day)
        raise StoreUnavailable() from exc


@router.delete('/offices/{office_id}/schedules/{day}', status_code=status.HTTP_204_NO_CONTENT)
def remove_office_schedule(
    office_id: int,
    day: int,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        offices.remove_schedule(db, current_user, office_id, day)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Removing schedule failed for office %s day %s', office_id, day)
        raise StoreUnavailable() from exc


@router.get('/unavailability', response_model=list[UnavailabilityResponse])
def list_my_unavailability(
    upcoming_only: bool = Query(default=True),
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        since = datetime.now() if upcoming_only else None
        records = offices.list_unavailability(db, current_user.id, since=since)
        return [UnavailabilityResponse.model_validate(record) for record in records]
    except SQLAlchemyError as exc:
        logger.exception('Listing unavailability failed for doctor %s', current_user.id)
        raise StoreUnavailable() from exc


@router.post('/unavailability', response_model=UnavailabilityResponse, status_code=status.HTTP_201_CREATED)
def add_unavailability(
    data: UnavailabilityRequest,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        period = offices.add_unavailability(
            db,
            current_user,
            data.start_datetime,
            data.end_datetime,
            office_id=data.office_id,
            reason=data.reason,
        )
        return UnavailabilityResponse.model_validate(period)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Adding unavailability failed for doctor %s', current_user.id)
        raise StoreUnavailable() from exc


@router.delete('/unavailability/{period_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_unavailability(
    period_id: int,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        offices.remove_unavailability(db, current_user, period_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Removing unavailability %s failed', period_id)
        raise StoreUnavailable() from exc
