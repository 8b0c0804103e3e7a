import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carelink.auth.dependencies import get_current_doctor, get_current_patient
from carelink.core.config import (
    CONNECTION_REQUEST_RATE_LIMIT,
    INVITE_REDEEM_RATE_LIMIT,
)
from carelink.database import get_db
from carelink.errors import StoreUnavailable
from carelink.models.connection import Connection, InviteToken
from carelink.models.user import User
from carelink.routes.common import ensure_database_ready, normalize_notes
from carelink.services import connections
from carelink.services.rate_limiter import rate_limit

router = APIRouter(prefix='/connections', tags=['connections'])

logger = logging.getLogger(__name__)


class ConnectionRequestBody(BaseModel):
    doctor_id: int
    message: str | None = None

    @field_validator('message')
    @classmethod
    def validate_message(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class RespondToConnectionBody(BaseModel):
    response: str
    notes: str | None = None

    @field_validator('response')
    @classmethod
    def validate_response(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {'accepted', 'rejected'}:
            raise ValueError("Response must be 'accepted' or 'rejected'.")
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class CreateInviteBody(BaseModel):
    patient_email: str | None = None
    message: str | None = None

    @field_validator('patient_email')
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip().lower()
        if not normalized:
            return None

        if '@' not in normalized or normalized.startswith('@') or normalized.endswith('@'):
            raise ValueError('Enter a valid email address.')

        return normalized

    @field_validator('message')
    @classmethod
    def validate_message(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class ConnectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    status: str
    initiated_by: str
    message: str | None = None
    notes: str | None = None
    requested_at: datetime
    responded_at: datetime | None = None
    linked_at: datetime | None = None


class ConnectionStatusResponse(BaseModel):
    status: str
    connection: ConnectionResponse | None = None
    pending_requests: list[ConnectionResponse]


class InviteResponse(BaseModel):
    id: int
    doctor_id: int
    token: str
    invite_link: str
    patient_email: str | None = None
    message: str | None = None
    status: str
    expires_at: datetime
    created_at: datetime

    @classmethod
    def from_invite(cls, invite: InviteToken) -> 'InviteResponse':
        return cls(
            id=invite.id,
            doctor_id=invite.doctor_id,
            token=invite.invite_token,
            invite_link=connections.invite_link(invite.invite_token),
            patient_email=invite.patient_email,
            message=invite.message,
            status=invite.status,
            expires_at=invite.expires_at,
            created_at=invite.created_at,
        )


class InvitePreviewResponse(BaseModel):
    doctor_id: int
    doctor_name: str
    message: str | None = None
    expires_at: datetime


def to_response(connection: Connection) -> ConnectionResponse:
    return ConnectionResponse.model_validate(connection)


@router.post(
    '/requests',
    response_model=ConnectionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit('connection_request', CONNECTION_REQUEST_RATE_LIMIT, by_user=True))],
)
def request_connection(
    data: ConnectionRequestBody,
    current_user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        connection = connections.request_connection(db, current_user, data.doctor_id, message=data.message)
        return to_response(connection)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Connection request failed for patient %s', current_user.id)
        raise StoreUnavailable() from exc


@router.get('/requests', response_model=list[ConnectionResponse])
def list_pending_requests(
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return [to_response(record) for record in connections.list_pending_requests(db, current_user)]
    except SQLAlchemyError as exc:
        logger.exception('Listing connection requests failed for doctor %s', current_user.id)
        raise StoreUnavailable() from exc


@router.post('/requests/{request_id}/respond', response_model=ConnectionResponse)
def respond_to_connection(
    request_id: int,
    data: RespondToConnectionBody,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        connection = connections.respond_to_connection(
            db,
            current_user,
            request_id,
            data.response,
            notes=data.notes,
        )
        return to_response(connection)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Responding to connection request %s failed', request_id)
        raise StoreUnavailable() from exc


@router.get('/status', response_model=ConnectionStatusResponse)
def get_connection_status(
    current_user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        overview = connections.get_connection_status(db, current_user)
    except SQLAlchemyError as exc:
        logger.exception('Connection status lookup failed for patient %s', current_user.id)
        raise StoreUnavailable() from exc

    return ConnectionStatusResponse(
        status=overview.state.value,
        connection=to_response(overview.active) if overview.active is not None else None,
        pending_requests=[to_response(record) for record in overview.pending],
    )


@router.get('/patients', response_model=list[ConnectionResponse])
def list_connected_patients(
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return [to_response(record) for record in connections.list_patients(db, current_user)]
    except SQLAlchemyError as exc:
        logger.exception('Listing patients failed for doctor %s', current_user.id)
        raise StoreUnavailable() from exc


@router.post('/invites', response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
def create_invite(
    data: CreateInviteBody,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        invite = connections.create_invite(
            db,
            current_user,
            patient_email=data.patient_email,
            message=data.message,
        )
        return InviteResponse.from_invite(invite)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Creating invite failed for doctor %s', current_user.id)
        raise StoreUnavailable() from exc


@router.get(
    '/invites/{token}',
    response_model=InvitePreviewResponse,
    dependencies=[Depends(rate_limit('invite_preview', INVITE_REDEEM_RATE_LIMIT))],
)
def preview_invite(token: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        invite = connections.get_invite(db, token)
        doctor = db.get(User, invite.doctor_id)
    except SQLAlchemyError as exc:
        logger.exception('Invite lookup failed')
        raise StoreUnavailable() from exc

    return InvitePreviewResponse(
        doctor_id=invite.doctor_id,
        doctor_name=doctor.display_name if doctor is not None else '',
        message=invite.message,
        expires_at=invite.expires_at,
    )


@router.post(
    '/invites/{token}/redeem',
    response_model=ConnectionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit('invite_redeem', INVITE_REDEEM_RATE_LIMIT, by_user=True))],
)
def redeem_invite(
    token: str,
    current_user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        connection = connections.redeem_invite(db, current_user, token)
        return to_response(connection)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Invite redemption failed for patient %s', current_user.id)
        raise StoreUnavailable() from exc
