"""Connection service: patient requests, doctor responses and invite tokens.

The single-active-doctor rule is checked inside the write transaction after
taking a write lock on the patient row. A partial unique index backs it, so two
racing writes cannot both leave the patient with an active doctor. Invite
redemption claims the token with a conditional update in the same transaction
that creates the connection.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import NamedTuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carelink.core.config import APP_URL, INVITE_EXPIRY_DAYS
from carelink.errors import InvariantViolation, ResourceNotFound, ValidationFailed
from carelink.models.connection import Connection, InviteToken
from carelink.models.user import DOCTOR_ROLE, User, lock_user
from carelink.scheduling.connection_states import (
    ConnectionResponse,
    ConnectionStatus,
    Initiator,
    PatientConnectionState,
    next_status,
    patient_connection_state,
)
from carelink.services import notifications

logger = logging.getLogger(__name__)

INVITE_ACTIVE = 'active'
INVITE_USED = 'used'
INVITE_CONNECTION_NOTE = 'Connected through a direct invite from the doctor'
ALREADY_CONNECTED_MESSAGE = (
    'You already have a connected doctor. A patient can be connected to only one doctor at a time.'
)


class ConnectionOverview(NamedTuple):
    state: PatientConnectionState
    active: Connection | None
    pending: list[Connection]


def generate_invite_token() -> str:
    return secrets.token_urlsafe(32)


def invite_link(token: str) -> str:
    return f'{APP_URL.rstrip("/")}/invite/{token}'


def _get_doctor(db: Session, doctor_id: int) -> User:
    doctor = db.query(User).filter(User.id == doctor_id, User.role == DOCTOR_ROLE).first()
    if doctor is None:
        raise ResourceNotFound('Doctor not found.')
    return doctor


def _active_connection(db: Session, patient_id: int) -> Connection | None:
    return db.query(Connection).filter(
        Connection.patient_id == patient_id,
        Connection.status == ConnectionStatus.ACTIVE.value,
    ).first()


def _pending_request(db: Session, patient_id: int, doctor_id: int) -> Connection | None:
    return db.query(Connection).filter(
        Connection.patient_id == patient_id,
        Connection.doctor_id == doctor_id,
        Connection.status == ConnectionStatus.PENDING.value,
    ).first()


def request_connection(db: Session, patient: User, doctor_id: int, message: str | None = None) -> Connection:
    doctor = _get_doctor(db, doctor_id)

    try:
        lock_user(db, patient.id)
        if _active_connection(db, patient.id) is not None:
            raise InvariantViolation(ALREADY_CONNECTED_MESSAGE)

        if _pending_request(db, patient.id, doctor.id) is not None:
            raise InvariantViolation('You already have a pending request with this doctor.')

        connection = Connection(
            patient_id=patient.id,
            doctor_id=doctor.id,
            status=ConnectionStatus.PENDING.value,
            initiated_by=Initiator.PATIENT.value,
            message=message,
            requested_at=datetime.now(),
        )
        db.add(connection)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvariantViolation('A connection request for this doctor already exists.') from exc
    except InvariantViolation:
        db.rollback()
        raise

    db.refresh(connection)
    logger.info('Patient %s requested connection %s with doctor %s', patient.id, connection.id, doctor.id)
    notifications.notify_connection_event(patient, doctor, 'requested')
    return connection


def respond_to_connection(
    db: Session,
    doctor: User,
    request_id: int,
    response: str | ConnectionResponse,
    notes: str | None = None,
) -> Connection:
    try:
        response = ConnectionResponse(response)
    except ValueError as exc:
        raise ValidationFailed("Response must be 'accepted' or 'rejected'.") from exc

    connection = db.query(Connection).filter(
        Connection.id == request_id,
        Connection.doctor_id == doctor.id,
    ).first()
    if connection is None:
        raise ResourceNotFound('Connection request not found.')

    current = ConnectionStatus(connection.status)
    target = next_status(current, response)
    now = datetime.now()
    values = {
        Connection.status: target.value,
        Connection.responded_at: now,
    }
    if notes is not None:
        values[Connection.notes] = notes

    try:
        if target == ConnectionStatus.ACTIVE:
            lock_user(db, connection.patient_id)
            if _active_connection(db, connection.patient_id) is not None:
                raise InvariantViolation('This patient is already connected to a doctor.')
            values[Connection.linked_at] = now

        updated = db.query(Connection).filter(
            Connection.id == connection.id,
            Connection.status == current.value,
        ).update(values, synchronize_session=False)
        if updated != 1:
            raise InvariantViolation('This request was already answered. Please refresh.')
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvariantViolation('This patient is already connected to a doctor.') from exc
    except InvariantViolation:
        db.rollback()
        raise

    db.refresh(connection)
    logger.info('Doctor %s %s connection request %s', doctor.id, response.value, connection.id)
    patient = db.get(User, connection.patient_id)
    if patient is not None:
        notifications.notify_connection_event(patient, doctor, response.value)
    return connection


def create_invite(
    db: Session,
    doctor: User,
    patient_email: str | None = None,
    message: str | None = None,
    now: datetime | None = None,
) -> InviteToken:
    now = now or datetime.now()
    invite = InviteToken(
        doctor_id=doctor.id,
        invite_token=generate_invite_token(),
        patient_email=patient_email,
        message=message,
        status=INVITE_ACTIVE,
        expires_at=now + timedelta(days=INVITE_EXPIRY_DAYS),
        created_at=now,
    )
    db.add(invite)
    db.commit()
    db.refresh(invite)

    logger.info('Doctor %s created invite %s', doctor.id, invite.id)
    if patient_email:
        notifications.notify_invite_created(invite, doctor, invite_link(invite.invite_token))
    return invite


def _check_invite_usable(invite: InviteToken | None, now: datetime) -> InviteToken:
    if invite is None:
        raise ResourceNotFound('Invite not found.')
    if invite.status == INVITE_USED:
        raise InvariantViolation('This invite has already been used.')
    if invite.expires_at < now:
        raise InvariantViolation('This invite has expired.')
    return invite


def get_invite(db: Session, token: str, now: datetime | None = None) -> InviteToken:
    """Preview an invite before redeeming it."""
    invite = db.query(InviteToken).filter(InviteToken.invite_token == token).first()
    return _check_invite_usable(invite, now or datetime.now())


def redeem_invite(db: Session, patient: User, token: str, now: datetime | None = None) -> Connection:
    now = now or datetime.now()
    invite = _check_invite_usable(
        db.query(InviteToken).filter(InviteToken.invite_token == token).first(),
        now,
    )

    try:
        lock_user(db, patient.id)
        existing = _active_connection(db, patient.id)
        if existing is not None:
            if existing.doctor_id == invite.doctor_id:
                raise InvariantViolation('You are already connected to this doctor.')
            raise InvariantViolation(ALREADY_CONNECTED_MESSAGE)

        claimed = db.query(InviteToken).filter(
            InviteToken.id == invite.id,
            InviteToken.status == INVITE_ACTIVE,
            InviteToken.expires_at >= now,
        ).update({
            InviteToken.status: INVITE_USED,
            InviteToken.used_at: now,
            InviteToken.patient_id: patient.id,
        }, synchronize_session=False)
        if claimed != 1:
            raise InvariantViolation('This invite has already been used.')

        connection = Connection(
            patient_id=patient.id,
            doctor_id=invite.doctor_id,
            status=ConnectionStatus.ACTIVE.value,
            initiated_by=Initiator.DOCTOR.value,
            notes=INVITE_CONNECTION_NOTE,
            requested_at=now,
            responded_at=now,
            linked_at=now,
        )
        db.add(connection)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvariantViolation(ALREADY_CONNECTED_MESSAGE) from exc
    except InvariantViolation:
        db.rollback()
        raise

    db.refresh(connection)
    logger.info('Patient %s redeemed invite %s from doctor %s', patient.id, invite.id, invite.doctor_id)
    doctor = db.get(User, invite.doctor_id)
    if doctor is not None:
        notifications.notify_connection_event(patient, doctor, 'invite_redeemed')
    return connection


def get_connection_status(db: Session, patient: User) -> ConnectionOverview:
    connections = db.query(Connection).filter(
        Connection.patient_id == patient.id,
        Connection.status.in_([ConnectionStatus.ACTIVE.value, ConnectionStatus.PENDING.value]),
    ).order_by(Connection.requested_at.desc()).all()

    state = patient_connection_state(connection.status for connection in connections)
    active = next((c for c in connections if c.status == ConnectionStatus.ACTIVE.value), None)
    pending = [c for c in connections if c.status == ConnectionStatus.PENDING.value]
    return ConnectionOverview(state, active, pending)


def list_pending_requests(db: Session, doctor: User) -> list[Connection]:
    return db.query(Connection).filter(
        Connection.doctor_id == doctor.id,
        Connection.status == ConnectionStatus.PENDING.value,
    ).order_by(Connection.requested_at.desc()).all()


def list_patients(db: Session, doctor: User) -> list[Connection]:
    return db.query(Connection).filter(
        Connection.doctor_id == doctor.id,
        Connection.status == ConnectionStatus.ACTIVE.value,
    ).order_by(Connection.linked_at.desc()).all()
