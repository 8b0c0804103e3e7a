"""Appointment lifecycle.

requested -> confirmed | rescheduled | rejected | cancelled_by_patient
confirmed, rescheduled -> cancelled_by_patient | cancelled_by_doctor

A doctor turns down a pending request by rejecting it, never by cancelling it.
"""

from datetime import datetime
from enum import Enum

from carelink.errors import AuthorizationFailed, InvariantViolation
from carelink.models.user import DOCTOR_ROLE, PATIENT_ROLE
from carelink.scheduling.intervals import combine


class AppointmentStatus(str, Enum):
    REQUESTED = 'requested'
    CONFIRMED = 'confirmed'
    RESCHEDULED = 'rescheduled'
    REJECTED = 'rejected'
    CANCELLED_BY_PATIENT = 'cancelled_by_patient'
    CANCELLED_BY_DOCTOR = 'cancelled_by_doctor'


EXPIRED_DISPLAY_STATUS = 'expired'

ACTIVE_STATUSES = frozenset({
    AppointmentStatus.REQUESTED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULED,
})
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.REJECTED,
    AppointmentStatus.CANCELLED_BY_PATIENT,
    AppointmentStatus.CANCELLED_BY_DOCTOR,
})


class AppointmentAction(str, Enum):
    CONFIRM = 'confirm'
    RESCHEDULE = 'reschedule'
    REJECT = 'reject'
    PATIENT_CANCEL = 'patient_cancel'
    DOCTOR_CANCEL = 'doctor_cancel'


ACTION_ROLES = {
    AppointmentAction.CONFIRM: DOCTOR_ROLE,
    AppointmentAction.RESCHEDULE: DOCTOR_ROLE,
    AppointmentAction.REJECT: DOCTOR_ROLE,
    AppointmentAction.PATIENT_CANCEL: PATIENT_ROLE,
    AppointmentAction.DOCTOR_CANCEL: DOCTOR_ROLE,
}

TRANSITIONS = {
    (AppointmentStatus.REQUESTED, AppointmentAction.CONFIRM): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.REQUESTED, AppointmentAction.RESCHEDULE): AppointmentStatus.RESCHEDULED,
    (AppointmentStatus.REQUESTED, AppointmentAction.REJECT): AppointmentStatus.REJECTED,
    (AppointmentStatus.REQUESTED, AppointmentAction.PATIENT_CANCEL): AppointmentStatus.CANCELLED_BY_PATIENT,
    (AppointmentStatus.CONFIRMED, AppointmentAction.PATIENT_CANCEL): AppointmentStatus.CANCELLED_BY_PATIENT,
    (AppointmentStatus.CONFIRMED, AppointmentAction.DOCTOR_CANCEL): AppointmentStatus.CANCELLED_BY_DOCTOR,
    (AppointmentStatus.RESCHEDULED, AppointmentAction.PATIENT_CANCEL): AppointmentStatus.CANCELLED_BY_PATIENT,
    (AppointmentStatus.RESCHEDULED, AppointmentAction.DOCTOR_CANCEL): AppointmentStatus.CANCELLED_BY_DOCTOR,
}


def cancel_action_for(role: str) -> AppointmentAction:
    if role == DOCTOR_ROLE:
        return AppointmentAction.DOCTOR_CANCEL
    if role == PATIENT_ROLE:
        return AppointmentAction.PATIENT_CANCEL
    raise AuthorizationFailed()


def next_status(current: str | AppointmentStatus, action: AppointmentAction, role: str) -> AppointmentStatus:
    """Resolve a transition or raise.

    Role mismatches are authorization errors; an action that is not legal
    from ``current`` is an invariant violation and leaves the record as is.
    """
    if ACTION_ROLES[action] != role:
        raise AuthorizationFailed()

    current = AppointmentStatus(current)
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        if current in TERMINAL_STATUSES:
            raise InvariantViolation(
                f'Appointment is already {current.value} and can no longer change.'
            ) from None
        raise InvariantViolation(
            f'Cannot {action.value.replace("_", " ")} an appointment that is {current.value}.'
        ) from None


def display_status(appointment, now: datetime) -> str:
    """Status shown to users; a past confirmed visit reads as ``expired``.

    Derived at read time only, the stored status is left untouched.
    """
    current = AppointmentStatus(appointment.status)
    if current in (AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED):
        if combine(appointment.appointment_date, appointment.end_time) < now:
            return EXPIRED_DISPLAY_STATUS
    return current.value
