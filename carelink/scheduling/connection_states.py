"""Patient-doctor connection lifecycle.

unconnected -> pending -> active | rejected

Active and rejected records never change again. After a rejection the
patient may open a fresh pending request; an invite skips straight to active.
"""

from enum import Enum
from typing import Iterable

from carelink.errors import InvariantViolation


class ConnectionStatus(str, Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    REJECTED = 'rejected'


class ConnectionResponse(str, Enum):
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'


class Initiator(str, Enum):
    PATIENT = 'patient'
    DOCTOR = 'doctor'


class PatientConnectionState(str, Enum):
    UNCONNECTED = 'unconnected'
    PENDING = 'pending'
    CONNECTED = 'connected'


TRANSITIONS = {
    (ConnectionStatus.PENDING, ConnectionResponse.ACCEPTED): ConnectionStatus.ACTIVE,
    (ConnectionStatus.PENDING, ConnectionResponse.REJECTED): ConnectionStatus.REJECTED,
}


def next_status(current: str | ConnectionStatus, response: ConnectionResponse) -> ConnectionStatus:
    current = ConnectionStatus(current)
    try:
        return TRANSITIONS[(current, response)]
    except KeyError:
        raise InvariantViolation(f'Connection request is already {current.value}.') from None


def patient_connection_state(statuses: Iterable[str]) -> PatientConnectionState:
    statuses = {ConnectionStatus(status) for status in statuses}
    if ConnectionStatus.ACTIVE in statuses:
        return PatientConnectionState.CONNECTED
    if ConnectionStatus.PENDING in statuses:
        return PatientConnectionState.PENDING
    return PatientConnectionState.UNCONNECTED
