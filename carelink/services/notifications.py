"""Best-effort outbound notifications.

Delivery never blocks or rolls back the change that triggered it: every
failure is logged and swallowed.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from carelink.core import config

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class LogNotifier:
    """Used when no SMTP server is configured."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info('Notification to %s: %s', to, subject)


class SmtpNotifier:
    def __init__(
        self,
        host: str,
        port: int,
        username: str = '',
        password: str = '',
        use_tls: bool = True,
        from_address: str = config.EMAIL_FROM_ADDRESS,
        timeout: float = config.SMTP_TIMEOUT_SECONDS,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message['From'] = self.from_address
        message['To'] = to
        message['Subject'] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(message)


_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _notifier

    if _notifier is None:
        if config.SMTP_HOST:
            _notifier = SmtpNotifier(
                host=config.SMTP_HOST,
                port=config.SMTP_PORT,
                username=config.SMTP_USERNAME,
                password=config.SMTP_PASSWORD,
                use_tls=config.SMTP_USE_TLS,
            )
        else:
            _notifier = LogNotifier()
    return _notifier


def set_notifier(notifier: Notifier | None) -> None:
    global _notifier
    _notifier = notifier


def notify(to: str | None, subject: str, body: str) -> bool:
    """Send one notification; returns False instead of raising on failure."""
    if not to:
        return False
    try:
        get_notifier().send(to, subject, body)
        return True
    except Exception:
        logger.exception('Notification "%s" to %s failed', subject, to)
        return False


def notify_appointment_event(appointment, patient, doctor, event: str) -> None:
    when = f'{appointment.appointment_date.isoformat()} {appointment.start_time.strftime("%H:%M")}'
    if event == 'requested':
        notify(doctor.email, 'New appointment request',
               f'{patient.display_name} requested a {appointment.visit_type} visit on {when}.')
    elif event in ('confirmed', 'rescheduled', 'rejected'):
        notify(patient.email, f'Appointment {event}',
               f'Dr. {doctor.display_name} {event} your appointment ({when}).')
    elif event == 'cancelled_by_patient':
        notify(doctor.email, 'Appointment cancelled',
               f'{patient.display_name} cancelled the appointment on {when}.')
    elif event == 'cancelled_by_doctor':
        notify(patient.email, 'Appointment cancelled',
               f'Dr. {doctor.display_name} cancelled your appointment on {when}.')


def notify_connection_event(patient, doctor, event: str) -> None:
    if event == 'requested':
        notify(doctor.email, 'New patient connection request',
               f'{patient.display_name} asked to be connected with you.')
    elif event in ('accepted', 'rejected'):
        notify(patient.email, f'Connection request {event}',
               f'Dr. {doctor.display_name} {event} your connection request.')
    elif event == 'invite_redeemed':
        notify(doctor.email, 'Invite accepted',
               f'{patient.display_name} used your invite and is now connected with you.')


def notify_invite_created(invite, doctor, invite_link: str) -> None:
    notify(invite.patient_email, f'Dr. {doctor.display_name} invited you to connect',
           f'{invite.message or "You have been invited to connect."}\n\n{invite_link}')
