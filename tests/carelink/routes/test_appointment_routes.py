from datetime import date, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from carelink.routes.appointment_routes import (
    CancelAppointmentRequest,
    CreateAppointmentRequest,
    RespondToAppointmentRequest,
    cancel_appointment,
    check_slot_availability,
    list_available_slots,
    list_my_appointments,
    list_visit_types,
    request_appointment,
    respond_to_appointment,
)

MONDAY = date(2030, 1, 7)


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('carelink.routes.appointment_routes.ensure_database_ready', lambda: None)


def booking(doctor, office, start: time = time(9, 0), end: time = time(9, 30)) -> CreateAppointmentRequest:
    return CreateAppointmentRequest(
        doctor_id=doctor.id,
        office_id=office.id,
        appointment_date=MONDAY,
        start_time=start,
        end_time=end,
        visit_type=' Follow_Up ',
        patient_notes='  Annual check  ',
    )


def test_create_appointment_request_normalizes_fields(doctor, office) -> None:
    request = booking(doctor, office)

    assert request.visit_type.value == 'follow_up'
    assert request.patient_notes == 'Annual check'


def test_create_appointment_request_rejects_unknown_visit_type() -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(
            doctor_id=1, office_id=1, appointment_date=MONDAY,
            start_time=time(9, 0), end_time=time(9, 30), visit_type='checkup',
        )


def test_notes_longer_than_the_limit_are_rejected() -> None:
    with pytest.raises(ValidationError):
        CancelAppointmentRequest(reason='x' * 1001)


def test_respond_request_rejects_unknown_action() -> None:
    assert RespondToAppointmentRequest(action=' Confirm ').action == 'confirm'

    with pytest.raises(ValidationError):
        RespondToAppointmentRequest(action='postpone')


def test_list_visit_types_reports_durations() -> None:
    options = {option.visit_type: option.duration_minutes for option in list_visit_types()}

    assert options == {'first_visit': 60, 'follow_up': 30, 'urgent': 20, 'routine': 30}


def test_booking_flow_through_routes(db, patient, doctor, office, monday_hours) -> None:
    slots = list_available_slots(
        doctor_id=doctor.id, office_id=office.id, slot_date=MONDAY, visit_type='follow_up',
        include_unavailable=False, current_user=patient, db=db,
    )
    assert [slot.start_time for slot in slots][:2] == [time(9, 0), time(9, 30)]
    assert all(slot.is_available for slot in slots)

    created = request_appointment(data=booking(doctor, office), current_user=patient, db=db)
    assert created.status == 'requested'
    assert created.display_status == 'requested'

    availability = check_slot_availability(
        doctor_id=doctor.id, office_id=office.id, slot_date=MONDAY,
        start_time=time(9, 0), end_time=time(9, 30), current_user=patient, db=db,
    )
    assert availability.available is False
    assert availability.reason == 'booked'

    confirmed = respond_to_appointment(
        appointment_id=created.id,
        data=RespondToAppointmentRequest(action='confirm'),
        current_user=doctor,
        db=db,
    )
    assert confirmed.status == 'confirmed'
    assert confirmed.confirmed_office_id == office.id

    cancelled = cancel_appointment(
        appointment_id=created.id,
        data=CancelAppointmentRequest(reason=None),
        current_user=patient,
        db=db,
    )
    assert cancelled.status == 'cancelled_by_patient'
    assert cancelled.patient_notes == 'Appointment cancelled'

    listed = list_my_appointments(
        status_filter=None, appointment_date=None, date_range='all', current_user=doctor, db=db,
    )
    assert [record.id for record in listed] == [created.id]


def test_double_booking_returns_conflict(db, patient, other_patient, doctor, office, monday_hours) -> None:
    request_appointment(data=booking(doctor, office), current_user=patient, db=db)

    with pytest.raises(HTTPException) as exception_info:
        request_appointment(data=booking(doctor, office), current_user=other_patient, db=db)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is already booked.'


def test_store_errors_become_service_unavailable(db, patient, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('database is down'))

    monkeypatch.setattr('carelink.services.appointments.list_appointments', broken)

    with pytest.raises(HTTPException) as exception_info:
        list_my_appointments(status_filter=None, appointment_date=None, date_range='all', current_user=patient, db=db)

    assert exception_info.value.status_code == 503
    assert exception_info.value.detail == 'Database unavailable. Please retry shortly.'
