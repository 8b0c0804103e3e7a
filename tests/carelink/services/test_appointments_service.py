from datetime import date, datetime, time

import pytest
from fastapi import HTTPException

from carelink.models.appointment import Appointment
from carelink.models.office import Office, WeeklySchedule
from carelink.models.unavailability import Unavailability
from carelink.scheduling.conflicts import BOOKABLE
from carelink.services import appointments

MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, 8, 0)


def request(db, patient, doctor, office, start: time, end: time, notes: str | None = None, now: datetime = NOW):
    return appointments.request_appointment(
        db,
        patient,
        doctor_id=doctor.id,
        office_id=office.id,
        on_date=MONDAY,
        start_time=start,
        end_time=end,
        visit_type='follow_up',
        notes=notes,
        now=now,
    )


def test_compute_available_slots_hides_booked_times(db, patient, doctor, office, monday_hours) -> None:
    request(db, patient, doctor, office, time(10, 0), time(10, 30))

    slots = appointments.compute_available_slots(db, doctor.id, office.id, MONDAY, 'follow_up', now=NOW)

    assert [slot.start.time() for slot in slots] == [time(9, 0), time(9, 30), time(10, 30), time(11, 0), time(11, 30)]


def test_compute_available_slots_can_include_unavailable(db, patient, doctor, office, monday_hours) -> None:
    request(db, patient, doctor, office, time(10, 0), time(10, 30))

    slots = appointments.compute_available_slots(
        db, doctor.id, office.id, MONDAY, 'follow_up', now=NOW, include_unavailable=True,
    )

    assert len(slots) == 6
    assert [slot.status.value for slot in slots if not slot.is_bookable] == ['booked']


def test_compute_available_slots_without_hours_is_empty(db, doctor, office) -> None:
    assert appointments.compute_available_slots(db, doctor.id, office.id, MONDAY, now=NOW) == []


def test_compute_available_slots_rejects_past_dates_and_bad_visit_types(db, doctor, office, monday_hours) -> None:
    with pytest.raises(HTTPException) as exception_info:
        appointments.compute_available_slots(db, doctor.id, office.id, date(2029, 12, 31), now=NOW)
    assert exception_info.value.detail == 'The appointment date must not be in the past.'

    with pytest.raises(HTTPException) as exception_info:
        appointments.compute_available_slots(db, doctor.id, office.id, MONDAY, 'checkup', now=NOW)
    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Invalid visit type.'


def test_compute_available_slots_rejects_inactive_office(db, doctor, office, monday_hours) -> None:
    office.is_active = False
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        appointments.compute_available_slots(db, doctor.id, office.id, MONDAY, now=NOW)

    assert exception_info.value.status_code == 400


def test_request_appointment_creates_requested_record_and_notifies(
    db, patient, doctor, office, monday_hours, sent_notifications,
) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30), notes='Knee pain')

    assert appointment.status == 'requested'
    assert appointment.requested_office_id == office.id
    assert appointment.confirmed_office_id is None
    assert appointment.patient_notes == 'Knee pain'
    assert sent_notifications[0][0] == 'doctor@example.com'


def test_request_appointment_prevents_double_booking(db, patient, other_patient, doctor, office, monday_hours) -> None:
    request(db, patient, doctor, office, time(10, 0), time(10, 30))

    with pytest.raises(HTTPException) as exception_info:
        request(db, other_patient, doctor, office, time(10, 0), time(10, 30))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is already booked.'

    with pytest.raises(HTTPException):
        request(db, other_patient, doctor, office, time(9, 45), time(10, 15))

    assert db.query(Appointment).count() == 1


def test_request_appointment_allows_touching_slots(db, patient, other_patient, doctor, office, monday_hours) -> None:
    request(db, patient, doctor, office, time(10, 0), time(10, 30))

    neighbour = request(db, other_patient, doctor, office, time(10, 30), time(11, 0))

    assert neighbour.status == 'requested'


def test_request_appointment_respects_unavailability(db, patient, doctor, office, monday_hours) -> None:
    db.add(Unavailability(
        doctor_id=doctor.id,
        start_datetime=datetime(2030, 1, 7, 11, 0),
        end_datetime=datetime(2030, 1, 7, 12, 0),
    ))
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        request(db, patient, doctor, office, time(11, 0), time(11, 30))

    assert exception_info.value.detail == 'The doctor is unavailable at this time.'


@pytest.mark.parametrize(
    ('start', 'end', 'detail'),
    [
        (time(8, 30), time(9, 0), 'The requested time is outside the office hours.'),
        (time(11, 45), time(12, 15), 'The requested time is outside the office hours.'),
        (time(10, 0), time(10, 0), 'The appointment must end after it starts.'),
    ],
)
def test_request_appointment_validates_times(db, patient, doctor, office, monday_hours, start, end, detail) -> None:
    with pytest.raises(HTTPException) as exception_info:
        request(db, patient, doctor, office, start, end)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == detail


def test_request_appointment_enforces_lead_time(db, patient, doctor, office, monday_hours) -> None:
    with pytest.raises(HTTPException) as exception_info:
        request(db, patient, doctor, office, time(9, 30), time(10, 0), now=datetime(2030, 1, 7, 9, 0))

    assert exception_info.value.detail == 'Appointments must be requested at least 60 minutes in advance.'


def test_request_appointment_rejects_office_of_another_doctor(db, patient, doctor, other_doctor, monday_hours) -> None:
    foreign = Office(doctor_id=other_doctor.id, name='Elsewhere', address='9 Far Lane', city='Shelbyville')
    db.add(foreign)
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        request(db, patient, doctor, foreign, time(9, 0), time(9, 30))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'The office does not belong to this doctor or is no longer active.'


def test_request_appointment_requires_an_existing_doctor(db, patient, office, monday_hours) -> None:
    with pytest.raises(HTTPException) as exception_info:
        appointments.request_appointment(
            db, patient, doctor_id=patient.id, office_id=office.id, on_date=MONDAY,
            start_time=time(9, 0), end_time=time(9, 30), now=NOW,
        )

    assert exception_info.value.status_code == 404


def test_confirm_sets_confirmed_office(db, patient, doctor, office, monday_hours, sent_notifications) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))

    confirmed = appointments.respond_to_appointment(db, doctor, appointment.id, 'confirm', now=NOW)

    assert confirmed.status == 'confirmed'
    assert confirmed.confirmed_office_id == office.id
    assert sent_notifications[-1] == (
        'patient@example.com',
        'Appointment confirmed',
        'Dr. Dana Cruz confirmed your appointment (2030-01-07 09:00).',
    )


def test_confirm_revalidates_against_new_unavailability(db, patient, doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))
    db.add(Unavailability(
        doctor_id=doctor.id,
        office_id=office.id,
        start_datetime=datetime(2030, 1, 7, 8, 0),
        end_datetime=datetime(2030, 1, 7, 10, 0),
    ))
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        appointments.respond_to_appointment(db, doctor, appointment.id, 'confirm', now=NOW)

    assert exception_info.value.status_code == 409
    db.refresh(appointment)
    assert appointment.status == 'requested'


def test_reschedule_moves_the_appointment(db, patient, doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))

    moved = appointments.respond_to_appointment(
        db, doctor, appointment.id, 'reschedule',
        new_date=MONDAY, new_start_time=time(9, 15), doctor_notes='Running late', now=NOW,
    )

    assert moved.status == 'rescheduled'
    assert moved.start_time == time(9, 15)
    assert moved.end_time == time(9, 45)
    assert moved.doctor_notes == 'Running late'


def test_reschedule_into_a_booked_slot_is_rejected(db, patient, other_patient, doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))
    request(db, other_patient, doctor, office, time(11, 0), time(11, 30))

    with pytest.raises(HTTPException) as exception_info:
        appointments.respond_to_appointment(
            db, doctor, appointment.id, 'reschedule',
            new_date=MONDAY, new_start_time=time(11, 0), new_end_time=time(11, 30), now=NOW,
        )

    assert exception_info.value.detail == 'This time is already booked.'
    db.refresh(appointment)
    assert appointment.status == 'requested'
    assert appointment.start_time == time(9, 0)


def test_reschedule_requires_a_new_time(db, patient, doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))

    with pytest.raises(HTTPException) as exception_info:
        appointments.respond_to_appointment(db, doctor, appointment.id, 'reschedule', now=NOW)

    assert exception_info.value.detail == 'A new date and start time are required to reschedule.'


def test_rejected_appointment_cannot_be_confirmed_or_cancelled(db, patient, doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))
    appointments.respond_to_appointment(db, doctor, appointment.id, 'reject', now=NOW)

    with pytest.raises(HTTPException) as exception_info:
        appointments.respond_to_appointment(db, doctor, appointment.id, 'confirm', now=NOW)
    assert exception_info.value.status_code == 409

    with pytest.raises(HTTPException) as exception_info:
        appointments.cancel_appointment(db, patient, appointment.id)
    assert exception_info.value.detail == 'Appointment is already rejected and can no longer change.'


def test_rejection_frees_the_slot(db, patient, other_patient, doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))
    appointments.respond_to_appointment(db, doctor, appointment.id, 'reject', now=NOW)

    again = request(db, other_patient, doctor, office, time(9, 0), time(9, 30))

    assert again.status == 'requested'


def test_other_doctor_cannot_see_the_appointment(db, patient, doctor, other_doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))

    with pytest.raises(HTTPException) as exception_info:
        appointments.respond_to_appointment(db, other_doctor, appointment.id, 'confirm', now=NOW)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Appointment not found.'


def test_patient_cancels_with_default_reason(db, patient, doctor, office, monday_hours, sent_notifications) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))

    cancelled = appointments.cancel_appointment(db, patient, appointment.id)

    assert cancelled.status == 'cancelled_by_patient'
    assert cancelled.patient_notes == 'Appointment cancelled'
    assert sent_notifications[-1][1] == 'Appointment cancelled'


def test_doctor_cancels_confirmed_appointment(db, patient, doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))
    appointments.respond_to_appointment(db, doctor, appointment.id, 'confirm', now=NOW)

    cancelled = appointments.cancel_appointment(db, doctor, appointment.id, reason='Clinic closed')

    assert cancelled.status == 'cancelled_by_doctor'
    assert cancelled.doctor_notes == 'Clinic closed'

    with pytest.raises(HTTPException) as exception_info:
        appointments.cancel_appointment(db, patient, appointment.id)
    assert exception_info.value.status_code == 409


def test_doctor_cannot_cancel_a_pending_request(db, patient, doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))

    with pytest.raises(HTTPException) as exception_info:
        appointments.cancel_appointment(db, doctor, appointment.id)

    assert exception_info.value.status_code == 409


def test_stranger_cannot_cancel(db, patient, other_patient, doctor, office, monday_hours) -> None:
    appointment = request(db, patient, doctor, office, time(9, 0), time(9, 30))

    with pytest.raises(HTTPException) as exception_info:
        appointments.cancel_appointment(db, other_patient, appointment.id)

    assert exception_info.value.status_code == 404


def test_list_appointments_filters_by_party_and_range(db, patient, other_patient, doctor, office, monday_hours) -> None:
    first = request(db, patient, doctor, office, time(11, 0), time(11, 30))
    second = request(db, patient, doctor, office, time(9, 0), time(9, 30))
    request(db, other_patient, doctor, office, time(10, 0), time(10, 30))
    appointments.cancel_appointment(db, patient, first.id)

    mine = appointments.list_appointments(db, patient)
    assert [record.id for record in mine] == [second.id, first.id]

    assert len(appointments.list_appointments(db, doctor)) == 3
    assert [r.id for r in appointments.list_appointments(db, patient, status='requested')] == [second.id]
    assert appointments.list_appointments(db, patient, date_range='past', today=date(2030, 1, 8)) != []
    assert appointments.list_appointments(db, patient, date_range='upcoming', today=date(2030, 1, 8)) == []


def test_list_appointments_rejects_unknown_filters(db, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        appointments.list_appointments(db, patient, status='lost')
    assert exception_info.value.detail == 'Invalid appointment status.'

    with pytest.raises(HTTPException):
        appointments.list_appointments(db, patient, date_range='soon')


def test_check_availability_reports_reason(db, patient, doctor, office, monday_hours) -> None:
    request(db, patient, doctor, office, time(9, 0), time(9, 30))

    busy = appointments.check_availability(db, doctor.id, office.id, MONDAY, time(9, 0), time(9, 30))
    free = appointments.check_availability(db, doctor.id, office.id, MONDAY, time(9, 30), time(10, 0))

    assert (busy.bookable, busy.reason) == (False, 'booked')
    assert free.bookable


def test_schedule_on_other_day_does_not_open_monday(db, patient, doctor, office) -> None:
    db.add(WeeklySchedule(
        doctor_id=doctor.id, office_id=office.id, day_of_week=2,
        start_time=time(9, 0), end_time=time(12, 0), slot_duration=30,
    ))
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        request(db, patient, doctor, office, time(9, 0), time(9, 30))

    assert exception_info.value.detail == 'The requested time is outside the office hours.'


def skip_conflict_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(appointments, 'detect_conflict', lambda *args, **kwargs: BOOKABLE)


def test_unique_live_start_blocks_a_request_that_passed_the_check(
    db, patient, other_patient, doctor, office, monday_hours, monkeypatch: pytest.MonkeyPatch,
) -> None:
    request(db, patient, doctor, office, time(9, 0), time(9, 30))
    skip_conflict_check(monkeypatch)

    with pytest.raises(HTTPException) as exception_info:
        request(db, other_patient, doctor, office, time(9, 0), time(9, 30))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is already booked.'
    assert db.query(Appointment).count() == 1
    assert db.query(Appointment).filter(Appointment.patient_id == other_patient.id).count() == 0


def test_unique_live_start_blocks_a_reschedule_that_passed_the_check(
    db, patient, other_patient, doctor, office, monday_hours, monkeypatch: pytest.MonkeyPatch,
) -> None:
    request(db, patient, doctor, office, time(9, 0), time(9, 30))
    moving = request(db, other_patient, doctor, office, time(11, 0), time(11, 30))
    skip_conflict_check(monkeypatch)

    with pytest.raises(HTTPException) as exception_info:
        appointments.respond_to_appointment(
            db, doctor, moving.id, 'reschedule',
            new_date=MONDAY, new_start_time=time(9, 0), now=NOW,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is already booked.'
    db.refresh(moving)
    assert moving.status == 'requested'
    assert moving.start_time == time(11, 0)
    assert db.query(Appointment).count() == 2
