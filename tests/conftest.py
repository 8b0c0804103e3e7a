import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from carelink.database import Base  # noqa: E402
from carelink.models import appointment, connection, rate_limit, unavailability  # noqa: E402,F401
from carelink.models.office import Office, WeeklySchedule  # noqa: E402
from carelink.models.user import DOCTOR_ROLE, PATIENT_ROLE, User  # noqa: E402
from carelink.services import notifications  # noqa: E402


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def sent_notifications():
    notifier = RecordingNotifier()
    notifications.set_notifier(notifier)
    yield notifier.sent
    notifications.set_notifier(None)


@pytest.fixture
def make_user(db):
    def _make_user(email: str, role: str = PATIENT_ROLE, first_name: str | None = None, last_name: str | None = None):
        user = User(email=email, hashed_password='', role=role, first_name=first_name, last_name=last_name)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def patient(make_user):
    return make_user('patient@example.com', first_name='Pat', last_name='Lee')


@pytest.fixture
def other_patient(make_user):
    return make_user('other.patient@example.com')


@pytest.fixture
def doctor(make_user):
    return make_user('doctor@example.com', role=DOCTOR_ROLE, first_name='Dana', last_name='Cruz')


@pytest.fixture
def other_doctor(make_user):
    return make_user('other.doctor@example.com', role=DOCTOR_ROLE, first_name='Sam', last_name='Ito')


@pytest.fixture
def office(db, doctor):
    office = Office(doctor_id=doctor.id, name='Main Street Clinic', address='1 Main Street', city='Springfield')
    db.add(office)
    db.commit()
    db.refresh(office)
    return office


@pytest.fixture
def monday_hours(db, doctor, office):
    """Monday 09:00-12:00 in 30 minute steps."""
    schedule = WeeklySchedule(
        doctor_id=doctor.id,
        office_id=office.id,
        day_of_week=1,
        start_time=time(9, 0),
        end_time=time(12, 0),
        slot_duration=30,
    )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule
