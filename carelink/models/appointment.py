"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Text, Time, text
from carelink.database import Base

ACTIVE_STATUS_SQL = "status IN ('requested', 'confirmed', 'rescheduled')"


class Appointment(Base):
    """A clinical visit between one patient and one doctor.

    Rows are never deleted; cancellation is a terminal status. The partial
    unique index keeps two live appointments of a doctor from sharing a start.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_doctor_active_start",
            "doctor_id",
            "appointment_date",
            "start_time",
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_SQL),
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    requested_office_id = Column(Integer, ForeignKey("doctor_offices.id"), nullable=False)
    confirmed_office_id = Column(Integer, ForeignKey("doctor_offices.id"), nullable=True)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default="requested")
    visit_type = Column(String, nullable=False, default="follow_up")
    patient_notes = Column(Text)
    doctor_notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
