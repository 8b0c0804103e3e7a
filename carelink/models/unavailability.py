"""Doctor unavailability (vacation, emergencies) model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from carelink.database import Base


class Unavailability(Base):
    """A period that overrides the weekly schedule.

    ``office_id`` is null when the period applies to every office of the doctor.
    """
    __tablename__ = "doctor_unavailability"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    office_id = Column(Integer, ForeignKey("doctor_offices.id"), nullable=True)
    start_datetime = Column(DateTime, nullable=False)
    end_datetime = Column(DateTime, nullable=False)
    reason = Column(String)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
