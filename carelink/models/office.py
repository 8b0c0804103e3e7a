"""Doctor office and weekly schedule model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Time, text
from carelink.database import Base


class Office(Base):
    """A physical location owned by one doctor. Deactivated, never deleted."""
    __tablename__ = "doctor_offices"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    city = Column(String, nullable=False)
    postal_code = Column(String)
    phone = Column(String)
    notes = Column(String)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class WeeklySchedule(Base):
    """Recurring office hours for one weekday (0 = Sunday ... 6 = Saturday)."""
    __tablename__ = "doctor_office_schedules"
    __table_args__ = (
        Index(
            "uq_schedule_active_office_day",
            "office_id",
            "day_of_week",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    office_id = Column(Integer, ForeignKey("doctor_offices.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
