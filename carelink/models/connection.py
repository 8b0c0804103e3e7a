"""Patient-doctor connection and invite token model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from carelink.database import Base


class Connection(Base):
    """The care relationship between a patient and a doctor."""
    __tablename__ = "patient_doctor_links"
    __table_args__ = (
        # A patient has at most one active doctor.
        Index(
            "uq_links_patient_active",
            "patient_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index(
            "uq_links_patient_doctor_pending",
            "patient_id",
            "doctor_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String, nullable=False, default="pending")
    initiated_by = Column(String, nullable=False, default="patient")
    message = Column(Text)
    notes = Column(Text)
    requested_at = Column(DateTime, nullable=False, default=datetime.now)
    responded_at = Column(DateTime)
    linked_at = Column(DateTime)


class InviteToken(Base):
    """Single-use capability letting a patient connect to a doctor directly."""
    __tablename__ = "doctor_invites"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    invite_token = Column(String(64), unique=True, nullable=False, index=True)
    patient_email = Column(String)
    message = Column(Text)
    status = Column(String, nullable=False, default="active")
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
