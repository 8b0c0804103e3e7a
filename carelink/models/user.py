"""User model definitions."""

from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import Session
from carelink.database import Base

PATIENT_ROLE = "patient"
DOCTOR_ROLE = "doctor"


class User(Base):
    """Represents an authenticated account (patient or doctor)."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String)
    role = Column(String, nullable=False)  # patient/doctor
    first_name = Column(String)
    last_name = Column(String)

    @property
    def display_name(self) -> str:
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full_name or self.email


def lock_user(db: Session, user_id: int) -> None:
    """Take a write lock scoped to one user until the transaction ends.

    A no-op update rather than SELECT ... FOR UPDATE: it holds the row lock on
    PostgreSQL and the database write lock on SQLite, which ignores FOR UPDATE.
    """
    db.query(User).filter(User.id == user_id).update({User.id: User.id}, synchronize_session=False)
