"""Rate limiter hit log model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from carelink.database import Base


class RateLimitHit(Base):
    """One accepted call for an (identifier, action type) key."""
    __tablename__ = "rate_limit_hits"

    id = Column(Integer, primary_key=True)
    identifier = Column(String, nullable=False)
    action_type = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
