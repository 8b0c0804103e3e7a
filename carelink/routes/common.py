import logging

from sqlalchemy.exc import SQLAlchemyError

from carelink.core.config import MAX_NOTES_LENGTH
from carelink.database import ensure_scheduling_schema
from carelink.errors import StoreUnavailable

logger = logging.getLogger(__name__)


def normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

    return normalized


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        logger.exception('Scheduling schema check failed')
        raise StoreUnavailable() from exc
