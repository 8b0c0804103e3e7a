"""Sliding-window rate limiting backed by the application database.

Each accepted call is stored as a hit row. A call inserts its hit, counts the
hits for its (identifier, action) key inside the window in the same
transaction, and rolls back when the count is over the limit.

Checks for one key run one at a time. On PostgreSQL the transaction first takes
a transaction-scoped advisory lock on the key. SQLite has a single writer: the
prune that opens each check takes the database write lock, which is held until
the commit or rollback.

If the hit log itself cannot be read or written the call is allowed
(fail-open), so an outage of the limiter never takes the API down with it.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, NamedTuple

from fastapi import Depends, Request
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from carelink.auth.dependencies import get_current_user
from carelink.database import SessionLocal
from carelink.errors import RateLimited
from carelink.models.rate_limit import RateLimitHit
from carelink.models.user import User

logger = logging.getLogger(__name__)


def serialize_key(db: Session, identifier: str, action_type: str) -> None:
    """Block other checks of the same key until this transaction ends."""
    if db.get_bind().dialect.name == 'postgresql':
        db.execute(
            text('SELECT pg_advisory_xact_lock(hashtext(:key))'),
            {'key': f'{action_type}:{identifier}'},
        )


class RateLimitDecision(NamedTuple):
    allowed: bool
    retry_after: int = 0
    remaining: int = 0


class RateLimiter:
    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock

    def check(self, identifier: str, action_type: str, max_requests: int, window_seconds: int) -> RateLimitDecision:
        now = self.clock()
        window_start = now - timedelta(seconds=window_seconds)

        try:
            db = self.session_factory()
        except SQLAlchemyError:
            logger.exception('Rate limit store unavailable for %s (%s), allowing request', identifier, action_type)
            return RateLimitDecision(True, remaining=max_requests)

        try:
            serialize_key(db, identifier, action_type)
            db.query(RateLimitHit).filter(
                RateLimitHit.identifier == identifier,
                RateLimitHit.action_type == action_type,
                RateLimitHit.created_at <= window_start,
            ).delete(synchronize_session=False)

            db.add(RateLimitHit(identifier=identifier, action_type=action_type, created_at=now))
            db.flush()

            count, oldest = db.query(func.count(RateLimitHit.id), func.min(RateLimitHit.created_at)).filter(
                RateLimitHit.identifier == identifier,
                RateLimitHit.action_type == action_type,
                RateLimitHit.created_at > window_start,
            ).one()

            if count > max_requests:
                db.rollback()
                retry_after = window_seconds
                if oldest is not None:
                    remaining_window = (oldest + timedelta(seconds=window_seconds) - now).total_seconds()
                    retry_after = max(1, math.ceil(remaining_window))
                logger.warning(
                    'Rate limit exceeded for %s on %s (%s/%s in %ss)',
                    identifier, action_type, count - 1, max_requests, window_seconds,
                )
                return RateLimitDecision(False, retry_after=retry_after)

            db.commit()
            return RateLimitDecision(True, remaining=max_requests - count)
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Rate limit check failed for %s (%s), allowing request', identifier, action_type)
            return RateLimitDecision(True, remaining=max_requests)
        finally:
            db.close()


_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    return _limiter


def client_identifier(request: Request) -> str:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return 'unknown'


def rate_limit(action_type: str, limit: tuple[int, int], by_user: bool = False):
    """Build a route dependency enforcing ``limit`` = (max_requests, window_seconds).

    The key is the caller's network address, or the authenticated user id
    when ``by_user`` is set.
    """
    max_requests, window_seconds = limit

    def check_network_limit(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitDecision:
        return enforce(limiter, client_identifier(request))

    def check_user_limit(
        current_user: User = Depends(get_current_user),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitDecision:
        return enforce(limiter, f'user:{current_user.id}')

    def enforce(limiter: RateLimiter, identifier: str) -> RateLimitDecision:
        decision = limiter.check(identifier, action_type, max_requests, window_seconds)
        if not decision.allowed:
            raise RateLimited(decision.retry_after, max_requests, window_seconds)
        return decision

    return check_user_limit if by_user else check_network_limit
