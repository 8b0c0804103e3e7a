"""Domain errors raised by the scheduling and connection services.

Each error is an ``HTTPException`` so FastAPI renders it directly and route
tests can assert on ``status_code`` and ``detail``.
"""

from fastapi import HTTPException, status


class SchedulingError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request could not be processed.'

    def __init__(self, detail: str | None = None, headers: dict[str, str] | None = None) -> None:
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class ValidationFailed(SchedulingError):
    """Malformed or out-of-range input, surfaced verbatim."""
    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationFailed(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Not authorized.'

    def __init__(self) -> None:
        super().__init__(self.default_detail)


class ResourceNotFound(SchedulingError):
    """Missing resource, or one the caller is not a party to."""
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'


class InvariantViolation(SchedulingError):
    """User-correctable conflict: refresh and retry with new information."""
    status_code = status.HTTP_409_CONFLICT


class StoreUnavailable(SchedulingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Database unavailable. Please retry shortly.'


class RateLimited(SchedulingError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = 'Too many attempts. Please try again in a few minutes.'

    def __init__(self, retry_after: int, max_requests: int, window_seconds: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            headers={
                'Retry-After': str(retry_after),
                'X-RateLimit-Limit': str(max_requests),
                'X-RateLimit-Window': str(window_seconds),
            },
        )
