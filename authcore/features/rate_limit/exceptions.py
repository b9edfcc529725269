"""Rate limiting exceptions."""

from datetime import datetime

from fastapi import HTTPException, status

from .schemas import RateLimitResult


class RateLimitExceededException(HTTPException):
    """Raised when a caller is over quota.

    The detail is the same for every limiter so the response never says
    which one tripped; the quota headers carry the back-off information.
    """

    def __init__(self, result: RateLimitResult, now: datetime):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests",
            headers=result.headers(now),
        )
