"""Account and IP lockout schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator

from authcore.features.rate_limit.schemas import RateLimitResult
from authcore.shared.clock import ensure_utc


class FailedAttemptRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    ip_address: str
    attempt_time: datetime

    @field_validator("attempt_time")
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class AttemptSummary(BaseModel):
    """Failures inside a window: how many, and when the latest happened."""

    count: int = 0
    last_attempt: datetime | None = None

    @field_validator("last_attempt")
    @classmethod
    def normalize_timezone(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class LockoutStatus(BaseModel):
    locked: bool = False
    failed_attempts: int = 0
    lockout_until: datetime | None = None
    remaining_seconds: int | None = None


class FailedLoginStats(BaseModel):
    total_attempts: int = 0
    unique_usernames: int = 0
    unique_ips: int = 0
    window_hours: int


class LoginCheck(BaseModel):
    """Whether a login attempt may proceed to credential verification.

    ``reason`` is one of ``ip_locked``, ``account_locked`` or
    ``rate_limited`` when the attempt is refused.
    """

    allowed: bool
    reason: str | None = None
    lockout: LockoutStatus
    rate_limit: RateLimitResult | None = None
