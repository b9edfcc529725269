"""Rate limiting schemas (rules, counter state, check results)."""

from datetime import datetime

from pydantic import BaseModel, Field


class RateLimitRule(BaseModel):
    """Capacity per fixed window for one named action."""

    capacity: int = Field(..., ge=1)
    window_seconds: float = Field(..., gt=0)
    description: str = ""


class CounterState(BaseModel):
    """Counter value after an increment, and when its window closes."""

    count: int
    reset_at: datetime


class RateLimitResult(BaseModel):
    """Outcome of a single rate-limit check.

    ``allowed`` and ``limited`` are always complementary; both are exposed
    because the general gate and the per-action limiters historically
    report in different terms.
    """

    allowed: bool
    remaining: int
    reset_time: datetime
    limit: int
    action: str
    description: str = ""
    progressive: bool = False
    failed_attempts: int | None = None
    error: str | None = None

    @property
    def limited(self) -> bool:
        return not self.allowed

    def retry_after(self, now: datetime) -> int:
        """Seconds until the window resets, never negative."""
        return max(0, int((self.reset_time - now).total_seconds() + 0.999))

    def headers(self, now: datetime) -> dict[str, str]:
        """Machine-readable quota headers for HTTP responses."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_time.timestamp())),
        }
        if self.limited:
            headers["Retry-After"] = str(self.retry_after(now))
        return headers
