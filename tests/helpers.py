"""Shared test helpers: fake clock, request contexts and cookie headers."""

from datetime import datetime, timedelta

from authcore.config.settings import settings
from authcore.shared.client_identity.fingerprint import RequestContext

TEST_SECRET = "unit-test-signing-secret-0123456789abcdef"

CLIENT_HEADERS = {
    "user-agent": "Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0",
    "accept-language": "en-GB,en;q=0.8",
    "accept-encoding": "gzip, deflate, br",
    "x-forwarded-for": "1.2.3.4",
}


class FakeClock:
    """Manually advanced clock; call it to read the current time."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current += timedelta(**delta)
        return self.current


def context_for(ip: str, user_agent: str = CLIENT_HEADERS["user-agent"]) -> RequestContext:
    """Same browser headers as the default client, from another IP or browser."""
    return RequestContext.from_headers({**CLIENT_HEADERS, "x-forwarded-for": ip, "user-agent": user_agent})


def session_cookie(token: str) -> dict[str, str]:
    """Request headers carrying the session cookie."""
    return {"cookie": f"{settings.session_cookie_name}={token}"}
