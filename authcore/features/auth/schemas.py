"""Authentication schemas (claims, verification results, session DTOs)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from authcore.features.rate_limit.schemas import RateLimitResult
from authcore.shared.clock import ensure_utc

ENHANCED = "enhanced"
LEGACY = "legacy"


class TokenSubject(BaseModel):
    """Verified identity a session token is issued for."""

    id: int
    username: str = ""
    email: str = ""


class TokenClaims(BaseModel):
    """Claim set carried by a bearer session token.

    Tokens issued before client binding existed carry neither ``ip_hash`` nor
    ``device_fingerprint``; they are the legacy variant of this schema.
    """

    model_config = ConfigDict(extra="ignore")

    sub: str
    user_id: int
    username: str = ""
    email: str = ""
    iat: int | None = None
    exp: int
    iss: str | None = None
    aud: str | None = None
    jti: str | None = None
    ip_hash: str | None = None
    device_fingerprint: str | None = None
    security_level: str | None = None
    session_start: int | None = None

    @property
    def is_bound(self) -> bool:
        return bool(self.ip_hash or self.device_fingerprint)

    @property
    def effective_security_level(self) -> str:
        if not self.is_bound:
            return LEGACY
        return self.security_level or LEGACY

    def subject(self) -> TokenSubject:
        return TokenSubject(id=self.user_id, username=self.username, email=self.email)


class TokenVerification(BaseModel):
    """Result of verifying a bearer token against the current request."""

    valid: bool
    claims: TokenClaims | None = None
    reason: str | None = None
    expired: bool = False
    security_violation: bool = False
    needs_renewal: bool = False
    time_left: float = 0.0  # seconds
    security_level: str = ENHANCED


class SessionRecord(BaseModel):
    """Server-side session row, independent of the token's own claims."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    token: str
    expires_at: datetime
    created_at: datetime
    last_activity_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    previous_token: str | None = None
    previous_token_expires_at: datetime | None = None

    @field_validator("expires_at", "created_at", "last_activity_at", "previous_token_expires_at")
    @classmethod
    def normalize_timezone(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class SessionData(BaseModel):
    """Token material handed back to the caller on login or renewal."""

    token: str
    expires_at: datetime
    max_age: int  # seconds, for the cookie
    session_id: int


class SessionValidation(BaseModel):
    """Outcome of validating a token against its session record."""

    valid: bool
    reason: str | None = None
    session: SessionRecord | None = None
    claims: TokenClaims | None = None
    needs_renewal: bool = False
    time_left: float = 0.0
    security_level: str = ENHANCED
    superseded: bool = False  # token was replaced by a renewal inside the grace window


class AuthOutcome(BaseModel):
    """Full request authentication: rate-limit gate, validation, renewal."""

    success: bool
    reason: str | None = None
    session: SessionRecord | None = None
    claims: TokenClaims | None = None
    rate_limit: RateLimitResult | None = None
    renewal: SessionData | None = None
    security_level: str = ENHANCED


# Response schemas
class SessionResponse(BaseModel):
    """A session as listed to its owner."""

    id: int
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    current: bool = False


class CurrentSessionResponse(BaseModel):
    """Identity and session state of the authenticated caller."""

    user_id: int
    username: str
    email: str
    session_id: int
    expires_at: datetime
    security_level: str


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse] = Field(default_factory=list)


class TerminateSessionsResponse(BaseModel):
    success: bool = True
    terminated_count: int


class MessageResponse(BaseModel):
    message: str
