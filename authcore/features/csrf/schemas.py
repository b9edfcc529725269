"""CSRF schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator

from authcore.shared.clock import ensure_utc


class CsrfRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int
    token: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class CsrfTokenResponse(BaseModel):
    csrf_token: str
