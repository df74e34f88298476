"""Waitlist domain schemas - Pydantic models for validation"""

from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, field_serializer, field_validator

from ..catalog import ELASTIC_SERVICE, parse_service


class WaitlistJoinRequest(BaseModel):
    """Schema for joining the waitlist of a full slot"""

    date: date
    time: time
    service: str = ELASTIC_SERVICE.value

    @field_validator("service")
    @classmethod
    def validate_service(cls, v: str) -> str:
        service = parse_service(v)
        if service is None:
            raise ValueError(f"Unknown service: {v}")
        return service.value


class ClaimRequest(BaseModel):
    token: str

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("token is required")
        return v


class WaitlistEntryResponse(BaseModel):
    """Schema for waitlist entry response (the token is never echoed back)"""

    id: str
    date: date
    time: time
    service: str
    status: str
    notify_token_expires_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("service", mode="before")
    @classmethod
    def service_value(cls, v):
        return getattr(v, "value", v)

    @field_serializer("time")
    def serialize_time(self, v: time) -> str:
        return v.strftime("%H:%M")


class ClaimableResponse(BaseModel):
    """First claimable entry; the owner gets its token so the app can claim in place"""

    entry: Optional[WaitlistEntryResponse] = None
    token: Optional[str] = None
