"""Membership domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from .rules import MembershipTier


class MembershipUpdateRequest(BaseModel):
    tier: str
    days: int = 30

    @field_validator("tier")
    @classmethod
    def validate_tier(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in {t.value for t in MembershipTier}:
            raise ValueError("tier must be 'basic' or 'plus'")
        return v

    @field_validator("days")
    @classmethod
    def validate_days(cls, v: int) -> int:
        if v < 1 or v > 366:
            raise ValueError("days must be between 1 and 366")
        return v


class MembershipResponse(BaseModel):
    tier: str
    effective_tier: str
    active_until: Optional[datetime] = None
    cancel_min_hours: int
    cancel_limit: int
    credits_expire_days: int
    cancellations_used: int
    cancellation_window_started_at: Optional[datetime] = None
