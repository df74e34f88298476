"""User schemas - Pydantic models for profile and history responses"""

from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, field_serializer


class UserResponse(BaseModel):
    id: str
    name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    role: str
    suspended: bool
    credits: int
    membership_tier: str
    membership_active_until: Optional[datetime] = None
    medical_clearance_status: Optional[str] = None
    has_medical_clearance: bool
    created_at: Optional[datetime] = None


class HistoryEntryResponse(BaseModel):
    id: int
    action: str
    date: Optional[date]
    time: Optional[time]
    service: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

    @field_serializer("time")
    def serialize_time(self, v: Optional[time]) -> Optional[str]:
        return v.strftime("%H:%M") if v else None
