"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, field_serializer, field_validator

from ..catalog import parse_service


class BookingRequest(BaseModel):
    """Schema for booking an appointment"""

    date: date
    time: time
    service: str  # key ("EP") or display name
    target_user_id: Optional[str] = None  # staff booking on behalf of a member
    coach: Optional[str] = None

    @field_validator("service")
    @classmethod
    def validate_service(cls, v: str) -> str:
        service = parse_service(v)
        if service is None:
            raise ValueError(f"Unknown service: {v}")
        return service.value


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: str
    user_id: str
    date: date
    time: time
    service: str
    status: str
    coach: Optional[str] = None
    credit_lot_id: Optional[str] = None
    credit_expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
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


class AgendaAppointmentResponse(AppointmentResponse):
    """Appointment with the member's name for the staff agenda"""

    user_name: Optional[str] = None
    user_email: Optional[str] = None


class CancellationResponse(BaseModel):
    appointment: AppointmentResponse
    refunded: bool
    credits: int


class AvailabilityResponse(BaseModel):
    date: date
    time: time
    hours_to_start: float
    total_capacity: int
    total_reserved: int
    elastic_cap: int
    elastic_count: int
    seats: dict[str, int]

    @field_serializer("time")
    def serialize_time(self, v: time) -> str:
        return v.strftime("%H:%M")
