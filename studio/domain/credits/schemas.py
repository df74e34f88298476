"""Credit domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ..catalog import CreditScope


class CreditGrantRequest(BaseModel):
    """Schema for granting a lot of credits to a member"""

    amount: int
    service_scope: str = CreditScope.EP.value
    source: str = "admin"  # admin, purchase, promo

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: int) -> int:
        if v < 1:
            raise ValueError("amount must be at least 1")
        return v

    @field_validator("service_scope")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        allowed = {s.value for s in CreditScope}
        v = (v or "").strip().upper()
        if v not in allowed:
            raise ValueError(f"service_scope must be one of {sorted(allowed)}")
        return v


class CreditLotResponse(BaseModel):
    id: str
    service_scope: str
    amount: int
    remaining: int
    expires_at: Optional[datetime] = None
    source: str
    created_at: Optional[datetime] = None
    spendable: Optional[bool] = None

    class Config:
        from_attributes = True

    @field_validator("service_scope", mode="before")
    @classmethod
    def scope_value(cls, v):
        return getattr(v, "value", v)


class CreditBalanceResponse(BaseModel):
    total: int
    by_service: dict[str, int]
    lots: list[CreditLotResponse]
