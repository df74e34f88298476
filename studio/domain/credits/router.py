"""Credit router - FastAPI endpoints for balances and grants"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_admin
from ...database import get_db
from ...models import User
from ...shared.clock import Clock, get_clock
from .schemas import CreditBalanceResponse, CreditGrantRequest, CreditLotResponse
from .service import CreditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["Credits"])


def get_credit_service(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> CreditService:
    """Dependency injection for CreditService"""
    return CreditService(db, clock)


@router.get("/me", response_model=CreditBalanceResponse)
async def my_credits(
    current_user: User = Depends(get_current_user),
    service: CreditService = Depends(get_credit_service),
):
    """Spendable balance, per-service availability and lots"""
    return CreditBalanceResponse(**service.balance(current_user))


@router.post("/users/{user_id}/lots", response_model=CreditLotResponse)
async def grant_credits(
    user_id: str,
    data: CreditGrantRequest,
    admin: User = Depends(require_admin),
    service: CreditService = Depends(get_credit_service),
):
    """Grant a lot of credits to a member (admin only)"""
    lot = service.grant(admin, user_id, data.amount, data.service_scope, data.source)
    return CreditLotResponse.model_validate(lot)
