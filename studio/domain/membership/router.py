"""Membership router - FastAPI endpoints for membership tiers"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_admin
from ...database import get_db
from ...models import User
from ...shared.clock import Clock, get_clock
from .schemas import MembershipResponse, MembershipUpdateRequest
from .service import MembershipService

router = APIRouter(prefix="/membership", tags=["Membership"])


def get_membership_service(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> MembershipService:
    return MembershipService(db, clock)


@router.get("/me", response_model=MembershipResponse)
async def my_membership(
    current_user: User = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service),
):
    """Current tier, effective tier and cancellation rules"""
    return MembershipResponse(**service.describe(current_user))


@router.post("/users/{user_id}", response_model=MembershipResponse)
async def set_membership(
    user_id: str,
    data: MembershipUpdateRequest,
    admin: User = Depends(require_admin),
    service: MembershipService = Depends(get_membership_service),
):
    """Start or extend a member's membership (admin only)"""
    user = service.set_membership(admin, user_id, data.tier, data.days)
    return MembershipResponse(**service.describe(user))
