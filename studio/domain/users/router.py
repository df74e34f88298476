"""User router - profile and history of the signed-in member"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...shared.clock import Clock, get_clock
from .schemas import HistoryEntryResponse, UserResponse
from .service import UserService

router = APIRouter(prefix="/users", tags=["Users"])


def get_user_service(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> UserService:
    """Dependency injection for UserService"""
    return UserService(db, clock)


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    """Profile of the signed-in member with a freshly computed balance"""
    return UserResponse(**service.profile(current_user))


@router.get("/me/history", response_model=list[HistoryEntryResponse])
async def get_my_history(
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    """Bookings, cancellations and grants, most recent first"""
    return [HistoryEntryResponse.model_validate(e) for e in service.history(current_user, limit=limit)]
