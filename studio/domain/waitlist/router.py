"""Waitlist router - FastAPI endpoints for the waitlist and claim tokens"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...services.notification_service import (
    NotificationQueue,
    get_notification_queue,
    notify_appointment_booked,
)
from ...shared.clock import Clock, get_clock
from ..scheduling.schemas import AppointmentResponse
from .schemas import ClaimableResponse, ClaimRequest, WaitlistEntryResponse, WaitlistJoinRequest
from .service import WaitlistService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/waitlist", tags=["Waitlist"])


def get_waitlist_service(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> WaitlistService:
    """Dependency injection for WaitlistService"""
    return WaitlistService(db, clock)


@router.post("", response_model=WaitlistEntryResponse)
async def join_waitlist(
    data: WaitlistJoinRequest,
    current_user: User = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Join the waitlist for a full slot"""
    entry = service.join_waitlist(current_user, data.date, data.time, data.service)
    return WaitlistEntryResponse.model_validate(entry)


@router.post("/claim", response_model=AppointmentResponse)
async def claim_seat(
    data: ClaimRequest,
    current_user: User = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
    queue: NotificationQueue = Depends(get_notification_queue),
):
    """Redeem a claim token for an appointment"""
    appointment = service.claim(current_user, data.token)
    await notify_appointment_booked(queue, appointment, current_user)
    return AppointmentResponse.model_validate(appointment)


@router.get("/mine", response_model=list[WaitlistEntryResponse])
async def my_waitlist(
    current_user: User = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
):
    """The current user's waitlist entries from today on"""
    return [WaitlistEntryResponse.model_validate(e) for e in service.mine(current_user)]


@router.get("/claimable", response_model=ClaimableResponse)
async def claimable_entry(
    current_user: User = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
):
    """First notified entry whose slot still has a free seat"""
    entry = service.claimable(current_user)
    if entry is None:
        return ClaimableResponse()
    return ClaimableResponse(entry=WaitlistEntryResponse.model_validate(entry), token=entry.notify_token)


@router.delete("/{entry_id}", response_model=WaitlistEntryResponse)
async def withdraw(
    entry_id: str,
    current_user: User = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Leave the waitlist"""
    return WaitlistEntryResponse.model_validate(service.withdraw(current_user, entry_id))
