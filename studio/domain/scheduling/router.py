"""Appointment router - FastAPI endpoints for booking and cancellation"""

import logging
from datetime import date, time, timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...services.notification_service import (
    NotificationQueue,
    get_notification_queue,
    notify_appointment_booked,
    notify_appointment_cancelled,
)
from ...shared.clock import Clock, get_clock
from ..waitlist.service import notify_waitlist_in_background
from .schemas import (
    AgendaAppointmentResponse,
    AppointmentResponse,
    AvailabilityResponse,
    BookingRequest,
    CancellationResponse,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_booking_service(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, clock)


@router.post("", response_model=AppointmentResponse)
async def book_appointment(
    data: BookingRequest,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
    queue: NotificationQueue = Depends(get_notification_queue),
):
    """Book an appointment (staff may book for a member with target_user_id)"""
    appointment = service.book_appointment(
        current_user,
        data.date,
        data.time,
        data.service,
        target_user_id=data.target_user_id,
        coach=data.coach,
    )
    await notify_appointment_booked(queue, appointment, appointment.user)
    return AppointmentResponse.model_validate(appointment)


@router.post("/{appointment_id}/cancel", response_model=CancellationResponse)
async def cancel_appointment(
    appointment_id: str,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
    queue: NotificationQueue = Depends(get_notification_queue),
):
    """Cancel an appointment, refund its credit and let the waitlist know"""
    appointment = service.cancel_appointment(current_user, appointment_id)
    user = appointment.user

    await notify_appointment_cancelled(queue, appointment, user)
    background_tasks.add_task(
        notify_waitlist_in_background,
        service.db.get_bind(),
        service.clock,
        queue,
        appointment.date,
        appointment.time,
    )

    return CancellationResponse(
        appointment=AppointmentResponse.model_validate(appointment),
        refunded=bool(appointment.credit_lot_id),
        credits=user.credits,
    )


@router.get("", response_model=list[AgendaAppointmentResponse])
async def list_appointments(
    start_date: date = Query(...),
    end_date: Optional[date] = Query(None),
    include_cancelled: bool = Query(False),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Studio agenda between two dates (staff only)"""
    appointments = service.list_appointments(
        current_user, start_date, end_date or start_date + timedelta(days=6), include_cancelled
    )
    return [
        AgendaAppointmentResponse(
            **AppointmentResponse.model_validate(a).model_dump(),
            user_name=a.user.full_name if a.user else None,
            user_email=a.user.email if a.user else None,
        )
        for a in appointments
    ]


@router.get("/mine", response_model=list[AppointmentResponse])
async def my_appointments(
    include_past: bool = Query(False),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """The current user's appointments"""
    return [
        AppointmentResponse.model_validate(a)
        for a in service.my_appointments(current_user, upcoming_only=not include_past)
    ]


@router.get("/availability", response_model=AvailabilityResponse)
async def slot_availability(
    date: date = Query(...),
    time: time = Query(...),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Seats left per service for one slot"""
    return AvailabilityResponse(**service.availability(date, time))
