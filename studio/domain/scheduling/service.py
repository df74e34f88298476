"""Booking service - Eligibility, capacity and atomic reservation of appointments"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import ADVANCE_BOOKING_DAYS, CANCELLATION_WINDOW_DAYS, MEDICAL_CLEARANCE_GRACE_DAYS
from ...database import run_in_transaction
from ...errors import (
    AccountSuspendedError,
    CancellationQuotaExceededError,
    CancellationWindowError,
    DuplicateBookingError,
    ElasticCapReachedError,
    InsufficientCreditsError,
    MedicalClearanceRequiredError,
    NotFoundError,
    PermissionDeniedError,
    ServiceSlotTakenError,
    SlotFullError,
    ValidationError,
)
from ...models import Appointment, AppointmentStatus, User, UserRole
from ...shared.clock import Clock
from ...shared.validators import (
    hours_until,
    slot_start,
    validate_booking_window,
    validate_service_hours,
)
from ..catalog import ServiceKey, is_elastic, parse_service
from ..credits import ledger
from ..users.repository import UserRepository
from .capacity import DEFAULT_POLICY, CapacityPolicy, SlotMetrics, analyze_slot
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)


def require_service(value) -> ServiceKey:
    service = parse_service(value)
    if service is None:
        raise ValidationError(f"Unknown service: {value}", field="service")
    return service


def check_eligibility(user: User, service: ServiceKey, now: datetime) -> None:
    """
    Suspension, medical clearance and credit checks shared by booking and claim.

    Raises:
        AccountSuspendedError, MedicalClearanceRequiredError, InsufficientCreditsError
    """
    if user.suspended:
        raise AccountSuspendedError()

    created_at = user.created_at or now
    if now - created_at > timedelta(days=MEDICAL_CLEARANCE_GRACE_DAYS) and not user.has_medical_clearance:
        raise MedicalClearanceRequiredError(grace_days=MEDICAL_CLEARANCE_GRACE_DAYS)

    if ledger.sum_for_service(user, service, now) <= 0:
        raise InsufficientCreditsError(service=service.value)


def ensure_capacity(metrics: SlotMetrics, service: ServiceKey) -> None:
    """Raise the matching capacity error when ``service`` cannot take another seat"""
    if not metrics.total_has_room:
        raise SlotFullError()
    if is_elastic(service):
        if not metrics.elastic_has_room:
            raise ElasticCapReachedError(elastic_cap=metrics.elastic_cap)
    elif metrics.is_taken(service):
        raise ServiceSlotTakenError(service=service.value)


class BookingService:
    """Service layer for booking and cancelling appointments"""

    def __init__(self, db: Session, clock: Clock, policy: CapacityPolicy = DEFAULT_POLICY):
        self.db = db
        self.clock = clock
        self.policy = policy
        self.repo = AppointmentRepository()
        self.users = UserRepository()

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------

    def slot_metrics(self, slot_date: date, slot_time: time, now: Optional[datetime] = None) -> SlotMetrics:
        """Fresh metrics for one slot; never cached since the elastic cap moves with time"""
        now = now or self.clock.now()
        reserved = self.repo.get_reserved_at_slot(self.db, slot_date, slot_time)
        return analyze_slot(reserved, slot_start(slot_date, slot_time), now, self.policy)

    def availability(self, slot_date: date, slot_time: time) -> dict:
        """Public view of a slot's capacity"""
        now = self.clock.now()
        metrics = self.slot_metrics(slot_date, slot_time, now)
        return {
            "date": slot_date,
            "time": slot_time,
            "hours_to_start": round(metrics.hours_to_start, 2),
            "total_capacity": metrics.total_capacity,
            "total_reserved": metrics.total_reserved,
            "elastic_cap": metrics.elastic_cap,
            "elastic_count": metrics.elastic_count,
            "seats": {s.value: metrics.seats_available(s) for s in ServiceKey},
        }

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def _resolve_target(self, actor: User, target_user_id: Optional[str]) -> User:
        if not target_user_id or target_user_id == actor.id:
            return actor
        if not actor.is_admin:
            raise PermissionDeniedError("Only staff can book on behalf of another member")
        user = self.users.get_by_id(self.db, target_user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def book_appointment(
        self,
        actor: User,
        slot_date: date,
        slot_time: time,
        service,
        target_user_id: Optional[str] = None,
        coach: Optional[str] = None,
    ) -> Appointment:
        """
        Reserve a seat and debit one credit in a single transaction.

        Admins bypass suspension, clearance and credit checks and are never
        charged. The slot lock plus the partial unique indexes keep concurrent
        bookings for the same slot from overselling it.
        """
        service = require_service(service)
        validate_service_hours(slot_date, slot_time, service)
        now = self.clock.now()
        validate_booking_window(slot_date, slot_time, now, ADVANCE_BOOKING_DAYS)

        user = self._resolve_target(actor, target_user_id)
        charge = not actor.is_admin
        if charge:
            check_eligibility(user, service, now)

        def _reserve(db: Session) -> Appointment:
            now = self.clock.now()
            self.repo.lock_slot(db, slot_date, slot_time)

            if self.repo.get_user_reserved_at_slot(db, user.id, slot_date, slot_time):
                raise DuplicateBookingError()

            metrics = self.slot_metrics(slot_date, slot_time, now)
            ensure_capacity(metrics, service)

            appointment = Appointment(
                user_id=user.id,
                date=slot_date,
                time=slot_time,
                service=service,
                status=AppointmentStatus.RESERVED,
                coach=coach,
                created_at=now,
            )
            if charge:
                lot = ledger.consume(user, 1, service, now)[0]
                appointment.credit_lot_id = lot.id
                appointment.credit_expires_at = lot.expires_at

            db.add(appointment)
            self.users.add_history(db, user, "reserved", now, slot_date, slot_time, service.value)
            db.flush()
            return appointment

        try:
            appointment = run_in_transaction(self.db, _reserve)
        except IntegrityError as e:
            logger.info(f"ℹ️ Concurrent booking lost the race for {slot_date} {slot_time} {service.value}")
            raise SlotFullError() from e

        logger.info(
            f"✅ Appointment {appointment.id} booked: user={user.id} {service.value} {slot_date} {slot_time}"
            f"{' (admin)' if not charge else ''}"
        )
        return appointment

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_appointment(self, actor: User, appointment_id: str) -> Appointment:
        """
        Cancel a reservation and refund its credit to the lot it came from.

        Members must cancel at least ``cancel_min_hours`` ahead and within their
        rolling quota; admins bypass both. Waitlist notification is left to the
        caller so it never shares this transaction.
        """
        appointment = self.repo.get_by_id(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        if appointment.user_id != actor.id and not actor.is_admin:
            raise PermissionDeniedError("You can only cancel your own appointments")

        def _cancel(db: Session) -> Appointment:
            now = self.clock.now()
            db.refresh(appointment)
            if appointment.status == AppointmentStatus.CANCELLED:
                raise ValidationError("Appointment is already cancelled")

            start = slot_start(appointment.date, appointment.time)
            if start <= now:
                raise ValidationError("Appointment has already started")

            user = appointment.user
            rules = user.membership.rules(now)
            bypass = actor.is_admin

            if not bypass and hours_until(start, now) < rules.cancel_min_hours:
                raise CancellationWindowError(
                    f"Appointments must be cancelled at least {rules.cancel_min_hours} hours ahead",
                    cancel_min_hours=rules.cancel_min_hours,
                )

            if not bypass:
                window_start = user.cancellation_window_started_at
                if window_start is None or now >= window_start + timedelta(days=CANCELLATION_WINDOW_DAYS):
                    user.cancellation_window_started_at = now
                    user.cancellations_used = 0
                if (user.cancellations_used or 0) >= rules.cancel_limit:
                    raise CancellationQuotaExceededError(cancel_limit=rules.cancel_limit)
                user.cancellations_used = (user.cancellations_used or 0) + 1

            appointment.status = AppointmentStatus.CANCELLED
            appointment.cancelled_at = now
            if appointment.credit_lot_id:
                ledger.refund(user, appointment.credit_lot_id, 1, now)

            self.users.add_history(
                db, user, "cancelled", now, appointment.date, appointment.time, appointment.service.value
            )
            db.flush()
            return appointment

        appointment = run_in_transaction(self.db, _cancel)
        logger.info(f"🗑️ Appointment {appointment.id} cancelled by {actor.id}")
        return appointment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_appointments(
        self, actor: User, start_date: date, end_date: date, include_cancelled: bool = False
    ) -> list[Appointment]:
        """Studio agenda for staff"""
        if actor.role not in (UserRole.ADMIN, UserRole.PROFESSOR):
            raise PermissionDeniedError("Only staff can view the studio agenda")
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date", field="end_date")
        if (end_date - start_date).days > 62:
            raise ValidationError("Date range is limited to 62 days", field="end_date")
        return self.repo.get_in_range(self.db, start_date, end_date, include_cancelled=include_cancelled)

    def my_appointments(self, user: User, upcoming_only: bool = True) -> list[Appointment]:
        since = self.clock.now().date() if upcoming_only else None
        return self.repo.get_user_appointments(self.db, user.id, since=since)
