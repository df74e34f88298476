"""
Waitlist service - queue for full Personal Training slots and the claim protocol.

When a seat frees up every waiting member is notified at once with a
single-use token; contention is resolved at claim time, where the slot is
locked and capacity recomputed, so exactly one claim wins each free seat.
"""

import logging
import secrets
from datetime import date, time, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import WAITLIST_SWEEP_SLOT_LIMIT, WAITLIST_TOKEN_MAX_HOURS
from ...database import run_in_transaction
from ...errors import (
    AlreadyBookedError,
    DuplicateWaitlistError,
    NotFoundError,
    PermissionDeniedError,
    SlotNoLongerAvailableError,
    TokenInvalidError,
    ValidationError,
)
from ...models import Appointment, AppointmentStatus, User, WaitlistEntry, WaitlistStatus
from ...services.notification_service import NotificationEvent, NotificationQueue, waitlist_payload
from ...shared.clock import Clock
from ...shared.validators import slot_start, validate_service_hours
from ..catalog import ELASTIC_SERVICE, ServiceKey, is_elastic
from ..credits import ledger
from ..scheduling.capacity import DEFAULT_POLICY, CapacityPolicy
from ..scheduling.repository import AppointmentRepository
from ..scheduling.service import BookingService, check_eligibility, require_service
from ..users.repository import UserRepository
from .repository import WaitlistRepository

logger = logging.getLogger(__name__)


class WaitlistService:
    """Service layer for waitlist enrollment, notification and claims"""

    def __init__(self, db: Session, clock: Clock, policy: CapacityPolicy = DEFAULT_POLICY):
        self.db = db
        self.clock = clock
        self.repo = WaitlistRepository()
        self.appointments = AppointmentRepository()
        self.users = UserRepository()
        self.booking = BookingService(db, clock, policy)

    def join_waitlist(self, user: User, slot_date: date, slot_time: time, service=ELASTIC_SERVICE) -> WaitlistEntry:
        """
        Queue the user for a full Personal Training slot.

        Raises:
            ValidationError: Non-elastic service, past slot, or the slot still has room
            AlreadyBookedError: The user already holds a reservation at that time
            DuplicateWaitlistError: An active entry already exists
        """
        service = require_service(service)
        if not is_elastic(service):
            raise ValidationError("Only Personal Training slots have a waitlist", field="service")
        validate_service_hours(slot_date, slot_time, service)

        now = self.clock.now()
        if slot_start(slot_date, slot_time) <= now:
            raise ValidationError("Cannot join the waitlist for a past slot", field="date")

        if self.appointments.get_user_reserved_at_slot(self.db, user.id, slot_date, slot_time):
            raise AlreadyBookedError()

        metrics = self.booking.slot_metrics(slot_date, slot_time, now)
        if metrics.elastic_has_room:
            raise ValidationError("This slot still has room, book it directly", field="time")

        if self.repo.get_active(self.db, user.id, slot_date, slot_time, service):
            raise DuplicateWaitlistError()

        entry = WaitlistEntry(
            user_id=user.id,
            date=slot_date,
            time=slot_time,
            service=service,
            status=WaitlistStatus.WAITING,
            created_at=now,
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateWaitlistError() from e
        self.db.refresh(entry)

        logger.info(f"📝 User {user.id} joined waitlist for {slot_date} {slot_time} {service.value}")
        return entry

    async def notify_slot(
        self,
        slot_date: date,
        slot_time: time,
        queue: NotificationQueue,
        service: ServiceKey = ELASTIC_SERVICE,
    ) -> list[str]:
        """
        Notify every waiting member if the slot has room right now.

        Each entry is claimed with a conditional update before its email is
        queued; an entry whose notification cannot be queued is put back to
        waiting so the next sweep retries it.

        Returns:
            Ids of the entries left in the notified state
        """
        now = self.clock.now()
        start = slot_start(slot_date, slot_time)
        if start <= now:
            return []

        metrics = self.booking.slot_metrics(slot_date, slot_time, now)
        if metrics.seats_available(service) <= 0:
            return []

        waiting = self.repo.get_waiting_for_slot(self.db, slot_date, slot_time, service)
        if not waiting:
            return []

        expires_at = min(start, now + timedelta(hours=WAITLIST_TOKEN_MAX_HOURS))
        claimed = []
        for entry in waiting:
            token = secrets.token_urlsafe(32)
            if self.repo.mark_notified(self.db, entry.id, token, expires_at, now):
                claimed.append((entry.id, token))
        self.db.commit()

        notified = []
        for entry_id, token in claimed:
            entry = self.repo.get_by_id(self.db, entry_id)
            try:
                await queue.enqueue(
                    entry.user.email,
                    NotificationEvent.WAITLIST_SLOT_AVAILABLE,
                    waitlist_payload(entry, entry.user),
                )
                notified.append(entry_id)
            except Exception as e:
                logger.warning(f"⚠️ Could not queue waitlist notification for entry {entry_id}, reverting: {e}")
                self.repo.revert_to_waiting(self.db, entry_id, token, str(e))
                self.db.commit()

        logger.info(
            f"📣 Notified {len(notified)}/{len(waiting)} waitlisted members for {slot_date} {slot_time} {service.value}"
        )
        return notified

    def claim(self, user: User, token: str) -> Appointment:
        """
        Turn a claim token into an appointment.

        Runs under the slot lock: token check, duplicate check, fresh capacity,
        eligibility, then debit + appointment + entry update in one commit.

        Raises:
            TokenInvalidError, AlreadyBookedError, SlotNoLongerAvailableError,
            or the booking eligibility errors
        """
        if not token:
            raise TokenInvalidError()

        def _claim(db: Session) -> Appointment:
            now = self.clock.now()
            entry = self.repo.get_notified_by_token(db, token, user.id)
            if entry is None:
                raise TokenInvalidError()

            self.appointments.lock_slot(db, entry.date, entry.time)
            db.refresh(entry)
            if (
                entry.status != WaitlistStatus.NOTIFIED
                or entry.notify_token != token
                or entry.notify_token_expires_at is None
                or entry.notify_token_expires_at <= now
            ):
                raise TokenInvalidError()

            if self.appointments.get_user_reserved_at_slot(db, user.id, entry.date, entry.time):
                raise AlreadyBookedError()

            metrics = self.booking.slot_metrics(entry.date, entry.time, now)
            if metrics.seats_available(entry.service) <= 0:
                raise SlotNoLongerAvailableError()

            charge = not user.is_admin
            if charge:
                check_eligibility(user, entry.service, now)

            appointment = Appointment(
                user_id=user.id,
                date=entry.date,
                time=entry.time,
                service=entry.service,
                status=AppointmentStatus.RESERVED,
                created_at=now,
            )
            if charge:
                lot = ledger.consume(user, 1, entry.service, now)[0]
                appointment.credit_lot_id = lot.id
                appointment.credit_expires_at = lot.expires_at
            db.add(appointment)

            entry.status = WaitlistStatus.CLAIMED
            entry.claimed_at = now
            entry.notify_token = None
            entry.notify_token_expires_at = None

            self.users.add_history(
                db, user, "reserved_from_waitlist", now, entry.date, entry.time, entry.service.value
            )
            db.flush()
            return appointment

        try:
            appointment = run_in_transaction(self.db, _claim)
        except IntegrityError as e:
            logger.info(f"ℹ️ Waitlist claim by {user.id} lost the race for its seat")
            raise SlotNoLongerAvailableError() from e

        logger.info(f"✅ User {user.id} claimed {appointment.date} {appointment.time} from the waitlist")
        return appointment

    def mine(self, user: User) -> list[WaitlistEntry]:
        """The user's entries for today onwards"""
        return self.repo.get_user_entries(self.db, user.id, since=self.clock.now().date())

    def claimable(self, user: User) -> Optional[WaitlistEntry]:
        """First notified entry whose slot really has a free seat right now"""
        now = self.clock.now()
        for entry in self.repo.get_user_notified(self.db, user.id, now):
            if slot_start(entry.date, entry.time) <= now:
                continue
            if self.booking.slot_metrics(entry.date, entry.time, now).seats_available(entry.service) > 0:
                return entry
        return None

    def withdraw(self, actor: User, entry_id: str) -> WaitlistEntry:
        entry = self.repo.get_by_id(self.db, entry_id)
        if not entry:
            raise NotFoundError("Waitlist entry not found")
        if entry.user_id != actor.id and not actor.is_admin:
            raise PermissionDeniedError("You can only leave your own waitlist entries")
        if entry.status not in WaitlistStatus.ACTIVE:
            raise ValidationError(f"Waitlist entry is already {entry.status}")

        entry.status = WaitlistStatus.CANCELLED
        entry.notify_token = None
        entry.notify_token_expires_at = None
        self.db.commit()
        self.db.refresh(entry)
        logger.info(f"🚪 Waitlist entry {entry.id} withdrawn by {actor.id}")
        return entry


async def run_waitlist_sweep(
    db: Session,
    queue: NotificationQueue,
    clock: Clock,
    slot_limit: int = WAITLIST_SWEEP_SLOT_LIMIT,
) -> dict:
    """
    Periodic waitlist maintenance. Safe to re-run at any time.

    1. Active entries whose slot has started become ``expired``.
    2. Notified entries whose token lapsed go back to ``waiting``.
    3. Every future slot with waiting entries is re-checked for room.
    """
    now = clock.now()
    repo = WaitlistRepository()

    expired = 0
    for entry in repo.get_active_until(db, now.date()):
        if slot_start(entry.date, entry.time) <= now:
            entry.status = WaitlistStatus.EXPIRED
            entry.notify_token = None
            entry.notify_token_expires_at = None
            expired += 1
    db.flush()

    requeued = 0
    for entry in repo.get_lapsed_tokens(db, now):
        if repo.revert_to_waiting(db, entry.id, entry.notify_token):
            requeued += 1
    db.commit()

    service = WaitlistService(db, clock)
    notified = 0
    slots = repo.get_slots_with_waiters(db, now.date(), slot_limit)
    for slot_date, slot_time, slot_service in slots:
        if slot_start(slot_date, slot_time) <= now:
            continue
        try:
            notified += len(await service.notify_slot(slot_date, slot_time, queue, slot_service))
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Waitlist sweep failed for {slot_date} {slot_time}: {e}")

    if expired or requeued or notified:
        logger.info(f"🔄 Waitlist sweep: {expired} expired, {requeued} re-queued, {notified} notified")
    return {"expired": expired, "requeued": requeued, "notified": notified, "slots": len(slots)}


async def notify_waitlist_in_background(bind, clock: Clock, queue: NotificationQueue, slot_date: date, slot_time: time):
    """
    Background task run after a cancellation commits.

    Uses its own session since the request session is closed by then. Any
    failure is only logged; the periodic sweep picks up whatever was missed.
    """
    db = Session(bind=bind)
    try:
        await WaitlistService(db, clock).notify_slot(slot_date, slot_time, queue)
    except Exception as e:
        db.rollback()
        logger.warning(f"⚠️ Waitlist notification after cancellation failed for {slot_date} {slot_time}: {e}")
    finally:
        db.close()
