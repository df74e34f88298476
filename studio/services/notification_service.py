"""
Notification Service
Outbound notification queue for booking, cancellation, reminder and waitlist events.

Business code only ever *requests* a notification through a NotificationQueue.
In production the request becomes an arq job handled by the worker, which
renders and sends the email; tests swap in InMemoryNotificationQueue and
assert on what was requested.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..config import ADMIN_EMAIL, FRONTEND_URL
from ..domain.catalog import service_name
from ..models import Appointment, User, WaitlistEntry

logger = logging.getLogger(__name__)


class NotificationEvent:
    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_REMINDER = "appointment_reminder"
    WAITLIST_SLOT_AVAILABLE = "waitlist_slot_available"
    ADMIN_APPOINTMENT_BOOKED = "admin_appointment_booked"
    ADMIN_APPOINTMENT_CANCELLED = "admin_appointment_cancelled"


class NotificationQueue:
    """Accepts (recipient, event_type, payload) and delivers asynchronously"""

    async def enqueue(self, recipient: str, event_type: str, payload: dict) -> None:
        raise NotImplementedError


class ArqNotificationQueue(NotificationQueue):
    """Queue backed by the arq worker (``send_notification_task``)"""

    def __init__(self, redis_settings=None, pool=None):
        self._redis_settings = redis_settings
        self._pool = pool

    async def _get_pool(self):
        if self._pool is None:
            from arq import create_pool

            from ..worker import get_redis_settings

            self._pool = await create_pool(self._redis_settings or get_redis_settings())
        return self._pool

    async def enqueue(self, recipient: str, event_type: str, payload: dict) -> None:
        pool = await self._get_pool()
        job = await pool.enqueue_job("send_notification_task", recipient, event_type, payload)
        logger.info(f"📋 Queued {event_type} notification for {recipient}: {job.job_id if job else 'duplicate'}")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


class InMemoryNotificationQueue(NotificationQueue):
    """Records requests instead of sending them. ``fail_with`` makes enqueue raise."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail_with: Optional[Exception] = None

    async def enqueue(self, recipient: str, event_type: str, payload: dict) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append({"recipient": recipient, "event_type": event_type, "payload": payload})

    def of_type(self, event_type: str) -> list[dict]:
        return [n for n in self.sent if n["event_type"] == event_type]

    def clear(self) -> None:
        self.sent.clear()


_default_queue = ArqNotificationQueue()


def get_notification_queue() -> NotificationQueue:
    """FastAPI dependency; tests override it with an in-memory queue"""
    return _default_queue


async def close_notification_queue() -> None:
    """Release the arq Redis pool on shutdown"""
    await _default_queue.close()


async def notify_safely(queue: NotificationQueue, recipient: Optional[str], event_type: str, payload: dict) -> bool:
    """
    Request a notification without letting a queue failure escape.

    Returns:
        True if the request was queued
    """
    if not recipient:
        logger.debug(f"⚠️ No recipient for {event_type} notification")
        return False
    try:
        await queue.enqueue(recipient, event_type, payload)
        return True
    except Exception as e:
        logger.warning(f"⚠️ Failed to queue {event_type} notification for {recipient}: {e}")
        return False


# ============================================
# Payload builders
# ============================================


def appointment_payload(appointment: Appointment, user: User, **extra) -> dict:
    payload = {
        "appointment_id": appointment.id,
        "user_id": user.id,
        "user_name": user.full_name,
        "user_email": user.email,
        "service": appointment.service.value,
        "service_name": service_name(appointment.service),
        "date": appointment.date.isoformat(),
        "time": appointment.time.strftime("%H:%M"),
    }
    payload.update(extra)
    return payload


def waitlist_payload(entry: WaitlistEntry, user: User) -> dict:
    return {
        "waitlist_entry_id": entry.id,
        "user_id": user.id,
        "user_name": user.full_name,
        "service": entry.service.value,
        "service_name": service_name(entry.service),
        "date": entry.date.isoformat(),
        "time": entry.time.strftime("%H:%M"),
        "claim_url": f"{FRONTEND_URL}/waitlist/claim?token={entry.notify_token}",
        "expires_at": entry.notify_token_expires_at.strftime("%Y-%m-%d %H:%M"),
    }


async def notify_appointment_booked(queue: NotificationQueue, appointment: Appointment, user: User) -> None:
    payload = appointment_payload(appointment, user)
    await notify_safely(queue, user.email, NotificationEvent.APPOINTMENT_BOOKED, payload)
    await notify_safely(queue, ADMIN_EMAIL, NotificationEvent.ADMIN_APPOINTMENT_BOOKED, payload)


async def notify_appointment_cancelled(queue: NotificationQueue, appointment: Appointment, user: User) -> None:
    payload = appointment_payload(appointment, user, refunded=bool(appointment.credit_lot_id))
    await notify_safely(queue, user.email, NotificationEvent.APPOINTMENT_CANCELLED, payload)
    await notify_safely(queue, ADMIN_EMAIL, NotificationEvent.ADMIN_APPOINTMENT_CANCELLED, payload)


# ============================================
# Delivery (runs in the worker)
# ============================================


def _email_senders() -> dict:
    from .. import email_service

    return {
        NotificationEvent.APPOINTMENT_BOOKED: email_service.send_appointment_booked_email,
        NotificationEvent.APPOINTMENT_CANCELLED: email_service.send_appointment_cancelled_email,
        NotificationEvent.APPOINTMENT_REMINDER: email_service.send_appointment_reminder_email,
        NotificationEvent.WAITLIST_SLOT_AVAILABLE: email_service.send_waitlist_slot_available_email,
        NotificationEvent.ADMIN_APPOINTMENT_BOOKED: email_service.send_admin_appointment_booked_email,
        NotificationEvent.ADMIN_APPOINTMENT_CANCELLED: email_service.send_admin_appointment_cancelled_email,
    }


async def deliver_notification(recipient: str, event_type: str, payload: dict, senders: Optional[dict] = None) -> dict:
    """
    Render and send one notification. Raises if the provider rejects it.

    Raises:
        ValueError: If the event type is unknown
    """
    senders = senders or _email_senders()
    sender = senders.get(event_type)
    if sender is None:
        raise ValueError(f"Unknown notification event: {event_type}")

    logger.info(f"📧 Delivering {event_type} to {recipient}")
    return await sender(recipient, payload)


def record_delivery_failure(db: Session, event_type: str, payload: dict, error: str, now: datetime) -> None:
    """
    Bookkeeping after a failed delivery.

    A failed reminder releases its marker so a later sweep sends it again. A
    failed waitlist email only records the error: the entry stays notified and
    its token remains claimable.
    """
    from ..domain.scheduling.repository import AppointmentRepository

    if event_type == NotificationEvent.APPOINTMENT_REMINDER and payload.get("appointment_id"):
        AppointmentRepository.release_reminder(db, payload["appointment_id"], error)
        db.commit()
        logger.warning(f"🔁 Reminder for appointment {payload['appointment_id']} released for retry: {error}")
    elif event_type == NotificationEvent.WAITLIST_SLOT_AVAILABLE and payload.get("waitlist_entry_id"):
        (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.id == payload["waitlist_entry_id"])
            .update({WaitlistEntry.last_notify_error: error[:1000]}, synchronize_session=False)
        )
        db.commit()
        logger.warning(f"⚠️ Waitlist email for entry {payload['waitlist_entry_id']} failed at {now}: {error}")
