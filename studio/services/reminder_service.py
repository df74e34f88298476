"""
Appointment Reminder Service
Queues a reminder for every reserved appointment starting roughly a day ahead
"""

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from ..config import REMINDER_AHEAD_HOURS, REMINDER_BATCH_LIMIT, REMINDER_WINDOW_MINUTES
from ..domain.scheduling.repository import AppointmentRepository
from ..shared.clock import Clock
from .notification_service import NotificationEvent, NotificationQueue, appointment_payload

logger = logging.getLogger(__name__)


async def run_reminder_sweep(
    db: Session,
    queue: NotificationQueue,
    clock: Clock,
    ahead_hours: int = REMINDER_AHEAD_HOURS,
    window_minutes: int = REMINDER_WINDOW_MINUTES,
    limit: int = REMINDER_BATCH_LIMIT,
) -> int:
    """
    Queue reminders for appointments starting in [now + ahead, now + ahead + window].

    Each appointment is claimed by setting ``reminder_sent_at`` only while it
    is still unset, so overlapping or repeated ticks never double-send. If the
    reminder cannot be queued the marker is cleared again for the next tick.

    Returns:
        Number of reminders queued
    """
    now = clock.now()
    window_start = now + timedelta(hours=ahead_hours)
    window_end = window_start + timedelta(minutes=window_minutes)
    repo = AppointmentRepository()

    due = repo.get_due_for_reminder(db, now, window_start, window_end, limit)
    if not due:
        logger.debug("✅ No reminders due")
        return 0

    logger.info(f"⏰ {len(due)} appointments due for a reminder")
    queued = 0
    for appointment in due:
        if not repo.claim_reminder(db, appointment.id, now):
            db.rollback()
            continue
        db.commit()

        user = appointment.user
        try:
            await queue.enqueue(
                user.email,
                NotificationEvent.APPOINTMENT_REMINDER,
                appointment_payload(appointment, user),
            )
            queued += 1
        except Exception as e:
            logger.warning(f"⚠️ Failed to queue reminder for appointment {appointment.id}, releasing: {e}")
            repo.release_reminder(db, appointment.id, str(e))
            db.commit()

    logger.info(f"✅ Queued {queued} reminders")
    return queued
