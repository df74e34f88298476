"""Appointment repository - Database operations for appointments and slot locks"""

from datetime import date, datetime, time
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, joinedload

from ...models import Appointment, AppointmentStatus, SlotLock


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def lock_slot(db: Session, slot_date: date, slot_time: time) -> SlotLock:
        """
        Take the per-slot write lock for the current transaction.

        The lock row is created on first use, then selected FOR UPDATE and
        bumped so concurrent bookings and claims for the same slot serialize.
        """
        dialect = db.get_bind().dialect.name
        values = {"date": slot_date, "time": slot_time, "version": 0}

        if dialect == "postgresql":
            db.execute(postgresql.insert(SlotLock).values(**values).on_conflict_do_nothing())
        elif dialect == "sqlite":
            db.execute(sqlite.insert(SlotLock).values(**values).on_conflict_do_nothing())
        elif db.get(SlotLock, (slot_date, slot_time)) is None:
            db.add(SlotLock(**values))
            db.flush()

        lock = (
            db.query(SlotLock)
            .filter(SlotLock.date == slot_date, SlotLock.time == slot_time)
            .with_for_update()
            .populate_existing()
            .one()
        )
        lock.version += 1
        db.flush()
        return lock

    @staticmethod
    def get_by_id(db: Session, appointment_id: str) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def get_reserved_at_slot(db: Session, slot_date: date, slot_time: time) -> list[Appointment]:
        """Every reserved appointment at a slot, all services"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.date == slot_date,
                Appointment.time == slot_time,
                Appointment.status == AppointmentStatus.RESERVED,
            )
            .all()
        )

    @staticmethod
    def get_user_reserved_at_slot(
        db: Session, user_id: str, slot_date: date, slot_time: time
    ) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(
                Appointment.user_id == user_id,
                Appointment.date == slot_date,
                Appointment.time == slot_time,
                Appointment.status == AppointmentStatus.RESERVED,
            )
            .first()
        )

    @staticmethod
    def get_in_range(
        db: Session,
        start_date: date,
        end_date: date,
        user_id: Optional[str] = None,
        include_cancelled: bool = False,
    ) -> list[Appointment]:
        """Appointments between two dates (inclusive), ordered by slot"""
        query = db.query(Appointment).options(joinedload(Appointment.user)).filter(
            Appointment.date >= start_date, Appointment.date <= end_date
        )
        if user_id:
            query = query.filter(Appointment.user_id == user_id)
        if not include_cancelled:
            query = query.filter(Appointment.status == AppointmentStatus.RESERVED)
        return query.order_by(Appointment.date, Appointment.time).all()

    @staticmethod
    def get_user_appointments(db: Session, user_id: str, since: Optional[date] = None) -> list[Appointment]:
        query = db.query(Appointment).filter(Appointment.user_id == user_id)
        if since:
            query = query.filter(Appointment.date >= since)
        return query.order_by(Appointment.date, Appointment.time).all()

    @staticmethod
    def get_due_for_reminder(
        db: Session, now: datetime, window_start: datetime, window_end: datetime, limit: int
    ) -> list[Appointment]:
        """
        Reserved appointments without a reminder whose start falls in the window,
        plus earlier ones whose last attempt failed and have not started yet.

        Filters on the date range in SQL and on the exact start in Python since
        date and time are stored in separate columns.
        """
        candidates = (
            db.query(Appointment)
            .filter(
                Appointment.status == AppointmentStatus.RESERVED,
                Appointment.reminder_sent_at.is_(None),
                Appointment.date >= now.date(),
                Appointment.date <= window_end.date(),
            )
            .order_by(Appointment.date, Appointment.time)
            .all()
        )
        due = []
        for a in candidates:
            start = datetime.combine(a.date, a.time)
            if window_start <= start <= window_end or (a.reminder_last_error and now < start <= window_end):
                due.append(a)
        return due[:limit]

    @staticmethod
    def claim_reminder(db: Session, appointment_id: str, now: datetime) -> bool:
        """Set reminder_sent_at only if still unset; True if this caller won"""
        updated = (
            db.query(Appointment)
            .filter(
                Appointment.id == appointment_id,
                Appointment.status == AppointmentStatus.RESERVED,
                Appointment.reminder_sent_at.is_(None),
            )
            .update(
                {Appointment.reminder_sent_at: now, Appointment.reminder_last_error: None},
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def release_reminder(db: Session, appointment_id: str, error: str) -> None:
        """Clear the reminder marker so a later sweep retries"""
        (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id)
            .update(
                {Appointment.reminder_sent_at: None, Appointment.reminder_last_error: error[:1000]},
                synchronize_session=False,
            )
        )
