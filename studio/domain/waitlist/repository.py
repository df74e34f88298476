"""Waitlist repository - Database operations for waitlist entries"""

from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ...models import WaitlistEntry, WaitlistStatus
from ..catalog import ServiceKey


class WaitlistRepository:
    """Repository for waitlist database operations"""

    @staticmethod
    def get_by_id(db: Session, entry_id: str) -> Optional[WaitlistEntry]:
        return db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id).first()

    @staticmethod
    def get_active(
        db: Session, user_id: str, slot_date: date, slot_time: time, service: ServiceKey
    ) -> Optional[WaitlistEntry]:
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.user_id == user_id,
                WaitlistEntry.date == slot_date,
                WaitlistEntry.time == slot_time,
                WaitlistEntry.service == service,
                WaitlistEntry.status.in_(WaitlistStatus.ACTIVE),
            )
            .first()
        )

    @staticmethod
    def get_notified_by_token(db: Session, token: str, user_id: str) -> Optional[WaitlistEntry]:
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.notify_token == token,
                WaitlistEntry.user_id == user_id,
                WaitlistEntry.status == WaitlistStatus.NOTIFIED,
            )
            .first()
        )

    @staticmethod
    def get_waiting_for_slot(
        db: Session, slot_date: date, slot_time: time, service: ServiceKey
    ) -> list[WaitlistEntry]:
        """Waiting entries in join order"""
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.date == slot_date,
                WaitlistEntry.time == slot_time,
                WaitlistEntry.service == service,
                WaitlistEntry.status == WaitlistStatus.WAITING,
            )
            .order_by(WaitlistEntry.created_at, WaitlistEntry.id)
            .all()
        )

    @staticmethod
    def get_user_entries(db: Session, user_id: str, since: Optional[date] = None) -> list[WaitlistEntry]:
        query = db.query(WaitlistEntry).filter(WaitlistEntry.user_id == user_id)
        if since:
            query = query.filter(WaitlistEntry.date >= since)
        return query.order_by(WaitlistEntry.date, WaitlistEntry.time).all()

    @staticmethod
    def get_user_notified(db: Session, user_id: str, now: datetime) -> list[WaitlistEntry]:
        """Notified entries whose token is still valid, soonest slot first"""
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.user_id == user_id,
                WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                WaitlistEntry.notify_token_expires_at > now,
            )
            .order_by(WaitlistEntry.date, WaitlistEntry.time)
            .all()
        )

    @staticmethod
    def mark_notified(db: Session, entry_id: str, token: str, expires_at: datetime, now: datetime) -> bool:
        """waiting -> notified, only if still waiting; True if this caller won"""
        updated = (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.id == entry_id, WaitlistEntry.status == WaitlistStatus.WAITING)
            .update(
                {
                    WaitlistEntry.status: WaitlistStatus.NOTIFIED,
                    WaitlistEntry.notify_token: token,
                    WaitlistEntry.notify_token_expires_at: expires_at,
                    WaitlistEntry.notified_at: now,
                    WaitlistEntry.last_notify_error: None,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def revert_to_waiting(db: Session, entry_id: str, token: str, error: Optional[str] = None) -> bool:
        """notified -> waiting for an entry still holding ``token``"""
        updated = (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.id == entry_id,
                WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                WaitlistEntry.notify_token == token,
            )
            .update(
                {
                    WaitlistEntry.status: WaitlistStatus.WAITING,
                    WaitlistEntry.notify_token: None,
                    WaitlistEntry.notify_token_expires_at: None,
                    WaitlistEntry.notified_at: None,
                    WaitlistEntry.last_notify_error: error[:1000] if error else None,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def get_active_until(db: Session, last_date: date) -> list[WaitlistEntry]:
        """Active entries for slots on or before ``last_date``"""
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.status.in_(WaitlistStatus.ACTIVE),
                WaitlistEntry.date <= last_date,
            )
            .all()
        )

    @staticmethod
    def get_lapsed_tokens(db: Session, now: datetime) -> list[WaitlistEntry]:
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                WaitlistEntry.notify_token_expires_at <= now,
            )
            .all()
        )

    @staticmethod
    def get_slots_with_waiters(db: Session, from_date: date, limit: int) -> list[tuple]:
        """Distinct (date, time, service) tuples that still have waiting entries"""
        return (
            db.query(WaitlistEntry.date, WaitlistEntry.time, WaitlistEntry.service)
            .filter(
                and_(
                    WaitlistEntry.status == WaitlistStatus.WAITING,
                    WaitlistEntry.date >= from_date,
                )
            )
            .distinct()
            .order_by(WaitlistEntry.date, WaitlistEntry.time)
            .limit(limit)
            .all()
        )
