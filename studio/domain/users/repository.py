"""User repository - Database operations for users and their history"""

from datetime import date, datetime, time
from typing import Optional

from sqlalchemy.orm import Session

from ...models import User, UserHistory


class UserRepository:
    """Repository for user database operations"""

    @staticmethod
    def get_by_id(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def add_history(
        db: Session,
        user: User,
        action: str,
        now: datetime,
        slot_date: Optional[date] = None,
        slot_time: Optional[time] = None,
        service: Optional[str] = None,
    ) -> UserHistory:
        """Append an entry to the user's history (flushed with the caller's transaction)"""
        entry = UserHistory(
            user_id=user.id,
            action=action,
            date=slot_date,
            time=slot_time,
            service=service,
            created_at=now,
        )
        db.add(entry)
        return entry

    @staticmethod
    def get_history(db: Session, user_id: str, limit: int = 100) -> list[UserHistory]:
        """Most recent history entries first"""
        return (
            db.query(UserHistory)
            .filter(UserHistory.user_id == user_id)
            .order_by(UserHistory.created_at.desc(), UserHistory.id.desc())
            .limit(limit)
            .all()
        )
