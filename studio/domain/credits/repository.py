"""Credit repository - Database operations for credit lots"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import CreditLot


class CreditRepository:
    """Repository for credit lot database operations"""

    @staticmethod
    def get_lots(db: Session, user_id: str) -> list[CreditLot]:
        """All lots of a user, newest first"""
        return (
            db.query(CreditLot)
            .filter(CreditLot.user_id == user_id)
            .order_by(CreditLot.created_at.desc(), CreditLot.id)
            .all()
        )

    @staticmethod
    def get_lot(db: Session, lot_id: str) -> Optional[CreditLot]:
        return db.query(CreditLot).filter(CreditLot.id == lot_id).first()
