"""Credit service - Grants and balance views on top of the ledger"""

import logging

from sqlalchemy.orm import Session

from ...errors import NotFoundError
from ...models import CreditLot, User
from ...shared.clock import Clock
from ..catalog import ServiceKey
from ..users.repository import UserRepository
from . import ledger
from .repository import CreditRepository

logger = logging.getLogger(__name__)


class CreditService:
    """Service layer for credit grants and balances"""

    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.repo = CreditRepository()
        self.users = UserRepository()

    def grant(self, admin: User, user_id: str, amount: int, service_scope, source: str = "admin") -> CreditLot:
        """Add a lot to a member's balance"""
        user = self.users.get_by_id(self.db, user_id)
        if not user:
            raise NotFoundError("User not found")

        now = self.clock.now()
        lot = ledger.add_lot(user, amount, service_scope, source, now)
        self.users.add_history(self.db, user, "credits_granted", now, service=lot.service_scope.value)
        self.db.commit()
        self.db.refresh(lot)

        logger.info(f"💳 Admin {admin.id} granted {amount} credits ({lot.service_scope.value}) to {user.id}")
        return lot

    def balance(self, user: User) -> dict:
        """Spendable total, per-service availability and every lot on file"""
        now = self.clock.now()
        total = ledger.recalc(user, now)
        self.db.commit()

        return {
            "total": total,
            "by_service": {s.value: ledger.sum_for_service(user, s, now) for s in ServiceKey},
            "lots": [
                {
                    "id": lot.id,
                    "service_scope": lot.service_scope.value,
                    "amount": lot.amount,
                    "remaining": lot.remaining,
                    "expires_at": lot.expires_at,
                    "source": lot.source,
                    "created_at": lot.created_at,
                    "spendable": ledger.is_spendable(lot, now),
                }
                for lot in self.repo.get_lots(self.db, user.id)
            ],
        }
