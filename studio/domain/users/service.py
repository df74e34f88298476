"""User service - Profile and history of a member"""

from sqlalchemy.orm import Session

from ...models import User, UserHistory
from ...shared.clock import Clock
from ..credits import ledger
from .repository import UserRepository


class UserService:
    """Service layer for the signed-in member's own data"""

    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.repo = UserRepository()

    def profile(self, user: User) -> dict:
        """Profile fields with the cached balance refreshed first"""
        ledger.recalc(user, self.clock.now())
        self.db.commit()

        return {
            "id": user.id,
            "name": user.name,
            "last_name": user.last_name or "",
            "email": user.email,
            "phone": user.phone,
            "role": user.role,
            "suspended": bool(user.suspended),
            "credits": user.credits,
            "membership_tier": user.membership_tier.value,
            "membership_active_until": user.membership_active_until,
            "medical_clearance_status": user.medical_clearance_status,
            "has_medical_clearance": user.has_medical_clearance,
            "created_at": user.created_at,
        }

    def history(self, user: User, limit: int = 100) -> list[UserHistory]:
        return self.repo.get_history(self.db, user.id, limit=limit)
