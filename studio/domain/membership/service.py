"""Membership service - Starting and extending plus memberships"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ...config import CANCELLATION_WINDOW_DAYS
from ...errors import NotFoundError, ValidationError
from ...models import User
from ...shared.clock import Clock
from ..users.repository import UserRepository
from .rules import MembershipTier

logger = logging.getLogger(__name__)


def start_or_extend_membership(user: User, tier, days: int, now: datetime) -> User:
    """
    Move a user onto ``tier``.

    Plus extends from the current expiry while it is still running, otherwise
    from ``now``. Basic clears the expiry. Lots already granted keep the expiry
    they were issued with.
    """
    try:
        tier = MembershipTier(tier)
    except ValueError:
        raise ValidationError(f"Unknown membership tier: {tier}", field="tier") from None

    if tier == MembershipTier.PLUS:
        if days <= 0:
            raise ValidationError("Membership length must be at least one day", field="days")
        membership = user.membership
        base = membership.active_until if membership.is_plus_active(now) else now
        user.membership_tier = MembershipTier.PLUS
        user.membership_active_until = base + timedelta(days=days)
    else:
        user.membership_tier = MembershipTier.BASIC
        user.membership_active_until = None

    window_start = user.cancellation_window_started_at
    if window_start is None or now >= window_start + timedelta(days=CANCELLATION_WINDOW_DAYS):
        user.cancellation_window_started_at = now
        user.cancellations_used = 0

    return user


class MembershipService:
    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.users = UserRepository()

    def set_membership(self, admin: User, user_id: str, tier, days: int) -> User:
        user = self.users.get_by_id(self.db, user_id)
        if not user:
            raise NotFoundError("User not found")

        now = self.clock.now()
        start_or_extend_membership(user, tier, days, now)
        self.users.add_history(self.db, user, "membership_started", now)
        self.db.commit()
        self.db.refresh(user)

        logger.info(
            f"🎫 Admin {admin.id} set {user.id} to {user.membership_tier.value}"
            f" until {user.membership_active_until}"
        )
        return user

    def describe(self, user: User) -> dict:
        """Effective tier right now and the rules that come with it"""
        now = self.clock.now()
        membership = user.membership
        rules = membership.rules(now)
        return {
            "tier": membership.tier.value,
            "effective_tier": membership.effective_tier(now).value,
            "active_until": membership.active_until,
            "cancel_min_hours": rules.cancel_min_hours,
            "cancel_limit": rules.cancel_limit,
            "credits_expire_days": rules.credits_expire_days,
            "cancellations_used": user.cancellations_used or 0,
            "cancellation_window_started_at": user.cancellation_window_started_at,
        }
