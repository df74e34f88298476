"""
Membership tiers and the booking rules attached to each one.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class MembershipTier(str, enum.Enum):
    BASIC = "basic"
    PLUS = "plus"


@dataclass(frozen=True)
class MembershipRules:
    cancel_min_hours: int
    cancel_limit: int
    credits_expire_days: int


TIER_RULES = {
    MembershipTier.BASIC: MembershipRules(cancel_min_hours=24, cancel_limit=1, credits_expire_days=30),
    MembershipTier.PLUS: MembershipRules(cancel_min_hours=12, cancel_limit=2, credits_expire_days=40),
}


@dataclass(frozen=True)
class Membership:
    """A user's membership. Plus only applies while ``active_until`` is in the future."""

    tier: MembershipTier = MembershipTier.BASIC
    active_until: Optional[datetime] = None

    def __post_init__(self):
        if self.tier == MembershipTier.PLUS and self.active_until is None:
            raise ValueError("Plus membership requires an expiry date")

    def effective_tier(self, now: datetime) -> MembershipTier:
        if self.tier == MembershipTier.PLUS and self.active_until and self.active_until > now:
            return MembershipTier.PLUS
        return MembershipTier.BASIC

    def is_plus_active(self, now: datetime) -> bool:
        return self.effective_tier(now) == MembershipTier.PLUS

    def rules(self, now: datetime) -> MembershipRules:
        return TIER_RULES[self.effective_tier(now)]
