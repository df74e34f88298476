"""
Credit ledger - expiring, service-scoped credit lots per user.

A user's balance is never stored as a bare number: it is the sum of the
``remaining`` credits on every lot that is still spendable. Expiry is lazy,
expired lots are kept for the record and simply ignored. ``user.credits`` is a
cache that every mutation refreshes through ``recalc``.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from ...errors import InsufficientCreditsError, LedgerIntegrityError, ValidationError
from ...models import CreditLot, User, generate_id
from ..catalog import CreditScope, ServiceKey

logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max


def _parse_scope(value) -> CreditScope:
    if isinstance(value, CreditScope):
        return value
    try:
        return CreditScope(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown credit scope: {value}", field="service_scope") from None


def is_spendable(lot: CreditLot, now: datetime) -> bool:
    """Positive remaining and not expired at ``now``"""
    return (lot.remaining or 0) > 0 and (lot.expires_at is None or lot.expires_at > now)


def _covers(lot: CreditLot, service: ServiceKey) -> bool:
    return lot.service_scope == CreditScope.ALL or lot.service_scope.value == service.value


def recalc(user: User, now: datetime) -> int:
    """Recompute and cache the user's spendable balance"""
    total = sum(lot.remaining for lot in user.credit_lots if is_spendable(lot, now))
    user.credits = total
    return total


def sum_for_service(user: User, service: ServiceKey, now: datetime) -> int:
    """Credits that can pay for ``service`` (its own lots plus ALL lots)"""
    return sum(
        lot.remaining for lot in user.credit_lots if is_spendable(lot, now) and _covers(lot, service)
    )


def add_lot(user: User, amount: int, service_scope, source: str, now: datetime) -> CreditLot:
    """
    Grant a new lot of credits.

    The expiry is frozen from the membership rules in effect right now: a later
    tier change does not move it.

    Raises:
        ValidationError: If amount is not positive or the scope is unknown
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("Credit amount must be a positive integer", field="amount")
    scope = _parse_scope(service_scope)

    expire_days = user.membership.rules(now).credits_expire_days
    lot = CreditLot(
        id=generate_id(),
        service_scope=scope,
        amount=amount,
        remaining=amount,
        expires_at=now + timedelta(days=expire_days),
        source=source or "",
        created_at=now,
    )
    user.credit_lots.append(lot)
    recalc(user, now)
    logger.info(f"💳 Granted {amount} {scope.value} credits to user {user.id} (expires {lot.expires_at})")
    return lot


def _pick_order(lot: CreditLot, service: ServiceKey):
    exact_first = 0 if lot.service_scope.value == service.value else 1
    expiry = lot.expires_at or _FAR_FUTURE
    created = lot.created_at or _FAR_FUTURE
    return (exact_first, lot.expires_at is None, expiry, created, lot.id or "")


def pick_lot_to_consume(user: User, service: ServiceKey, now: datetime) -> Optional[CreditLot]:
    """
    Choose the lot a booking of ``service`` should be paid from.

    Lots scoped to the service come before ALL lots; within each group the
    soonest expiry wins (no expiry sorts last) and the oldest lot breaks ties.
    Read-only: the caller decrements.
    """
    eligible = [lot for lot in user.credit_lots if is_spendable(lot, now) and _covers(lot, service)]
    if not eligible:
        return None
    return min(eligible, key=lambda lot: _pick_order(lot, service))


def consume(user: User, amount: int, service: ServiceKey, now: datetime) -> list[CreditLot]:
    """
    Debit ``amount`` credits for ``service`` across as many lots as needed.

    Returns:
        The lots that were debited, in debit order

    Raises:
        InsufficientCreditsError: If the spendable balance for the service is short
    """
    if amount <= 0:
        raise ValidationError("Credit amount must be positive", field="amount")
    available = sum_for_service(user, service, now)
    if available < amount:
        raise InsufficientCreditsError(available=available, required=amount)

    debited = []
    left = amount
    while left > 0:
        lot = pick_lot_to_consume(user, service, now)
        take = min(left, lot.remaining)
        lot.remaining -= take
        left -= take
        debited.append(lot)

    recalc(user, now)
    return debited


def refund(user: User, lot_id: str, amount: int, now: datetime) -> CreditLot:
    """
    Return credits to the lot they were taken from.

    The lot keeps its original expiry and never exceeds its granted amount.

    Raises:
        LedgerIntegrityError: If the lot no longer exists
    """
    lot = next((lot for lot in user.credit_lots if lot.id == lot_id), None)
    if lot is None:
        logger.error(f"❌ Refund for user {user.id} references missing credit lot {lot_id}")
        raise LedgerIntegrityError(lot_id=lot_id)

    lot.remaining = min(lot.amount, lot.remaining + amount)
    recalc(user, now)
    return lot
