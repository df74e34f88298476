"""
Slot capacity engine.

Pure functions: given the appointments already reserved at a slot and how far
away the slot is, work out how many more seats each service can take. Nothing
here touches the database, and results must be recomputed at every decision
point because the elastic cap moves as the slot approaches.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from ...config import ELASTIC_BASE_CAP, ELASTIC_NEAR_SLOT_HOURS, TOTAL_CAPACITY
from ..catalog import ServiceKey, is_elastic


@dataclass(frozen=True)
class CapacityPolicy:
    total_capacity: int = TOTAL_CAPACITY
    elastic_base_cap: int = ELASTIC_BASE_CAP
    near_slot_hours: float = ELASTIC_NEAR_SLOT_HOURS


DEFAULT_POLICY = CapacityPolicy()


def compute_elastic_cap(
    hours_to_start: float, other_single_seat_reserved: int, policy: CapacityPolicy = DEFAULT_POLICY
) -> int:
    """
    Seat cap for the elastic service.

    Far from the slot the cap is the base cap. Inside the near-slot window it
    opens to the whole room when no single-seat service is booked, and to the
    room minus one when exactly one is. Seats held by single-seat services are
    never available to the elastic service.
    """
    cap = policy.elastic_base_cap

    if hours_to_start <= policy.near_slot_hours:
        if other_single_seat_reserved == 0:
            cap = policy.total_capacity
        elif other_single_seat_reserved == 1:
            cap = policy.total_capacity - 1

    cap = min(cap, policy.total_capacity - other_single_seat_reserved)
    return max(cap, 0)


@dataclass(frozen=True)
class SlotMetrics:
    counts: dict = field(default_factory=dict)
    elastic_count: int = 0
    single_seat_reserved: int = 0
    total_reserved: int = 0
    elastic_cap: int = 0
    hours_to_start: float = 0.0
    total_capacity: int = TOTAL_CAPACITY

    @property
    def total_has_room(self) -> bool:
        return self.total_reserved < self.total_capacity

    @property
    def elastic_has_room(self) -> bool:
        return self.total_has_room and self.elastic_count < self.elastic_cap

    def is_taken(self, service: ServiceKey) -> bool:
        """Single-seat service already occupied"""
        return not is_elastic(service) and self.counts.get(service, 0) > 0

    def seats_available(self, service: ServiceKey) -> int:
        """Seats of ``service`` that can still be booked right now"""
        room = max(self.total_capacity - self.total_reserved, 0)
        if is_elastic(service):
            return min(max(self.elastic_cap - self.elastic_count, 0), room)
        if self.is_taken(service):
            return 0
        return min(1, room)


def _service_of(appointment) -> ServiceKey:
    service = getattr(appointment, "service", appointment)
    return service if isinstance(service, ServiceKey) else ServiceKey(service)


def analyze_slot(
    reserved_appointments: Iterable,
    slot_start: datetime,
    now: datetime,
    policy: CapacityPolicy = DEFAULT_POLICY,
) -> SlotMetrics:
    """
    Build the metrics for one slot.

    Args:
        reserved_appointments: Reserved appointments (or bare service keys) at the slot
        slot_start: Slot start in venue-local time
        now: Current venue-local time
    """
    counts = Counter(_service_of(a) for a in reserved_appointments)
    elastic_count = sum(n for service, n in counts.items() if is_elastic(service))
    single_seat = sum(1 for service, n in counts.items() if not is_elastic(service) and n > 0)
    total = sum(counts.values())
    hours = (slot_start - now).total_seconds() / 3600

    return SlotMetrics(
        counts=dict(counts),
        elastic_count=elastic_count,
        single_seat_reserved=single_seat,
        total_reserved=total,
        elastic_cap=compute_elastic_cap(hours, single_seat, policy),
        hours_to_start=hours,
        total_capacity=policy.total_capacity,
    )
