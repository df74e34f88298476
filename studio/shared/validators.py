"""Shared validation utilities"""

from datetime import date, datetime, time, timedelta
from typing import Optional

from ..domain.catalog import ServiceKey, is_elastic
from ..errors import ValidationError

# Service hours by shift (start hours, inclusive); afternoon is Personal Training only
MORNING_HOURS = range(7, 13)
AFTERNOON_HOURS = range(14, 18)
EVENING_HOURS = range(18, 21)
SATURDAY_HOURS = range(8, 13)


def shift_for_time(slot_time: time) -> Optional[str]:
    """Return the shift name ("morning", "afternoon", "evening") or None outside service hours."""
    if slot_time.hour in MORNING_HOURS:
        return "morning"
    if slot_time.hour in AFTERNOON_HOURS:
        return "afternoon"
    if slot_time.hour in EVENING_HOURS:
        return "evening"
    return None


def validate_service_hours(slot_date: date, slot_time: time, service: ServiceKey) -> None:
    """
    Check that a slot falls within the studio's service hours.

    Raises:
        ValidationError: If the time is off the hour, outside every shift,
            outside Saturday hours, or an afternoon slot for a single-seat service
    """
    if slot_time.minute or slot_time.second:
        raise ValidationError("Appointments start on the hour", field="time")

    shift = shift_for_time(slot_time)
    if not shift:
        raise ValidationError("Time is outside service hours", field="time")

    if slot_date.weekday() == 5 and slot_time.hour not in SATURDAY_HOURS:
        raise ValidationError("On Saturdays appointments run from 08:00 to 12:00", field="time")

    if shift == "afternoon" and not is_elastic(service):
        raise ValidationError(
            "Only Personal Training is available in the afternoon shift", field="service"
        )


def slot_start(slot_date: date, slot_time: time) -> datetime:
    return datetime.combine(slot_date, slot_time)


def hours_until(start: datetime, now: datetime) -> float:
    return (start - now).total_seconds() / 3600


def validate_booking_window(slot_date: date, slot_time: time, now: datetime, advance_days: int) -> datetime:
    """
    Check the slot is in the future and inside the advance-booking window.

    Returns:
        The slot start as a naive venue-local datetime
    """
    start = slot_start(slot_date, slot_time)
    if start < now:
        raise ValidationError("Cannot book a slot in the past", field="date")
    if slot_date > now.date() + timedelta(days=advance_days):
        raise ValidationError(
            f"Appointments can be booked up to {advance_days} days in advance", field="date"
        )
    return start
