"""Injectable time source. All expiry, window and capacity checks read from here."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from ..config import VENUE_TIMEZONE


class Clock:
    """Wall clock in venue-local time (naive datetimes)."""

    def __init__(self, timezone: str = VENUE_TIMEZONE):
        self.tz = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None, microsecond=0)


class FrozenClock(Clock):
    """Clock pinned to a fixed instant; used by tests and replays."""

    def __init__(self, at: datetime):
        self._now = at

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, at: datetime) -> None:
        self._now = at


_default_clock = Clock()


def get_clock() -> Clock:
    """FastAPI dependency; tests override it with a FrozenClock."""
    return _default_clock
