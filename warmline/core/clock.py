"""Injectable wall clock.

Every "now" in the throttle, dormancy and scheduling logic comes from a
Clock so tests can move time forward deterministically.

All datetimes are timezone-aware UTC. Naive datetimes handed to the
helpers below are assumed to already be UTC.

Usage:
    from warmline.core.clock import ManualClock

    clock = ManualClock(datetime(2026, 3, 1, tzinfo=timezone.utc))
    clock.advance(days=7)
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Anything that can tell the current UTC time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Real wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to. Used by tests and simulations."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_utc(start or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, when: datetime) -> None:
        """Jump to an absolute time."""
        with self._lock:
            self._now = ensure_utc(when)

    def advance(self, days: float = 0, hours: float = 0, minutes: float = 0) -> datetime:
        """Move forward and return the new time."""
        with self._lock:
            self._now = self._now + timedelta(days=days, hours=hours, minutes=minutes)
            return self._now


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Serialize a datetime for storage.

    Fixed-width ISO strings with microseconds so that lexical order in
    SQLite matches chronological order.
    """
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))
