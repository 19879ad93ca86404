"""
Monotonic wall clock for change-log timestamps.

Wall-clock time is clamped so every timestamp handed out is strictly greater
than the previous one, even if the system clock steps backwards or two
mutations land in the same microsecond. Timestamps are timezone-aware UTC.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO 8601 string or datetime into aware UTC. Returns None if absent."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def format_timestamp(value: datetime) -> str:
    """ISO 8601 with millisecond precision and a trailing Z."""
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class MonotonicClock:
    """Thread-safe, strictly increasing UTC clock."""

    def __init__(self, wall: Callable[[], datetime] = utcnow):
        self._wall = wall
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        with self._lock:
            current = as_utc(self._wall())
            if self._last is not None and current <= self._last:
                current = self._last + TICK
            self._last = current
            return current

    def observe(self, seen: datetime) -> None:
        """Never hand out a timestamp at or before `seen` (e.g. newest persisted entry)."""
        seen = as_utc(seen)
        with self._lock:
            if self._last is None or seen > self._last:
                self._last = seen
