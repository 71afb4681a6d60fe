"""Timestamp helpers for the action log.

All stored timestamps are UTC ISO-8601 strings with microsecond precision,
so that lexicographic order matches chronological order.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from threading import Lock


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as a fixed-width UTC ISO-8601 string.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime.

    Accepts the trailing ``Z`` form written by other clients as well.

    Raises:
        ValueError: If the string is not ISO-8601.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class MonotonicClock:
    """Hands out timestamps that never go backwards within this process.

    If the wall clock steps back (NTP correction, VM resume), the last issued
    value is repeated until real time catches up again.
    """

    def __init__(self, source: Callable[[], datetime] = utcnow) -> None:
        self._source = source
        self._last: datetime | None = None
        self._lock = Lock()

    def now(self) -> datetime:
        with self._lock:
            current = self._source()
            if current.tzinfo is None:
                current = current.replace(tzinfo=UTC)
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
            return current


_default_clock: MonotonicClock | None = None


def default_clock() -> MonotonicClock:
    """Process-wide clock shared by every tracker."""
    global _default_clock
    if _default_clock is None:
        _default_clock = MonotonicClock()
    return _default_clock
