"""
Timestamp helpers shared by the ledger components.

All timestamps are stored and compared in UTC. SQLite hands DateTime columns
back without tzinfo, so values read from storage go through as_utc().
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MonotonicClock:
    """
    Wall clock that never goes backwards or repeats within a process.

    When the system clock has not advanced past the last issued value (coarse
    resolution, NTP step back) the next value is bumped by one microsecond.
    """

    _STEP = timedelta(microseconds=1)

    def __init__(self):
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        with self._lock:
            current = utc_now()
            if self._last is not None and current <= self._last:
                current = self._last + self._STEP
            self._last = current
            return current


# Process-wide instance used for recorded_at / created_at
ledger_clock = MonotonicClock()
