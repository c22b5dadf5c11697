"""Time sources for the engine.

Everything that needs "now" takes a zero-argument callable returning an
aware UTC datetime, so live runs, event-file replays and tests differ only
in the clock they pass in.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


class ReplayClock:
    """Event-time clock: reads as the latest timestamp it has been advanced to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime.fromtimestamp(0, tz=timezone.utc)
        self._lock = threading.Lock()

    def advance_to(self, ts: datetime) -> None:
        with self._lock:
            if ts > self._now:
                self._now = ts

    def __call__(self) -> datetime:
        return self._now


class ManualClock:
    """Clock driven explicitly by the caller."""

    def __init__(self, start: datetime) -> None:
        self._now = start

    def set(self, ts: datetime) -> None:
        self._now = ts

    def advance(self, seconds: float) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now

    def __call__(self) -> datetime:
        return self._now
