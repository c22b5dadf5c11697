"""Metrics Engine -- sliding-window behaviour metrics per reader.

Window model
────────────
    Each reader keeps ONE time-ordered log of admitted events.  Every
    configured ``window_sec`` owns a cursor into that log: entries before
    the cursor are older than ``now - window_sec`` and no longer count,
    entries from the cursor on are live.  Cursors only move forward; the
    shared log prefix that every cursor has passed is dropped in bulk.

    "now" comes from the injected clock and never regresses per reader, so
    an event arriving late is slotted into its timestamp position and
    either counted (inside the window) or skipped (already expired).

Metrics computed per (reader, window_sec)
─────────────────────────────────────────
  attempts   live entries
  failures   live entries whose outcome was not a success
  aps        ``attempts / window_sec``
  fr         ``failures / attempts``, 0 with no attempts
  uds        ``distinct credentials / attempts``
  tv         population variance of consecutive inter-arrival gaps,
             seconds²; 0 with fewer than two entries

    Gaps are tracked as integer microseconds with running sum and sum of
    squares, so ``tv`` is exact and updated in O(1) per insert/evict.
"""

from __future__ import annotations

import logging
import threading
from bisect import bisect_right
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping

from accesswatch.contracts.access_control import normalize_credential
from accesswatch.contracts.event import ClassifiedEvent
from accesswatch.contracts.metric_window import MetricWindow
from accesswatch.shared.clock import Clock, system_clock

log = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_US = timedelta(microseconds=1)
_US_PER_SEC = 1_000_000


def _to_us(dt: datetime) -> int:
    return (dt - _EPOCH) // _US


@dataclass(slots=True)
class _Entry:
    ts: int             # microseconds since epoch
    credential: str
    success: bool
    context: Mapping[str, str]


class _Cursor:
    """Running aggregates for one window over the reader's log."""

    __slots__ = ("window_sec", "span", "head", "attempts", "failures", "creds",
                 "gap_sum", "gap_sq")

    def __init__(self, window_sec: int) -> None:
        self.window_sec = window_sec
        self.span = window_sec * _US_PER_SEC
        self.head = 0
        self.attempts = 0
        self.failures = 0
        self.creds: Counter[str] = Counter()
        self.gap_sum = 0
        self.gap_sq = 0

    def _add_gap(self, gap: int, sign: int) -> None:
        self.gap_sum += sign * gap
        self.gap_sq += sign * gap * gap

    def _count(self, entry: _Entry, sign: int) -> None:
        self.attempts += sign
        if not entry.success:
            self.failures += sign
        if entry.credential:
            self.creds[entry.credential] += sign
            if self.creds[entry.credential] <= 0:
                del self.creds[entry.credential]

    def evict(self, entries: list[_Entry], cutoff: int) -> None:
        while self.head < len(entries) and entries[self.head].ts < cutoff:
            old = entries[self.head]
            if self.head + 1 < len(entries):
                self._add_gap(entries[self.head + 1].ts - old.ts, -1)
            self._count(old, -1)
            self.head += 1

    def place(self, entries: list[_Entry], idx: int, entry: _Entry, cutoff: int) -> bool:
        """Account for *entry* about to be inserted at *idx*.

        Must run before the list insert.  Returns True when the entry is
        live for this window.
        """
        if entry.ts < cutoff:
            # Sorted position is at or before the cursor: already expired
            self.head += 1
            return False
        prev = entries[idx - 1] if idx - 1 >= self.head else None
        nxt = entries[idx] if idx < len(entries) else None
        if prev is not None and nxt is not None:
            self._add_gap(nxt.ts - prev.ts, -1)
        if prev is not None:
            self._add_gap(entry.ts - prev.ts, +1)
        if nxt is not None:
            self._add_gap(nxt.ts - entry.ts, +1)
        self._count(entry, +1)
        return True

    def variance(self) -> float:
        n = self.attempts - 1
        if n <= 0:
            return 0.0
        # Var = (n·Σg² − (Σg)²) / n², computed on exact integers
        num = n * self.gap_sq - self.gap_sum * self.gap_sum
        return max(num, 0) / (n * n) / (_US_PER_SEC * _US_PER_SEC)

    def snapshot(self, reader_id: str) -> MetricWindow:
        attempts = self.attempts
        if attempts == 0:
            return MetricWindow(reader_id=reader_id, window_sec=self.window_sec)
        return MetricWindow(
            reader_id=reader_id,
            window_sec=self.window_sec,
            attempts=attempts,
            failures=self.failures,
            aps=attempts / self.window_sec,
            fr=self.failures / attempts,
            uds=len(self.creds) / attempts,
            tv=self.variance(),
        )


class _ReaderLog:
    __slots__ = ("reader_id", "lock", "entries", "stamps", "cursors", "now")

    def __init__(self, reader_id: str, windows: Iterable[int]) -> None:
        self.reader_id = reader_id
        self.lock = threading.RLock()
        self.entries: list[_Entry] = []
        self.stamps: list[int] = []
        self.cursors = [_Cursor(w) for w in windows]
        self.now = 0

    def advance(self, now: int) -> None:
        if now > self.now:
            self.now = now
        for c in self.cursors:
            c.evict(self.entries, self.now - c.span)
        self._compact()

    def insert(self, entry: _Entry) -> list[_Cursor]:
        idx = bisect_right(self.stamps, entry.ts)
        touched = [
            c for c in self.cursors
            if c.place(self.entries, idx, entry, self.now - c.span)
        ]
        self.entries.insert(idx, entry)
        self.stamps.insert(idx, entry.ts)
        self._compact()
        return touched

    def _compact(self) -> None:
        low = min(c.head for c in self.cursors)
        if low and low * 2 >= len(self.entries):
            del self.entries[:low]
            del self.stamps[:low]
            for c in self.cursors:
                c.head -= low


# ═══════════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════════


class MetricsAggregator:
    """Per-reader sliding windows over classified events.

    Admits for one reader are mutually exclusive; different readers never
    contend beyond the brief registry lookup.
    """

    def __init__(self, windows: Iterable[int], clock: Clock = system_clock) -> None:
        ws = sorted(set(windows))
        if not ws:
            raise ValueError("at least one window size is required")
        for w in ws:
            if isinstance(w, bool) or not isinstance(w, int) or w <= 0:
                raise ValueError(f"window_sec must be a positive integer, got {w!r}")
        self._windows = tuple(ws)
        self._clock = clock
        self._readers: dict[str, _ReaderLog] = {}
        self._registry_lock = threading.Lock()

    @property
    def windows(self) -> tuple[int, ...]:
        return self._windows

    def _reader(self, reader_id: str, create: bool) -> _ReaderLog | None:
        log_ = self._readers.get(reader_id)
        if log_ is not None or not create:
            return log_
        with self._registry_lock:
            log_ = self._readers.get(reader_id)
            if log_ is None:
                log_ = _ReaderLog(reader_id, self._windows)
                self._readers[reader_id] = log_
                log.debug("New reader %s (windows=%s)", reader_id, list(self._windows))
            return log_

    def _now(self) -> int:
        return _to_us(self._clock())

    def admit(
        self,
        event: ClassifiedEvent,
        on_update: Callable[[list[MetricWindow]], None] | None = None,
    ) -> list[MetricWindow]:
        """Add *event* to every window of its reader.

        Returns snapshots of the windows the event landed in (an event
        older than a window contributes nothing to it).  *on_update* runs
        with the same snapshots while the reader is still locked, so rule
        evaluation observes exactly this admit's state.
        """
        rlog = self._reader(event.reader_id, create=True)
        entry = _Entry(
            ts=_to_us(event.event.timestamp),
            credential=normalize_credential(event.credential_id),
            success=event.success,
            context=event.event.context,
        )
        with rlog.lock:
            rlog.advance(self._now())
            touched = rlog.insert(entry)
            updated = [c.snapshot(rlog.reader_id) for c in touched]
            if updated and on_update is not None:
                on_update(updated)
        return updated

    def snapshot(self, reader_id: str, window_sec: int) -> MetricWindow:
        if window_sec not in self._windows:
            raise ValueError(f"window_sec {window_sec} is not configured")
        rlog = self._reader(reader_id, create=False)
        if rlog is None:
            return MetricWindow(reader_id=reader_id, window_sec=window_sec)
        with rlog.lock:
            rlog.advance(self._now())
            cursor = next(c for c in rlog.cursors if c.window_sec == window_sec)
            return cursor.snapshot(reader_id)

    def merged_context(self, reader_id: str, window_sec: int) -> dict[str, str]:
        """Union of the live events' context; later events win on conflicts."""
        rlog = self._reader(reader_id, create=False)
        if rlog is None:
            return {}
        merged: dict[str, str] = {}
        with rlog.lock:
            cursor = next(c for c in rlog.cursors if c.window_sec == window_sec)
            for entry in rlog.entries[cursor.head:]:
                merged.update(entry.context)
        return merged

    def snapshot_reader(self, reader_id: str) -> list[MetricWindow] | None:
        """All windows of one reader, by window_sec; None if never seen."""
        rlog = self._reader(reader_id, create=False)
        if rlog is None:
            return None
        with rlog.lock:
            rlog.advance(self._now())
            return [c.snapshot(reader_id) for c in rlog.cursors]

    def snapshot_all(self) -> dict[str, list[MetricWindow]]:
        out: dict[str, list[MetricWindow]] = {}
        for reader_id in sorted(self.reader_ids()):
            windows = self.snapshot_reader(reader_id)
            if windows is not None:
                out[reader_id] = windows
        return out

    def reader_ids(self) -> list[str]:
        with self._registry_lock:
            return list(self._readers)

    def clear(self) -> None:
        """Drop every reader's windows; the next admit starts from empty."""
        with self._registry_lock:
            dropped = len(self._readers)
            self._readers = {}
        log.info("Metrics cleared (%d readers dropped)", dropped)
