"""Pipeline — orchestrator: event → access decision → windows → rules → store.

``AccessEngine`` is the single entry point ingestion paths call.  Any
number of threads may call :meth:`AccessEngine.process` concurrently;
events for one reader are serialised by the aggregator's per-reader lock,
which also covers rule evaluation for that reader.

Event files (CSV or JSONL of already-normalised events) can be replayed
through a fresh engine on an event-time clock with :func:`replay`.
"""

from __future__ import annotations

import csv
import json
import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping

from accesswatch.analyzer.access_policy import PolicyHolder, evaluate
from accesswatch.analyzer.detector import Cooldown, RuleEngine
from accesswatch.analyzer.metrics import MetricsAggregator
from accesswatch.analyzer.store import AlertMetricStore, parse_clear_target
from accesswatch.contracts.access_control import AccessControlConfig, normalize_credential
from accesswatch.contracts.alert import Alert
from accesswatch.contracts.enums import ClearTarget, Decision, RawResult, Severity
from accesswatch.contracts.event import AccessEvent, ClassifiedEvent, format_ts, parse_ts
from accesswatch.contracts.metric_window import MetricWindow
from accesswatch.shared.clock import Clock, ReplayClock, system_clock
from accesswatch.shared.config_loader import atomic_write, update_yaml_section
from accesswatch.shared.errors import ConfigInvalidError
from accesswatch.shared.settings import INGEST_PATHS, Settings, load_settings

log = logging.getLogger(__name__)

_DEDUPE_COMPACT_AT = 10_000
_STREAK_LIMIT = 50_000

_ACCESS_ALERTS = {
    Decision.DENIED_BLACKLIST: ("blacklisted_credential", Severity.CRITICAL),
    Decision.DENIED_NOT_WHITELISTED: ("whitelist_violation", Severity.HIGH),
}


# ═══════════════════════════════════════════════════════════════════════════
#  Event loaders
# ═══════════════════════════════════════════════════════════════════════════

_EVENT_FIELDS = ("timestamp", "reader_id", "credential_id", "raw_result", "context")


def event_from_dict(row: Mapping[str, Any]) -> AccessEvent:
    """Build an AccessEvent from a CSV row or JSON object.

    Columns other than the four core fields are folded into ``context``.

    Raises ValueError on a missing reader, unparsable timestamp or unknown
    raw_result.
    """
    reader = str(row.get("reader_id") or "").strip()
    if not reader:
        raise ValueError("missing reader_id")
    ts_raw = row.get("timestamp")
    if not ts_raw:
        raise ValueError("missing timestamp")
    ts = parse_ts(str(ts_raw))
    result = RawResult(str(row.get("raw_result", "")).strip().lower())

    context: dict[str, str] = {}
    nested = row.get("context")
    if isinstance(nested, Mapping):
        context.update({str(k): str(v) for k, v in nested.items()})
    for key, value in row.items():
        if key not in _EVENT_FIELDS and value not in (None, ""):
            context[str(key)] = str(value)

    return AccessEvent(
        reader_id=reader,
        credential_id=str(row.get("credential_id") or "").strip(),
        timestamp=ts,
        raw_result=result,
        context=context,
    )


@dataclass
class LoadReport:
    """Events parsed from a file plus the number of records dropped."""

    events: list[AccessEvent] = field(default_factory=list)
    dropped: int = 0


def load_events_csv(path: str) -> LoadReport:
    """Load events from a CSV file with a header row."""
    report = LoadReport()
    with open(path, encoding="utf-8", newline="") as fh:
        for line_no, row in enumerate(csv.DictReader(fh), 2):
            try:
                report.events.append(event_from_dict(row))
            except ValueError as exc:
                report.dropped += 1
                log.warning("Skipping CSV line %d: %s", line_no, exc)
    log.info("Loaded %d events from CSV: %s (%d dropped)", len(report.events), path, report.dropped)
    return report


def load_events_jsonl(path: str) -> LoadReport:
    """Load events from a JSONL (one JSON object per line) file."""
    report = LoadReport()
    with open(path, encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, 1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
                if not isinstance(obj, dict):
                    raise ValueError("not a JSON object")
                report.events.append(event_from_dict(obj))
            except ValueError as exc:
                # json.JSONDecodeError is a ValueError too
                report.dropped += 1
                log.warning("Skipping JSONL line %d: %s", line_no, exc)
    log.info("Loaded %d events from JSONL: %s (%d dropped)", len(report.events), path, report.dropped)
    return report


def load_events(path: str) -> LoadReport:
    """Auto-detect format by file extension and load events."""
    p = Path(path)
    if p.suffix in (".jsonl", ".ndjson"):
        return load_events_jsonl(path)
    return load_events_csv(path)


# ═══════════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════════


class _Gate:
    """Many concurrent admits, or one exclusive reset, never both.

    Admits arriving while a reset holds the gate wait for it and then run
    against the fresh state.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._active = 0
        self._closed = False

    @contextmanager
    def shared(self) -> Iterator[None]:
        with self._cond:
            while self._closed:
                self._cond.wait()
            self._active += 1
        try:
            yield
        finally:
            with self._cond:
                self._active -= 1
                if not self._active:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._cond:
            while self._closed:
                self._cond.wait()
            self._closed = True
            while self._active:
                self._cond.wait()
        try:
            yield
        finally:
            with self._cond:
                self._closed = False
                self._cond.notify_all()


def clamp_timestamp(ts: datetime, now: datetime, max_past: float, max_future: float) -> datetime:
    """Replace a timestamp that drifted too far from *now* with *now*.

    A bound of 0 disables that direction.
    """
    drift = (ts - now).total_seconds()
    if max_past > 0 and -drift > max_past:
        return now
    if max_future > 0 and drift > max_future:
        return now
    return ts


class _DedupeCache:
    """Remembers event fingerprints for a short wall-clock span."""

    def __init__(self) -> None:
        self._seen: dict[tuple[str, str, str, str], datetime] = {}
        self._lock = threading.Lock()

    def seen(self, event: AccessEvent, now: datetime, ttl: float) -> bool:
        key = (
            event.reader_id,
            normalize_credential(event.credential_id),
            event.raw_result.value,
            format_ts(event.timestamp),
        )
        with self._lock:
            last = self._seen.get(key)
            if last is not None and (now - last).total_seconds() <= ttl:
                return True
            self._seen[key] = now
            if len(self._seen) > _DEDUPE_COMPACT_AT:
                self._seen = {
                    k: t for k, t in self._seen.items() if (now - t).total_seconds() <= ttl
                }
            return False

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()


class _FailureStreaks:
    """Consecutive physical failures per (reader, credential)."""

    def __init__(self) -> None:
        self._counts: OrderedDict[tuple[str, str], int] = OrderedDict()
        self._lock = threading.Lock()

    def record(self, reader_id: str, credential: str, failed: bool) -> int:
        key = (reader_id, credential)
        with self._lock:
            if not failed:
                self._counts.pop(key, None)
                return 0
            count = self._counts.pop(key, 0) + 1
            self._counts[key] = count
            if len(self._counts) > _STREAK_LIMIT:
                self._counts.popitem(last=False)
            return count

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()


# ═══════════════════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════════════════


class AccessEngine:
    """Access decisions, sliding-window metrics and alerting in one process."""

    def __init__(self, settings: Settings | None = None, clock: Clock = system_clock) -> None:
        self.settings = settings or Settings()
        self._clock = clock
        self._gate = _Gate()
        self._counter_lock = threading.Lock()
        self.policy = PolicyHolder(self.settings.access_control, persist=self._persist_policy)
        self._build(self.settings)

    def _build(self, settings: Settings) -> None:
        self.aggregator = MetricsAggregator(settings.detection.windows, clock=self._clock)
        self.store = AlertMetricStore(self.aggregator, limit=settings.alert_store_limit)
        self.cooldown = Cooldown()
        self.rules = RuleEngine(clock=self._clock, cooldown=self.cooldown)
        self._dedupe = _DedupeCache()
        self._streaks = _FailureStreaks()
        self.processed = 0
        self.duplicates = 0

    # ── ingestion ────────────────────────────────────────────────────────

    def process(self, event: AccessEvent) -> list[Alert]:
        """Classify, aggregate and evaluate one event; return new alerts."""
        with self._gate.shared():
            detection = self.settings.detection
            now = self._clock()
            ts = clamp_timestamp(
                event.timestamp, now, detection.max_clock_skew_sec, detection.max_future_skew_sec
            )
            if ts != event.timestamp:
                log.debug(
                    "Timestamp %s from %s outside clock skew, using %s",
                    format_ts(event.timestamp), event.reader_id, format_ts(ts),
                )
                event = replace(event, timestamp=ts)
            if detection.dedupe_window_sec > 0 and self._dedupe.seen(
                event, now, detection.dedupe_window_sec
            ):
                with self._counter_lock:
                    self.duplicates += 1
                log.debug("Duplicate event dropped: %s/%s", event.reader_id, event.credential_id)
                return []

            classified = evaluate(event, self.policy.current())
            raised: list[Alert] = []

            access_alert = self._access_alert(classified, now)
            if access_alert is not None:
                raised.append(access_alert)
            streak_alert = self._streak_alert(classified, now)
            if streak_alert is not None:
                raised.append(streak_alert)

            def on_update(windows: list[MetricWindow]) -> None:
                for mw in windows:
                    alert = self.rules.evaluate(
                        event.reader_id,
                        mw.window_sec,
                        mw,
                        detection.rules,
                        context=lambda w=mw.window_sec: self.aggregator.merged_context(
                            event.reader_id, w
                        ),
                    )
                    if alert is not None:
                        raised.append(alert)

            self.aggregator.admit(classified, on_update=on_update)
            with self._counter_lock:
                self.processed += 1

            for alert in raised:
                self.store.put_alert(alert)
                log.warning(
                    "Alert %s on %s: severity=%s window=%ss rules=%s score=%.3f",
                    alert.alert_type,
                    alert.reader_id,
                    alert.severity.value,
                    alert.window_sec,
                    ",".join(alert.rules),
                    alert.score,
                )
            return raised

    def _access_alert(self, classified: ClassifiedEvent, now: datetime) -> Alert | None:
        entry = _ACCESS_ALERTS.get(classified.decision)
        if entry is None:
            return None
        if not normalize_credential(classified.credential_id):
            return None
        alert_type, severity = entry
        reader = classified.reader_id
        cooldown_sec = self.settings.detection.access_alert_cooldown_sec
        if not self.cooldown.allow((reader, alert_type), cooldown_sec, now):
            return None
        event = classified.event
        return Alert(
            timestamp=now,
            reader_id=reader,
            severity=severity,
            alert_type=alert_type,
            window_sec=0,
            score=0.0,
            rules=(alert_type,),
            metrics=MetricWindow(reader_id=reader, window_sec=0),
            context={
                **event.context,
                "credential_id": normalize_credential(event.credential_id),
                "credential_raw": event.credential_id,
                "raw_result": event.raw_result.value,
            },
        )

    def _streak_alert(self, classified: ClassifiedEvent, now: datetime) -> Alert | None:
        threshold = self.settings.detection.failure_streak
        event = classified.event
        uid = normalize_credential(event.credential_id)
        if threshold <= 0 or not uid:
            return None
        count = self._streaks.record(
            event.reader_id, uid, failed=event.raw_result is RawResult.FAILURE
        )
        if count < threshold:
            return None
        key = (event.reader_id, "repeated_auth_failure", uid)
        if not self.cooldown.allow(key, self.settings.detection.streak_cooldown_sec, now):
            return None
        return Alert(
            timestamp=now,
            reader_id=event.reader_id,
            severity=Severity.MEDIUM,
            alert_type="repeated_auth_failure",
            window_sec=0,
            score=float(count),
            rules=("repeated_auth_failure",),
            metrics=MetricWindow(reader_id=event.reader_id, window_sec=0),
            context={**event.context, "credential_id": uid, "streak": str(count)},
        )

    # ── config ───────────────────────────────────────────────────────────

    def _persist_policy(self, snapshot: AccessControlConfig) -> None:
        path = self.settings.config_path
        if path:
            update_yaml_section(path, "access_control", snapshot.to_dict())

    def replace_access_control(self, payload: Any) -> AccessControlConfig:
        """Swap in a new access-control snapshot (ConfigInvalidError on bad input)."""
        snapshot = self.policy.replace(payload)
        self.settings = self.settings.with_access_control(snapshot)
        return snapshot

    # ── admin ────────────────────────────────────────────────────────────

    def clear(self, target: str | ClearTarget) -> ClearTarget:
        which = parse_clear_target(target)
        if which is ClearTarget.METRICS:
            # Let in-flight admits land first so none survive the clear
            with self._gate.exclusive():
                self.store.clear(which)
                self._dedupe.reset()
                self._streaks.reset()
        else:
            self.store.clear(which)
        return which

    def restart(self, reload: bool = True) -> Settings:
        """Drain in-flight events, then rebuild all runtime state.

        With *reload* and a config file, settings are re-read from disk; a
        file that no longer validates is logged and the current settings
        are kept.  Events submitted meanwhile wait and are processed by the
        rebuilt engine.
        """
        with self._gate.exclusive():
            settings = self.settings
            if reload and settings.config_path:
                try:
                    settings = load_settings(settings.config_path)
                    self.policy.replace(settings.access_control, persist=False)
                except (ConfigInvalidError, OSError) as exc:
                    log.error("Restart: keeping current settings, reload failed: %s", exc)
                    settings = self.settings
            self.settings = settings
            self._build(settings)
        log.info("Engine restarted: windows=%s", list(settings.detection.windows))
        return settings

    # ── read side ────────────────────────────────────────────────────────

    def status(self, version: str) -> dict[str, Any]:
        s = self.settings
        ac = self.policy.current()
        return {
            "status": "ok",
            "version": version,
            "config_path": s.config_path or "",
            "time": format_ts(datetime.now(timezone.utc)),
            "api": {"enabled": s.api.enabled, "addr": s.api.addr},
            "ingest": {name: bool(s.ingest.get(name, False)) for name in INGEST_PATHS},
            "access_control": {"enabled": ac.enabled, "whitelist_only": ac.whitelist_only},
            "detection": {"windows": list(s.detection.windows)},
            "processed": self.processed,
        }


# ═══════════════════════════════════════════════════════════════════════════
#  Replay
# ═══════════════════════════════════════════════════════════════════════════


def replay(
    input_path: str,
    settings: Settings | None = None,
    out_dir: str | None = None,
) -> dict[str, Any]:
    """Feed an event file through a fresh engine in timestamp order.

    Returns
    -------
    dict with keys: events, dropped, alerts (most recent first), metrics.
    When *out_dir* is given, also writes ``alerts.jsonl`` and
    ``metrics.json`` there.
    """
    report = load_events(input_path)
    events = sorted(report.events, key=lambda e: e.timestamp)
    start = events[0].timestamp if events else None
    clock = ReplayClock(start)
    engine = AccessEngine(settings, clock=clock)

    for ev in events:
        clock.advance_to(ev.timestamp)
        engine.process(ev)

    alerts = engine.store.list_alerts()
    metrics = engine.store.list_metrics()
    log.info(
        "Replay complete: %d events, %d dropped, %d alerts, %d readers",
        len(events), report.dropped, len(alerts), len(metrics),
    )

    if out_dir:
        out = Path(out_dir)
        atomic_write(out / "alerts.jsonl", "".join(a.to_json() + "\n" for a in reversed(alerts)))
        atomic_write(
            out / "metrics.json",
            json.dumps(
                {"metrics": {r: [w.to_dict() for w in ws] for r, ws in metrics.items()}},
                indent=2,
            ) + "\n",
        )
        log.info("Replay outputs written to %s/", out_dir)

    return {
        "events": len(events),
        "dropped": report.dropped,
        "alerts": alerts,
        "metrics": metrics,
    }
