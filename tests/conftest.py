"""Shared fixtures for AccessWatch tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from accesswatch.contracts.enums import Decision, PredicateKind, RawResult, Severity
from accesswatch.contracts.event import AccessEvent, ClassifiedEvent
from accesswatch.contracts.rule import AlertRule, Predicate
from accesswatch.shared.clock import ManualClock

BASE_TS = datetime(2026, 3, 2, 8, 0, 0, tzinfo=timezone.utc)

# ── Timestamp helpers ────────────────────────────────────────────────────


def ts_offset(seconds: float = 0, base: datetime = BASE_TS) -> datetime:
    """Return an aware UTC datetime offset from *base* by *seconds*."""
    return base + timedelta(seconds=seconds)


# ── Helper: create contracts with sensible defaults ─────────────────────


def make_event(
    *,
    reader_id: str = "door-lobby",
    credential_id: str = "04A1B2C3",
    at: float = 0,
    raw_result: RawResult | str = RawResult.SUCCESS,
    context: dict[str, str] | None = None,
) -> AccessEvent:
    return AccessEvent(
        reader_id=reader_id,
        credential_id=credential_id,
        timestamp=ts_offset(at),
        raw_result=RawResult(raw_result),
        context=context or {},
    )


def make_classified(
    *,
    reader_id: str = "door-lobby",
    credential_id: str = "04A1B2C3",
    at: float = 0,
    success: bool = True,
    decision: Decision = Decision.ALLOWED,
    context: dict[str, str] | None = None,
) -> ClassifiedEvent:
    event = make_event(
        reader_id=reader_id,
        credential_id=credential_id,
        at=at,
        raw_result=RawResult.SUCCESS if success else RawResult.FAILURE,
        context=context,
    )
    return ClassifiedEvent(event=event, decision=decision, success=success)


def make_rule(
    *,
    rule_id: str = "aps_high",
    alert_type: str = "possible_bruteforce",
    window_sec: int = 10,
    kind: PredicateKind = PredicateKind.APS_ABOVE,
    value: float = 1.0,
    predicate: Predicate | None = None,
    severity: Severity = Severity.MEDIUM,
    cooldown_sec: float = 0.0,
    min_attempts: int = 1,
) -> AlertRule:
    return AlertRule(
        rule_id=rule_id,
        alert_type=alert_type,
        window_sec=window_sec,
        predicate=predicate or Predicate(kind, value),
        severity=severity,
        cooldown_sec=cooldown_sec,
        min_attempts=min_attempts,
    )


def access_control_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "enabled": True,
        "whitelist_only": False,
        "whitelist": [],
        "blacklist": [],
        "reader_whitelists": {},
        "reader_blacklists": {},
    }
    payload.update(overrides)
    return payload


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> ManualClock:
    """Clock pinned at BASE_TS; tests move it explicitly."""
    return ManualClock(BASE_TS)


@pytest.fixture
def config_file(tmp_path):
    """Minimal YAML config on disk, with REST ingestion on."""
    path = tmp_path / "accesswatch.yaml"
    path.write_text(
        "log_level: INFO\n"
        "api: {enabled: true, addr: '127.0.0.1:8081'}\n"
        "ingest: {rest: true}\n"
        "detection:\n"
        "  windows: [10, 60]\n"
        "  dedupe_window_sec: 0\n"
        "  failure_streak: 0\n"
        "  rules:\n"
        "    - id: aps_high\n"
        "      alert_type: possible_bruteforce\n"
        "      window_sec: 10\n"
        "      severity: high\n"
        "      cooldown_sec: 60\n"
        "      predicate: {kind: aps_above, value: 0.5}\n"
        "access_control:\n"
        "  enabled: true\n"
        "  whitelist_only: false\n"
        "  blacklist: ['DEADBEEF']\n",
        encoding="utf-8",
    )
    return path
