"""Detector — threshold rules: MetricWindow → Alert.

After every admit that lands in a window, the rules bound to that
window_sec are checked against the fresh snapshot.  All rules that fire in
one evaluation are folded into a single Alert.

Supported predicate kinds
─────────────────────────
  aps_above / fr_above / uds_above / tv_above   metric >  value
  uds_below / tv_below                          metric <  value
  attempts_at_least                             attempts >= value
  all_of                                        every child holds

Scoring
───────
  Each leaf that holds reports its distance past the threshold,
  normalised by the threshold (``(metric - value) / value`` for "above").
  ``all_of`` reports its weakest child.  The alert score is the largest
  distance among the fired rules.

Deduplication
─────────────
  One alert per (reader_id, alert_type) per cooldown.  Suppressed
  evaluations are dropped, not queued.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Hashable, Mapping, Sequence

from accesswatch.contracts.alert import Alert
from accesswatch.contracts.enums import PredicateKind
from accesswatch.contracts.metric_window import MetricWindow
from accesswatch.contracts.rule import AlertRule, Predicate
from accesswatch.shared.clock import Clock, system_clock
from accesswatch.shared.errors import EvaluationSkipped

log = logging.getLogger(__name__)

ContextSource = Mapping[str, str] | Callable[[], Mapping[str, str]] | None


# ═══════════════════════════════════════════════════════════════════════════
#  Predicate dispatch
# ═══════════════════════════════════════════════════════════════════════════


def _over(metric: float, threshold: float) -> float | None:
    if metric <= threshold:
        return None
    return (metric - threshold) / abs(threshold) if threshold else metric


def _under(metric: float, threshold: float) -> float | None:
    if metric >= threshold:
        return None
    return (threshold - metric) / abs(threshold) if threshold else -metric


def _needs_attempts(mw: MetricWindow, n: int, metric: str) -> None:
    if mw.attempts < n:
        raise EvaluationSkipped(f"{metric} undefined with {mw.attempts} attempt(s)")


def _aps_above(mw: MetricWindow, value: float) -> float | None:
    return _over(mw.aps, value)


def _fr_above(mw: MetricWindow, value: float) -> float | None:
    _needs_attempts(mw, 1, "fr")
    return _over(mw.fr, value)


def _uds_above(mw: MetricWindow, value: float) -> float | None:
    _needs_attempts(mw, 1, "uds")
    return _over(mw.uds, value)


def _uds_below(mw: MetricWindow, value: float) -> float | None:
    _needs_attempts(mw, 1, "uds")
    return _under(mw.uds, value)


def _tv_above(mw: MetricWindow, value: float) -> float | None:
    _needs_attempts(mw, 2, "tv")
    return _over(mw.tv, value)


def _tv_below(mw: MetricWindow, value: float) -> float | None:
    _needs_attempts(mw, 2, "tv")
    return _under(mw.tv, value)


def _attempts_at_least(mw: MetricWindow, value: float) -> float | None:
    if mw.attempts < value:
        return None
    return (mw.attempts - value) / value if value > 0 else float(mw.attempts)


_LEAVES: dict[PredicateKind, Callable[[MetricWindow, float], float | None]] = {
    PredicateKind.APS_ABOVE: _aps_above,
    PredicateKind.FR_ABOVE: _fr_above,
    PredicateKind.UDS_ABOVE: _uds_above,
    PredicateKind.UDS_BELOW: _uds_below,
    PredicateKind.TV_ABOVE: _tv_above,
    PredicateKind.TV_BELOW: _tv_below,
    PredicateKind.ATTEMPTS_AT_LEAST: _attempts_at_least,
}


def distance(predicate: Predicate, metrics: MetricWindow) -> float | None:
    """Normalised distance past threshold, or None when *predicate* fails.

    Raises EvaluationSkipped when a referenced metric is not computable.
    """
    if predicate.kind is PredicateKind.ALL_OF:
        parts = [distance(child, metrics) for child in predicate.of]
        if any(p is None for p in parts):
            return None
        return min(parts)
    return _LEAVES[predicate.kind](metrics, predicate.value)


# ═══════════════════════════════════════════════════════════════════════════
#  Cooldown
# ═══════════════════════════════════════════════════════════════════════════


class Cooldown:
    """Last-fired timestamps per key; thread-safe."""

    def __init__(self) -> None:
        self._last: dict[Hashable, datetime] = {}
        self._lock = threading.Lock()

    def allow(self, key: Hashable, cooldown_sec: float, now: datetime) -> bool:
        """Record a firing at *now* unless one happened under *cooldown_sec* ago."""
        with self._lock:
            last = self._last.get(key)
            if cooldown_sec > 0 and last is not None:
                if (now - last).total_seconds() < cooldown_sec:
                    return False
            self._last[key] = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last.clear()


# ═══════════════════════════════════════════════════════════════════════════
#  Rule engine
# ═══════════════════════════════════════════════════════════════════════════


class RuleEngine:
    def __init__(self, clock: Clock = system_clock, cooldown: Cooldown | None = None) -> None:
        self._clock = clock
        self.cooldown = cooldown or Cooldown()

    def triggered(
        self,
        window_sec: int,
        metrics: MetricWindow,
        rules: Sequence[AlertRule],
    ) -> list[tuple[AlertRule, float]]:
        """Rules for *window_sec* whose predicate holds, in rule order."""
        fired: list[tuple[AlertRule, float]] = []
        for rule in rules:
            if rule.window_sec != window_sec or metrics.attempts < rule.min_attempts:
                continue
            try:
                dist = distance(rule.predicate, metrics)
            except EvaluationSkipped as exc:
                log.debug("Rule %s skipped for %s: %s", rule.rule_id, metrics.reader_id, exc)
                continue
            if dist is not None:
                fired.append((rule, dist))
        return fired

    def evaluate(
        self,
        reader_id: str,
        window_sec: int,
        metrics: MetricWindow,
        rules: Sequence[AlertRule],
        context: ContextSource = None,
    ) -> Alert | None:
        """Run *rules* against one fresh window snapshot.

        *context* may be a mapping or a zero-argument callable; the
        callable is only invoked when an alert is actually emitted.
        """
        if metrics.attempts == 0:
            return None
        fired = self.triggered(window_sec, metrics, rules)
        if not fired:
            return None

        # Highest severity wins; first such rule names the alert type
        lead = max(fired, key=lambda rd: rd[0].severity.rank)[0]
        cooldown_sec = max(rule.cooldown_sec for rule, _ in fired)
        now = self._clock()
        if not self.cooldown.allow((reader_id, lead.alert_type), cooldown_sec, now):
            log.debug(
                "Suppressed %s on %s (cooldown %.0fs)", lead.alert_type, reader_id, cooldown_sec
            )
            return None

        ctx = context() if callable(context) else (context or {})
        return Alert(
            timestamp=now,
            reader_id=reader_id,
            severity=lead.severity,
            alert_type=lead.alert_type,
            window_sec=window_sec,
            score=max(dist for _, dist in fired),
            rules=tuple(rule.rule_id for rule, _ in fired),
            metrics=metrics,
            context=ctx,
        )
