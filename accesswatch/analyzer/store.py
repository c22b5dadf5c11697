"""Alert & Metric Store — bounded in-memory history behind the read API.

Alerts live in a fixed-size ring (oldest evicted first).  Metrics are not
copied here: ``list_metrics`` reads the aggregator's current windows, so
they are bounded by the window lengths alone.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime

from accesswatch.analyzer.metrics import MetricsAggregator
from accesswatch.contracts.alert import Alert
from accesswatch.contracts.enums import ClearTarget
from accesswatch.contracts.metric_window import MetricWindow
from accesswatch.shared.errors import UnknownClearTargetError

log = logging.getLogger(__name__)


def parse_clear_target(raw: str | ClearTarget) -> ClearTarget:
    if isinstance(raw, ClearTarget):
        return raw
    try:
        return ClearTarget(str(raw).strip().lower())
    except ValueError:
        raise UnknownClearTargetError(str(raw)) from None


class AlertMetricStore:
    def __init__(self, aggregator: MetricsAggregator, limit: int = 1000) -> None:
        if limit <= 0:
            raise ValueError("alert store limit must be positive")
        self._aggregator = aggregator
        self._limit = limit
        self._alerts: deque[Alert] = deque(maxlen=limit)
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def put_alert(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.append(alert)

    def list_alerts(self, limit: int | None = None, since: datetime | None = None) -> list[Alert]:
        """Most recent first, at most *limit* (all when None or <= 0)."""
        with self._lock:
            items = list(self._alerts)
        items.reverse()
        if since is not None:
            items = [a for a in items if a.timestamp >= since]
        if limit is not None and limit > 0:
            items = items[:limit]
        return items

    def list_metrics(self) -> dict[str, list[MetricWindow]]:
        return self._aggregator.snapshot_all()

    def clear(self, target: str | ClearTarget) -> ClearTarget:
        """Empty alert history or metric windows.

        Raises UnknownClearTargetError for anything but alerts/metrics.
        """
        which = parse_clear_target(target)
        if which is ClearTarget.ALERTS:
            with self._lock:
                dropped = len(self._alerts)
                self._alerts = deque(maxlen=self._limit)
            log.info("Alerts cleared (%d dropped)", dropped)
        else:
            self._aggregator.clear()
        return which
