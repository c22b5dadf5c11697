"""Модель оповіщення (Alert)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from accesswatch.contracts.enums import Severity
from accesswatch.contracts.event import format_ts
from accesswatch.contracts.metric_window import MetricWindow


@dataclass(frozen=True, slots=True)
class Alert:
    """Оповіщення, згенероване рушієм правил для одного зчитувача."""

    timestamp: datetime
    reader_id: str
    severity: Severity
    alert_type: str      # e.g. "possible_bruteforce", "blacklisted_credential"
    window_sec: int      # 0 for alerts not tied to a window
    score: float
    rules: tuple[str, ...]
    metrics: MetricWindow
    context: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(self, "context", MappingProxyType(dict(self.context)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_ts(self.timestamp),
            "reader_id": self.reader_id,
            "severity": self.severity.value,
            "alert_type": self.alert_type,
            "window_sec": self.window_sec,
            "score": self.score,
            "rules": list(self.rules),
            "metrics": self.metrics.values(),
            "context": dict(self.context),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))
