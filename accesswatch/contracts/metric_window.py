"""Per-reader sliding-window metric snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class MetricWindow:
    """Values of one (reader_id, window_sec) window at a point in time.

    aps = attempts / window_sec
    fr  = failures / attempts          (0 when attempts == 0)
    uds = distinct credentials / attempts, in [0, 1]
    tv  = variance of inter-attempt intervals, seconds²  (0 with < 2 events)
    """

    reader_id: str
    window_sec: int
    attempts: int = 0
    failures: int = 0
    aps: float = 0.0
    fr: float = 0.0
    uds: float = 0.0
    tv: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_sec": self.window_sec,
            "aps": self.aps,
            "fr": self.fr,
            "uds": self.uds,
            "tv": self.tv,
            "attempts": self.attempts,
            "failures": self.failures,
        }

    def values(self) -> dict[str, float]:
        """The four rate metrics, as embedded in alerts."""
        return {"aps": self.aps, "fr": self.fr, "uds": self.uds, "tv": self.tv}
