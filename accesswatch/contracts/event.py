"""Access events — the normalised shape every ingestion path produces."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from accesswatch.contracts.enums import Decision, RawResult


def parse_ts(iso: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    dt = datetime.fromisoformat(iso.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_ts(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class AccessEvent:
    """One physical credential presentation at a reader."""

    # ── mandatory ──
    reader_id: str
    credential_id: str
    timestamp: datetime     # aware, UTC
    raw_result: RawResult   # what the reader itself reported

    # ── optional ──
    context: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Frozen dataclass: freeze the context mapping too
        object.__setattr__(self, "context", MappingProxyType(dict(self.context)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_ts(self.timestamp),
            "reader_id": self.reader_id,
            "credential_id": self.credential_id,
            "raw_result": self.raw_result.value,
            "context": dict(self.context),
        }

    def to_json(self) -> str:
        """Return compact JSON string."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))


@dataclass(frozen=True, slots=True)
class ClassifiedEvent:
    """An AccessEvent after the access decision has been applied."""

    event: AccessEvent
    decision: Decision
    success: bool   # physical success AND allowed by policy

    @property
    def reader_id(self) -> str:
        return self.event.reader_id

    @property
    def credential_id(self) -> str:
        return self.event.credential_id
