"""Canonical enumerations for the access-event contract."""

from __future__ import annotations

from enum import Enum


class RawResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class Decision(str, Enum):
    ALLOWED = "allowed"
    DENIED_BLACKLIST = "denied_blacklist"
    DENIED_NOT_WHITELISTED = "denied_not_whitelisted"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class PredicateKind(str, Enum):
    APS_ABOVE = "aps_above"
    FR_ABOVE = "fr_above"
    UDS_BELOW = "uds_below"
    UDS_ABOVE = "uds_above"
    TV_ABOVE = "tv_above"
    TV_BELOW = "tv_below"
    ATTEMPTS_AT_LEAST = "attempts_at_least"
    ALL_OF = "all_of"


class ClearTarget(str, Enum):
    ALERTS = "alerts"
    METRICS = "metrics"
