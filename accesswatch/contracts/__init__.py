"""Access-event contract — canonical data structures shared by all modules."""

from accesswatch.contracts.access_control import AccessControlConfig, normalize_credential
from accesswatch.contracts.alert import Alert
from accesswatch.contracts.enums import ClearTarget, Decision, PredicateKind, RawResult, Severity
from accesswatch.contracts.event import AccessEvent, ClassifiedEvent
from accesswatch.contracts.metric_window import MetricWindow
from accesswatch.contracts.rule import AlertRule, Predicate

__all__ = [
    "AccessControlConfig",
    "AccessEvent",
    "Alert",
    "AlertRule",
    "ClassifiedEvent",
    "ClearTarget",
    "Decision",
    "MetricWindow",
    "Predicate",
    "PredicateKind",
    "RawResult",
    "Severity",
    "normalize_credential",
]
