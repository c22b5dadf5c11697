"""Threshold rules evaluated against metric windows."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from accesswatch.contracts.enums import PredicateKind, Severity
from accesswatch.shared.errors import ConfigInvalidError


@dataclass(frozen=True, slots=True)
class Predicate:
    """Tagged threshold predicate.

    Leaf kinds carry ``value``; ``all_of`` carries ``of`` and holds when
    every child holds.
    """

    kind: PredicateKind
    value: float = 0.0
    of: tuple[Predicate, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.kind is PredicateKind.ALL_OF and not self.of:
            raise ValueError("all_of predicate needs at least one child")

    @classmethod
    def from_dict(cls, raw: Any) -> Predicate:
        if not isinstance(raw, Mapping):
            raise ConfigInvalidError(f"predicate must be a mapping, got {raw!r}")
        try:
            kind = PredicateKind(raw.get("kind"))
        except ValueError:
            raise ConfigInvalidError(f"unknown predicate kind {raw.get('kind')!r}") from None

        if kind is PredicateKind.ALL_OF:
            children = raw.get("of")
            if not isinstance(children, list) or not children:
                raise ConfigInvalidError("all_of predicate needs a non-empty 'of' list")
            return cls(kind=kind, of=tuple(cls.from_dict(c) for c in children))

        value = raw.get("value")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigInvalidError(f"predicate {kind.value} needs a numeric 'value'")
        return cls(kind=kind, value=float(value))

    def to_dict(self) -> dict[str, Any]:
        if self.kind is PredicateKind.ALL_OF:
            return {"kind": self.kind.value, "of": [c.to_dict() for c in self.of]}
        return {"kind": self.kind.value, "value": self.value}


@dataclass(frozen=True, slots=True)
class AlertRule:
    """One detection rule bound to a single window size."""

    rule_id: str
    alert_type: str
    window_sec: int
    predicate: Predicate
    severity: Severity = Severity.MEDIUM
    cooldown_sec: float = 0.0
    min_attempts: int = 1

    def __post_init__(self) -> None:
        if self.window_sec <= 0:
            raise ValueError(f"rule {self.rule_id}: window_sec must be positive")
        if self.cooldown_sec < 0:
            raise ValueError(f"rule {self.rule_id}: cooldown_sec must be >= 0")
        if self.min_attempts < 1:
            raise ValueError(f"rule {self.rule_id}: min_attempts must be >= 1")

    @classmethod
    def from_dict(cls, raw: Any) -> AlertRule:
        """Parse one entry of ``detection.rules``."""
        if not isinstance(raw, Mapping):
            raise ConfigInvalidError(f"rule must be a mapping, got {raw!r}")
        rule_id = raw.get("id")
        if not isinstance(rule_id, str) or not rule_id:
            raise ConfigInvalidError("rule is missing 'id'")
        try:
            severity = Severity(raw.get("severity", "medium"))
        except ValueError:
            raise ConfigInvalidError(
                f"rule {rule_id}: unknown severity {raw.get('severity')!r}"
            ) from None
        try:
            return cls(
                rule_id=rule_id,
                alert_type=str(raw.get("alert_type", rule_id)),
                window_sec=int(raw["window_sec"]),
                predicate=Predicate.from_dict(raw.get("predicate")),
                severity=severity,
                cooldown_sec=float(raw.get("cooldown_sec", 0)),
                min_attempts=int(raw.get("min_attempts", 1)),
            )
        except KeyError:
            raise ConfigInvalidError(f"rule {rule_id}: missing 'window_sec'") from None
        except (TypeError, ValueError) as exc:
            raise ConfigInvalidError(f"rule {rule_id}: {exc}") from exc
