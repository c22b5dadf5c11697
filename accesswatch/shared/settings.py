"""Runtime settings — the parsed, validated form of the YAML config file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from accesswatch.contracts.access_control import AccessControlConfig
from accesswatch.contracts.enums import PredicateKind, Severity
from accesswatch.contracts.rule import AlertRule, Predicate
from accesswatch.shared.config_loader import load_yaml
from accesswatch.shared.errors import ConfigInvalidError

log = logging.getLogger(__name__)

DEFAULT_WINDOWS: tuple[int, ...] = (1, 10, 60)
DEFAULT_ALERT_LIMIT = 1000
DEFAULT_API_ADDR = "0.0.0.0:8081"
INGEST_PATHS = ("rest", "syslog", "file_tail", "tcp_stream", "kafka")


def _default_rules() -> tuple[AlertRule, ...]:
    aps = PredicateKind.APS_ABOVE
    return (
        AlertRule(
            rule_id="excessive_attempt_rate",
            alert_type="possible_bruteforce",
            window_sec=10,
            predicate=Predicate(aps, 20.0),
            severity=Severity.HIGH,
            cooldown_sec=5.0,
        ),
        AlertRule(
            rule_id="failure_spike",
            alert_type="possible_bruteforce",
            window_sec=10,
            predicate=Predicate(PredicateKind.FR_ABOVE, 0.7),
            severity=Severity.HIGH,
            cooldown_sec=5.0,
            min_attempts=10,
        ),
        AlertRule(
            rule_id="uid_spraying",
            alert_type="possible_bruteforce",
            window_sec=10,
            predicate=Predicate(
                PredicateKind.ALL_OF,
                of=(Predicate(PredicateKind.UDS_ABOVE, 0.6), Predicate(aps, 10.0)),
            ),
            severity=Severity.HIGH,
            cooldown_sec=5.0,
        ),
        AlertRule(
            rule_id="machine_timing",
            alert_type="possible_bruteforce",
            window_sec=10,
            predicate=Predicate(
                PredicateKind.ALL_OF,
                of=(Predicate(PredicateKind.TV_BELOW, 0.02), Predicate(aps, 10.0)),
            ),
            severity=Severity.MEDIUM,
            cooldown_sec=5.0,
            min_attempts=10,
        ),
        AlertRule(
            rule_id="sustained_attempt_rate",
            alert_type="possible_bruteforce",
            window_sec=60,
            predicate=Predicate(aps, 5.0),
            severity=Severity.MEDIUM,
            cooldown_sec=30.0,
        ),
    )


@dataclass(frozen=True, slots=True)
class ApiSettings:
    enabled: bool = True
    addr: str = DEFAULT_API_ADDR

    @property
    def host(self) -> str:
        host, _, _ = self.addr.rpartition(":")
        return host or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.addr.rpartition(":")[2])


@dataclass(frozen=True, slots=True)
class DetectionSettings:
    windows: tuple[int, ...] = DEFAULT_WINDOWS
    rules: tuple[AlertRule, ...] = field(default_factory=_default_rules)
    dedupe_window_sec: float = 1.0
    failure_streak: int = 2
    streak_cooldown_sec: float = 5.0
    access_alert_cooldown_sec: float = 5.0
    # Timestamps further than this from the engine clock are replaced by now; 0 disables
    max_clock_skew_sec: float = 2.0
    max_future_skew_sec: float = 2.0


@dataclass(frozen=True, slots=True)
class Settings:
    log_level: str = "INFO"
    api: ApiSettings = field(default_factory=ApiSettings)
    ingest: Mapping[str, bool] = field(
        default_factory=lambda: {"rest": True, "syslog": False, "file_tail": False,
                                 "tcp_stream": False, "kafka": False}
    )
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    alert_store_limit: int = DEFAULT_ALERT_LIMIT
    access_control: AccessControlConfig = field(default_factory=AccessControlConfig)
    config_path: str | None = None

    def with_access_control(self, ac: AccessControlConfig) -> Settings:
        return replace(self, access_control=ac)


# ═══════════════════════════════════════════════════════════════════════════
#  Parsing
# ═══════════════════════════════════════════════════════════════════════════


def parse_windows(raw: Any) -> tuple[int, ...]:
    """Validate a window_sec list: positive integers, deduplicated, sorted."""
    if raw is None:
        return DEFAULT_WINDOWS
    if not isinstance(raw, list) or not raw:
        raise ConfigInvalidError("detection.windows must be a non-empty list")
    out: set[int] = set()
    for w in raw:
        if isinstance(w, bool) or not isinstance(w, int) or w <= 0:
            raise ConfigInvalidError(f"detection.windows: {w!r} is not a positive integer")
        out.add(w)
    return tuple(sorted(out))


def _number(section: Mapping[str, Any], key: str, default: float, *, minimum: float = 0) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < minimum:
        raise ConfigInvalidError(f"{key} must be a number >= {minimum}")
    return float(value)


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigInvalidError(f"'{key}' must be a mapping")
    return value


def parse_detection(raw: Mapping[str, Any]) -> DetectionSettings:
    windows = parse_windows(raw.get("windows"))
    if "rules" in raw:
        if not isinstance(raw["rules"], list):
            raise ConfigInvalidError("detection.rules must be a list")
        rules = tuple(AlertRule.from_dict(r) for r in raw["rules"])
    else:
        rules = _default_rules()

    seen: set[str] = set()
    for rule in rules:
        if rule.rule_id in seen:
            raise ConfigInvalidError(f"duplicate rule id {rule.rule_id}")
        seen.add(rule.rule_id)
        if rule.window_sec not in windows:
            raise ConfigInvalidError(
                f"rule {rule.rule_id}: window_sec {rule.window_sec} not in detection.windows"
            )

    return DetectionSettings(
        windows=windows,
        rules=rules,
        dedupe_window_sec=_number(raw, "dedupe_window_sec", 1.0),
        failure_streak=int(_number(raw, "failure_streak", 2)),
        streak_cooldown_sec=_number(raw, "streak_cooldown_sec", 5.0),
        access_alert_cooldown_sec=_number(raw, "access_alert_cooldown_sec", 5.0),
        max_clock_skew_sec=_number(raw, "max_clock_skew_sec", 2.0),
        max_future_skew_sec=_number(raw, "max_future_skew_sec", 2.0),
    )


def settings_from_dict(data: Mapping[str, Any], config_path: str | None = None) -> Settings:
    """Build Settings from a parsed config mapping.

    Raises
    ──────
    ConfigInvalidError
        When any section is malformed.
    """
    api_raw = _section(data, "api")
    api = ApiSettings(
        enabled=bool(api_raw.get("enabled", True)),
        addr=str(api_raw.get("addr", DEFAULT_API_ADDR)),
    )
    if api.enabled and not api.addr.rpartition(":")[2].isdigit():
        raise ConfigInvalidError(f"api.addr '{api.addr}' has no valid port")

    ingest_raw = _section(data, "ingest")
    unknown = set(ingest_raw) - set(INGEST_PATHS)
    if unknown:
        raise ConfigInvalidError(f"unknown ingest paths: {', '.join(sorted(unknown))}")
    defaults = Settings().ingest
    ingest = {name: bool(ingest_raw.get(name, defaults[name])) for name in INGEST_PATHS}

    limit = int(_number(_section(data, "alerts"), "store_limit", DEFAULT_ALERT_LIMIT, minimum=1))

    settings = Settings(
        log_level=str(data.get("log_level", "INFO")).upper(),
        api=api,
        ingest=ingest,
        detection=parse_detection(_section(data, "detection")),
        alert_store_limit=limit,
        access_control=AccessControlConfig.from_dict(data.get("access_control")),
        config_path=config_path,
    )
    log.info(
        "Settings: windows=%s rules=%d access_control=%s",
        list(settings.detection.windows),
        len(settings.detection.rules),
        "on" if settings.access_control.enabled else "off",
    )
    return settings


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file, or defaults when *path* is None."""
    if path is None:
        return Settings()
    p = Path(path).resolve()
    return settings_from_dict(load_yaml(p), config_path=str(p))
