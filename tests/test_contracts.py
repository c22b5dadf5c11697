"""Tests for accesswatch.contracts — data model and (de)serialisation."""

from __future__ import annotations

import json
from datetime import timezone

import pytest

from accesswatch.contracts.access_control import AccessControlConfig, normalize_credential
from accesswatch.contracts.alert import Alert
from accesswatch.contracts.enums import PredicateKind, RawResult, Severity
from accesswatch.contracts.event import format_ts, parse_ts
from accesswatch.contracts.metric_window import MetricWindow
from accesswatch.contracts.rule import AlertRule, Predicate
from accesswatch.shared.errors import ConfigInvalidError
from tests.conftest import make_event, ts_offset

# ═══════════════════════════════════════════════════════════════════════════
#  Timestamps and events
# ═══════════════════════════════════════════════════════════════════════════


class TestTimestamps:
    def test_parse_z_suffix(self):
        dt = parse_ts("2026-03-02T08:00:00Z")
        assert dt.tzinfo is not None
        assert dt.hour == 8

    def test_parse_offset_converted_to_utc(self):
        dt = parse_ts("2026-03-02T10:00:00+02:00")
        assert dt.utcoffset().total_seconds() == 0
        assert dt.hour == 8

    def test_parse_naive_assumed_utc(self):
        assert parse_ts("2026-03-02T08:00:00").tzinfo == timezone.utc

    def test_parse_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_ts("yesterday")

    def test_format_uses_z(self):
        assert format_ts(ts_offset(0)) == "2026-03-02T08:00:00Z"


class TestAccessEvent:
    def test_context_is_read_only(self):
        ev = make_event(context={"door": "lobby"})
        with pytest.raises(TypeError):
            ev.context["door"] = "other"

    def test_context_copied_from_caller(self):
        ctx = {"door": "lobby"}
        ev = make_event(context=ctx)
        ctx["door"] = "changed"
        assert ev.context["door"] == "lobby"

    def test_to_json_compact(self):
        ev = make_event(raw_result=RawResult.FAILURE)
        data = json.loads(ev.to_json())
        assert data["raw_result"] == "failure"
        assert data["timestamp"] == "2026-03-02T08:00:00Z"
        assert " " not in ev.to_json()


# ═══════════════════════════════════════════════════════════════════════════
#  Access control snapshot
# ═══════════════════════════════════════════════════════════════════════════


class TestNormalizeCredential:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("04:a1:b2:c3", "04A1B2C3"),
            ("04-A1-B2-C3", "04A1B2C3"),
            ("  04 a1 b2 c3 ", "04A1B2C3"),
            ("", ""),
        ],
    )
    def test_forms(self, raw, expected):
        assert normalize_credential(raw) == expected


class TestAccessControlConfig:
    def test_none_payload_gives_disabled_defaults(self):
        cfg = AccessControlConfig.from_dict(None)
        assert cfg.enabled is False
        assert cfg.whitelist == frozenset()

    def test_ids_normalised_on_load(self):
        cfg = AccessControlConfig.from_dict({"enabled": True, "blacklist": ["de:ad:be:ef"]})
        assert cfg.blacklist == frozenset({"DEADBEEF"})

    def test_empty_reader_lists_dropped(self):
        cfg = AccessControlConfig.from_dict({"reader_whitelists": {"R": [], " ": ["A"]}})
        assert dict(cfg.reader_whitelists) == {}

    @pytest.mark.parametrize(
        "payload",
        [
            "not a mapping",
            {"enabled": "yes"},
            {"whitelist": "AABB"},
            {"blacklist": [1, 2]},
            {"reader_blacklists": ["R"]},
            {"reader_whitelists": {"R": "AABB"}},
        ],
    )
    def test_malformed_rejected(self, payload):
        with pytest.raises(ConfigInvalidError):
            AccessControlConfig.from_dict(payload)

    def test_to_dict_sorted_lists(self):
        cfg = AccessControlConfig.from_dict(
            {"enabled": True, "whitelist": ["BB", "AA"], "reader_blacklists": {"R": ["CC"]}}
        )
        data = cfg.to_dict()
        assert data["whitelist"] == ["AA", "BB"]
        assert data["reader_blacklists"] == {"R": ["CC"]}
        assert AccessControlConfig.from_dict(data) == cfg

    def test_blacklists_are_unioned(self):
        cfg = AccessControlConfig.from_dict(
            {"blacklist": ["AA"], "reader_blacklists": {"R": ["BB"]}}
        )
        assert cfg.is_blacklisted("R", "AA")
        assert cfg.is_blacklisted("R", "BB")
        assert not cfg.is_blacklisted("S", "BB")

    def test_empty_credential_never_listed(self):
        cfg = AccessControlConfig.from_dict({"whitelist": ["AA"], "blacklist": ["BB"]})
        assert not cfg.is_blacklisted("R", "")
        assert not cfg.is_whitelisted("R", "")


# ═══════════════════════════════════════════════════════════════════════════
#  Rules
# ═══════════════════════════════════════════════════════════════════════════


class TestPredicate:
    def test_leaf_from_dict(self):
        p = Predicate.from_dict({"kind": "aps_above", "value": 20})
        assert p.kind is PredicateKind.APS_ABOVE
        assert p.value == 20.0

    def test_all_of_from_dict(self):
        p = Predicate.from_dict(
            {"kind": "all_of", "of": [{"kind": "uds_above", "value": 0.6},
                                      {"kind": "aps_above", "value": 10}]}
        )
        assert [c.kind for c in p.of] == [PredicateKind.UDS_ABOVE, PredicateKind.APS_ABOVE]
        assert Predicate.from_dict(p.to_dict()) == p

    def test_unknown_kind_rejected(self):
        with pytest.raises(ConfigInvalidError, match="unknown predicate kind"):
            Predicate.from_dict({"kind": "entropy_above", "value": 1})

    def test_missing_value_rejected(self):
        with pytest.raises(ConfigInvalidError):
            Predicate.from_dict({"kind": "fr_above"})

    def test_empty_all_of_rejected(self):
        with pytest.raises(ConfigInvalidError):
            Predicate.from_dict({"kind": "all_of", "of": []})
        with pytest.raises(ValueError):
            Predicate(PredicateKind.ALL_OF)


class TestAlertRule:
    def test_from_dict_defaults(self):
        rule = AlertRule.from_dict(
            {"id": "r1", "window_sec": 10, "predicate": {"kind": "aps_above", "value": 1}}
        )
        assert rule.alert_type == "r1"
        assert rule.severity is Severity.MEDIUM
        assert rule.cooldown_sec == 0.0
        assert rule.min_attempts == 1

    @pytest.mark.parametrize(
        "raw",
        [
            {"window_sec": 10, "predicate": {"kind": "aps_above", "value": 1}},
            {"id": "r1", "predicate": {"kind": "aps_above", "value": 1}},
            {"id": "r1", "window_sec": 0, "predicate": {"kind": "aps_above", "value": 1}},
            {"id": "r1", "window_sec": 10, "severity": "extreme",
             "predicate": {"kind": "aps_above", "value": 1}},
            {"id": "r1", "window_sec": 10, "cooldown_sec": -1,
             "predicate": {"kind": "aps_above", "value": 1}},
        ],
    )
    def test_invalid_rules_rejected(self, raw):
        with pytest.raises(ConfigInvalidError):
            AlertRule.from_dict(raw)

    def test_non_positive_window_is_programming_error(self):
        with pytest.raises(ValueError):
            AlertRule("r", "t", -10, Predicate(PredicateKind.APS_ABOVE, 1.0))


# ═══════════════════════════════════════════════════════════════════════════
#  Alert
# ═══════════════════════════════════════════════════════════════════════════


class TestAlert:
    def test_to_dict_shape(self):
        mw = MetricWindow("R", 10, attempts=10, failures=3, aps=1.0, fr=0.3, uds=0.1, tv=0.0)
        alert = Alert(
            timestamp=ts_offset(5),
            reader_id="R",
            severity=Severity.HIGH,
            alert_type="possible_bruteforce",
            window_sec=10,
            score=0.5,
            rules=["a", "b"],
            metrics=mw,
            context={"door": "lobby"},
        )
        data = alert.to_dict()
        assert data["rules"] == ["a", "b"]
        assert data["metrics"] == {"aps": 1.0, "fr": 0.3, "uds": 0.1, "tv": 0.0}
        assert data["severity"] == "high"
        assert data["timestamp"] == "2026-03-02T08:00:05Z"
        assert json.loads(alert.to_json())["context"] == {"door": "lobby"}

    def test_metric_window_to_dict(self):
        mw = MetricWindow("R", 60)
        assert mw.to_dict() == {
            "window_sec": 60, "aps": 0.0, "fr": 0.0, "uds": 0.0, "tv": 0.0,
            "attempts": 0, "failures": 0,
        }
