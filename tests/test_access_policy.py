"""Tests for accesswatch.analyzer.access_policy — decisions and snapshot swaps."""

from __future__ import annotations

import threading

import pytest

from accesswatch.analyzer.access_policy import PolicyHolder, decide, evaluate
from accesswatch.contracts.access_control import AccessControlConfig
from accesswatch.contracts.enums import Decision, RawResult
from accesswatch.shared.errors import ConfigInvalidError
from tests.conftest import access_control_payload, make_event


def _cfg(**overrides) -> AccessControlConfig:
    return AccessControlConfig.from_dict(access_control_payload(**overrides))


# ═══════════════════════════════════════════════════════════════════════════
#  decide() / evaluate()
# ═══════════════════════════════════════════════════════════════════════════


class TestDecide:
    def test_disabled_always_allows(self):
        cfg = _cfg(enabled=False, whitelist_only=True, blacklist=["AA"])
        assert decide(make_event(credential_id="AA"), cfg) is Decision.ALLOWED

    def test_global_blacklist(self):
        cfg = _cfg(blacklist=["de:ad:be:ef"])
        ev = make_event(credential_id="DE-AD-BE-EF")
        assert decide(ev, cfg) is Decision.DENIED_BLACKLIST

    def test_reader_blacklist_only_on_that_reader(self):
        cfg = _cfg(reader_blacklists={"R": ["AA"]})
        assert decide(make_event(reader_id="R", credential_id="AA"), cfg) is Decision.DENIED_BLACKLIST
        assert decide(make_event(reader_id="S", credential_id="AA"), cfg) is Decision.ALLOWED

    def test_blacklist_beats_whitelist(self):
        cfg = _cfg(whitelist_only=True, whitelist=["AA"], blacklist=["AA"])
        assert decide(make_event(credential_id="AA"), cfg) is Decision.DENIED_BLACKLIST

    def test_whitelist_advisory_when_not_whitelist_only(self):
        cfg = _cfg(whitelist=["AA"])
        assert decide(make_event(credential_id="BB"), cfg) is Decision.ALLOWED

    def test_whitelist_only_unknown_credential_denied(self):
        cfg = _cfg(whitelist_only=True, whitelist=["AA"])
        assert decide(make_event(credential_id="BB"), cfg) is Decision.DENIED_NOT_WHITELISTED

    def test_whitelist_only_empty_credential_denied(self):
        cfg = _cfg(whitelist_only=True, whitelist=["AA"])
        assert decide(make_event(credential_id=""), cfg) is Decision.DENIED_NOT_WHITELISTED

    def test_reader_override_scenario(self):
        cfg = _cfg(whitelist_only=True, whitelist=["B"], reader_whitelists={"R": ["A"]})
        assert decide(make_event(reader_id="R", credential_id="A"), cfg) is Decision.ALLOWED
        assert (
            decide(make_event(reader_id="R", credential_id="B"), cfg)
            is Decision.DENIED_NOT_WHITELISTED
        )
        assert decide(make_event(reader_id="S", credential_id="B"), cfg) is Decision.ALLOWED


class TestEvaluate:
    @pytest.mark.parametrize(
        "raw, blacklist, success",
        [
            (RawResult.SUCCESS, [], True),
            (RawResult.FAILURE, [], False),
            (RawResult.SUCCESS, ["AA"], False),
            (RawResult.FAILURE, ["AA"], False),
        ],
    )
    def test_success_requires_allow_and_physical_success(self, raw, blacklist, success):
        cfg = _cfg(blacklist=blacklist)
        ce = evaluate(make_event(credential_id="AA", raw_result=raw), cfg)
        assert ce.success is success

    def test_denied_blacklist_never_success(self):
        cfg = _cfg(blacklist=["AA", "BB"])
        for cred in ("AA", "bb", "CC"):
            ce = evaluate(make_event(credential_id=cred), cfg)
            if ce.decision is Decision.DENIED_BLACKLIST:
                assert cfg.is_blacklisted(ce.reader_id, cred.upper())
                assert ce.success is False

    def test_evaluate_does_not_mutate_config(self):
        cfg = _cfg(blacklist=["AA"])
        before = cfg.to_dict()
        evaluate(make_event(credential_id="AA"), cfg)
        assert cfg.to_dict() == before


# ═══════════════════════════════════════════════════════════════════════════
#  PolicyHolder
# ═══════════════════════════════════════════════════════════════════════════


class TestPolicyHolder:
    def test_replace_swaps_and_bumps_version(self):
        holder = PolicyHolder()
        assert holder.current().enabled is False
        snap = holder.replace(access_control_payload(blacklist=["AA"]))
        assert holder.current() is snap
        assert holder.version == 1

    def test_invalid_payload_keeps_previous(self):
        holder = PolicyHolder(_cfg(blacklist=["AA"]))
        with pytest.raises(ConfigInvalidError):
            holder.replace({"enabled": "sometimes"})
        assert holder.current().blacklist == frozenset({"AA"})
        assert holder.version == 0

    def test_persist_failure_keeps_previous(self):
        def broken(_):
            raise OSError("disk full")

        holder = PolicyHolder(_cfg(blacklist=["AA"]), persist=broken)
        with pytest.raises(OSError):
            holder.replace(access_control_payload(blacklist=["BB"]))
        assert holder.current().blacklist == frozenset({"AA"})

    def test_persist_skipped_when_asked(self):
        calls = []
        holder = PolicyHolder(persist=calls.append)
        holder.replace(access_control_payload(), persist=False)
        holder.replace(access_control_payload())
        assert len(calls) == 1

    def test_readers_never_see_mixed_versions(self):
        # Version N lists "AN" in the whitelist and "BN" in the blacklist
        def payload(n: int) -> dict:
            return access_control_payload(whitelist=[f"A{n}"], blacklist=[f"B{n}"])

        holder = PolicyHolder(AccessControlConfig.from_dict(payload(0)))
        stop = threading.Event()
        torn: list[tuple] = []

        def reader():
            while not stop.is_set():
                snap = holder.current()
                (w,) = snap.whitelist
                (b,) = snap.blacklist
                if w[1:] != b[1:]:
                    torn.append((w, b))

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for n in range(1, 300):
            holder.replace(payload(n))
        stop.set()
        for t in threads:
            t.join()

        assert torn == []
        assert holder.version == 299
