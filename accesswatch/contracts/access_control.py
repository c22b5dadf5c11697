"""Access-control policy snapshot (whitelists / blacklists)."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from accesswatch.shared.errors import ConfigInvalidError

_SEPARATORS = str.maketrans("", "", " :-\t")


def normalize_credential(value: str) -> str:
    """Canonical credential form: separators dropped, upper-cased.

    ``"aa:bb-cc"`` and ``"AABBCC"`` refer to the same badge.
    """
    return value.strip().translate(_SEPARATORS).upper()


def _id_set(values: Any, where: str) -> frozenset[str]:
    if values is None:
        return frozenset()
    if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple, set, frozenset)):
        raise ConfigInvalidError(f"{where} must be a list of credential ids")
    out: set[str] = set()
    for v in values:
        if not isinstance(v, str):
            raise ConfigInvalidError(f"{where} contains non-string entry {v!r}")
        uid = normalize_credential(v)
        if uid:
            out.add(uid)
    return frozenset(out)


def _reader_sets(values: Any, where: str) -> Mapping[str, frozenset[str]]:
    if values is None:
        return MappingProxyType({})
    if not isinstance(values, Mapping):
        raise ConfigInvalidError(f"{where} must be a mapping reader_id -> list")
    out: dict[str, frozenset[str]] = {}
    for reader, ids in values.items():
        if not isinstance(reader, str):
            raise ConfigInvalidError(f"{where} has non-string reader id {reader!r}")
        reader = reader.strip()
        if not reader:
            continue
        ids_set = _id_set(ids, f"{where}.{reader}")
        if ids_set:
            out[reader] = ids_set
    return MappingProxyType(out)


def _flag(payload: Mapping[str, Any], key: str) -> bool:
    value = payload.get(key, False)
    if not isinstance(value, bool):
        raise ConfigInvalidError(f"access_control.{key} must be a boolean")
    return value


@dataclass(frozen=True, slots=True)
class AccessControlConfig:
    """Immutable policy snapshot.

    Replaced as a whole on every save; never mutated in place.  Reader
    blacklists add to the global blacklist; a reader whitelist takes the
    place of the global whitelist for that reader.
    """

    enabled: bool = False
    whitelist_only: bool = False
    whitelist: frozenset[str] = frozenset()
    blacklist: frozenset[str] = frozenset()
    reader_whitelists: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    reader_blacklists: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    # ── lookups ──────────────────────────────────────────────────────────

    def is_blacklisted(self, reader_id: str, credential: str) -> bool:
        if not credential:
            return False
        if credential in self.blacklist:
            return True
        return credential in self.reader_blacklists.get(reader_id, frozenset())

    def is_whitelisted(self, reader_id: str, credential: str) -> bool:
        """Reader's own whitelist when it has one, the global one otherwise."""
        if not credential:
            return False
        override = self.reader_whitelists.get(reader_id)
        if override is not None:
            return credential in override
        return credential in self.whitelist

    # ── (de)serialisation ────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, payload: Any) -> AccessControlConfig:
        """Build a snapshot from the JSON/YAML shape.

        Raises
        ──────
        ConfigInvalidError
            On any malformed field; nothing is partially applied.
        """
        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise ConfigInvalidError("access_control must be a mapping")
        return cls(
            enabled=_flag(payload, "enabled"),
            whitelist_only=_flag(payload, "whitelist_only"),
            whitelist=_id_set(payload.get("whitelist"), "whitelist"),
            blacklist=_id_set(payload.get("blacklist"), "blacklist"),
            reader_whitelists=_reader_sets(payload.get("reader_whitelists"), "reader_whitelists"),
            reader_blacklists=_reader_sets(payload.get("reader_blacklists"), "reader_blacklists"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "whitelist_only": self.whitelist_only,
            "whitelist": sorted(self.whitelist),
            "blacklist": sorted(self.blacklist),
            "reader_whitelists": {r: sorted(ids) for r, ids in sorted(self.reader_whitelists.items())},
            "reader_blacklists": {r: sorted(ids) for r, ids in sorted(self.reader_blacklists.items())},
        }
