"""Access Policy — whitelist/blacklist decisions over a config snapshot.

``evaluate`` is a pure function of (event, snapshot).  ``PolicyHolder``
owns the process-wide current snapshot and swaps it copy-on-write, so a
reader always sees one complete version of every list.

Decision order (first match wins)
─────────────────────────────────
  1. access control disabled         → allowed
  2. reader or global blacklist hit  → denied_blacklist
  3. whitelist_only and credential    → denied_not_whitelisted
     not in the reader's whitelist
     (global one if it has none)
  4. otherwise                       → allowed  (whitelist is advisory)
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from accesswatch.contracts.access_control import AccessControlConfig, normalize_credential
from accesswatch.contracts.enums import Decision, RawResult
from accesswatch.contracts.event import AccessEvent, ClassifiedEvent

log = logging.getLogger(__name__)


def decide(event: AccessEvent, config: AccessControlConfig) -> Decision:
    if not config.enabled:
        return Decision.ALLOWED

    uid = normalize_credential(event.credential_id)
    if config.is_blacklisted(event.reader_id, uid):
        return Decision.DENIED_BLACKLIST

    if config.whitelist_only and not config.is_whitelisted(event.reader_id, uid):
        return Decision.DENIED_NOT_WHITELISTED

    return Decision.ALLOWED


def evaluate(event: AccessEvent, config: AccessControlConfig) -> ClassifiedEvent:
    """Classify *event* under *config*; no side effects."""
    decision = decide(event, config)
    success = decision is Decision.ALLOWED and event.raw_result is RawResult.SUCCESS
    return ClassifiedEvent(event=event, decision=decision, success=success)


# ═══════════════════════════════════════════════════════════════════════════
#  Snapshot holder
# ═══════════════════════════════════════════════════════════════════════════


class PolicyHolder:
    """Holds the current AccessControlConfig and replaces it atomically.

    Readers call :meth:`current` once per evaluation and use that object
    throughout; writers build a complete new snapshot before swapping the
    reference, so no torn state is ever visible.
    """

    def __init__(
        self,
        initial: AccessControlConfig | None = None,
        persist: Callable[[AccessControlConfig], None] | None = None,
    ) -> None:
        self._current = initial or AccessControlConfig()
        self._persist = persist
        self._write_lock = threading.Lock()
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def current(self) -> AccessControlConfig:
        return self._current

    def replace(self, payload: Any, persist: bool = True) -> AccessControlConfig:
        """Validate *payload*, persist it if configured, then swap it in.

        Raises ConfigInvalidError (from parsing) before anything changes;
        a failing persist also leaves the previous snapshot in effect.
        """
        snapshot = (
            payload if isinstance(payload, AccessControlConfig)
            else AccessControlConfig.from_dict(payload)
        )
        with self._write_lock:
            if persist and self._persist is not None:
                self._persist(snapshot)
            self._current = snapshot
            self._version += 1
        log.info(
            "Access control replaced (v%d): enabled=%s whitelist_only=%s "
            "whitelist=%d blacklist=%d reader_overrides=%d/%d",
            self._version,
            snapshot.enabled,
            snapshot.whitelist_only,
            len(snapshot.whitelist),
            len(snapshot.blacklist),
            len(snapshot.reader_whitelists),
            len(snapshot.reader_blacklists),
        )
        return snapshot
