"""Exception types raised by the access-watch core."""

from __future__ import annotations


class AccessWatchError(Exception):
    """Base class for recoverable core errors."""


class ConfigInvalidError(AccessWatchError):
    """A config file or access-control payload failed validation.

    The write is rejected; whatever config was in effect stays in effect.
    """


class UnknownClearTargetError(AccessWatchError):
    def __init__(self, target: str) -> None:
        super().__init__(f"unknown clear target: {target!r}")
        self.target = target


class EvaluationSkipped(AccessWatchError):
    """A predicate's metric is not computable for the current window."""
