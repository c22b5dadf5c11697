"""HTTP adapter over the engine: status, metrics, alerts, config, admin."""

from accesswatch.api.server import create_app

__all__ = ["create_app"]
