"""FastAPI REST adapter for the AccessWatch engine.

Read side (polled by the dashboard)
───────────────────────────────────
  GET  /status                  process, ingest and detection summary
  GET  /metrics                 current windows for every reader
  GET  /metrics/{reader_id}     current windows for one reader
  GET  /alerts?limit=N&since=   alert history, most recent first

Write side
──────────
  GET  /config/access_control   current policy snapshot
  POST /config/access_control   replace the policy atomically
  POST /admin/clear             {"target": "alerts" | "metrics"}
  POST /admin/restart           drain, reload config, rebuild state
  POST /events                  submit one normalised event (ingest.rest)

Handlers are plain ``def`` so FastAPI runs them on its worker threads;
the engine does its own locking.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from accesswatch import __version__
from accesswatch.analyzer.pipeline import AccessEngine
from accesswatch.api.schemas import AccessControlRequest, ClearRequest, EventRequest
from accesswatch.contracts.enums import RawResult
from accesswatch.contracts.event import AccessEvent, parse_ts
from accesswatch.shared.errors import ConfigInvalidError, UnknownClearTargetError

log = logging.getLogger(__name__)


def create_app(engine: AccessEngine) -> FastAPI:
    app = FastAPI(
        title="AccessWatch API",
        description="Access-control anomaly detection for credential readers",
        version=__version__,
    )
    app.state.engine = engine

    @app.exception_handler(ConfigInvalidError)
    async def _config_invalid(_: Request, exc: ConfigInvalidError) -> JSONResponse:
        log.warning("Rejected config write: %s", exc)
        return JSONResponse(status_code=400, content={"status": "error", "detail": str(exc)})

    @app.exception_handler(UnknownClearTargetError)
    async def _unknown_target(_: Request, exc: UnknownClearTargetError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"status": "error", "detail": str(exc)})

    # ── read side ────────────────────────────────────────────────────────

    @app.get("/status")
    def get_status() -> dict[str, Any]:
        return engine.status(__version__)

    @app.get("/metrics")
    def get_metrics() -> dict[str, Any]:
        snapshot = engine.store.list_metrics()
        return {
            "metrics": {r: [w.to_dict() for w in ws] for r, ws in snapshot.items()},
            "count": len(snapshot),
        }

    @app.get("/metrics/{reader_id}")
    def get_reader_metrics(reader_id: str) -> dict[str, Any]:
        windows = engine.aggregator.snapshot_reader(reader_id)
        if windows is None:
            raise HTTPException(status_code=404, detail=f"reader {reader_id} not seen")
        return {"reader_id": reader_id, "metrics": [w.to_dict() for w in windows]}

    @app.get("/alerts")
    def get_alerts(limit: int = 0, since: Optional[str] = None) -> dict[str, Any]:
        since_ts: datetime | None = None
        if since:
            try:
                since_ts = parse_ts(since)
            except ValueError:
                raise HTTPException(status_code=400, detail="since must be ISO-8601") from None
        alerts = engine.store.list_alerts(limit=limit, since=since_ts)
        return {"alerts": [a.to_dict() for a in alerts], "count": len(alerts)}

    # ── config ───────────────────────────────────────────────────────────

    @app.get("/config/access_control")
    def get_access_control() -> dict[str, Any]:
        return {"access_control": engine.policy.current().to_dict()}

    @app.post("/config/access_control")
    def post_access_control(body: AccessControlRequest) -> dict[str, Any]:
        try:
            engine.replace_access_control(body.model_dump())
        except OSError as exc:
            log.error("Could not persist access control: %s", exc)
            raise HTTPException(status_code=500, detail="failed to persist config") from exc
        return {"status": "ok"}

    # ── admin ────────────────────────────────────────────────────────────

    @app.post("/admin/clear")
    def post_clear(body: ClearRequest) -> dict[str, Any]:
        target = engine.clear(body.target)
        return {"status": "ok", "target": target.value}

    @app.post("/admin/restart")
    def post_restart() -> dict[str, Any]:
        settings = engine.restart()
        return {"status": "ok", "windows": list(settings.detection.windows)}

    # ── ingestion ────────────────────────────────────────────────────────

    @app.post("/events")
    def post_event(body: EventRequest) -> dict[str, Any]:
        if not engine.settings.ingest.get("rest", False):
            raise HTTPException(status_code=404, detail="REST ingestion disabled")
        ts = body.timestamp or datetime.now(timezone.utc)
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        event = AccessEvent(
            reader_id=body.reader_id.strip(),
            credential_id=body.credential_id.strip(),
            timestamp=ts.astimezone(timezone.utc),
            raw_result=RawResult(body.raw_result),
            context=body.context,
        )
        alerts = engine.process(event)
        return {"status": "accepted", "alerts": [a.to_dict() for a in alerts]}

    return app
