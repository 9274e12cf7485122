"""FastAPI app: health, metrics, real-time WebSocket and alert acknowledgement."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import orjson
from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from rack_common.config import Settings, get_settings

from .errors import PersistenceFailure
from .notifications.broadcaster import AsyncioQueueSubscriber
from .service import IngestionService

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


def _service(request: Request) -> IngestionService:
    return request.app.state.service


def _require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> None:
    # If INGEST_API_KEY is not set, we allow requests (dev mode).
    expected = _service(request).settings.ingest_api_key
    if not expected:
        return

    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def create_app(service: Optional[IngestionService] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = app.state.service
        configure_logging(svc.settings)
        svc.start()
        try:
            yield
        finally:
            svc.stop()

    app = FastAPI(title="Rack Ingest Service", version="0.1.0", lifespan=lifespan)
    app.state.service = service or IngestionService(get_settings())

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/ready")
    def ready(request: Request):
        state = _service(request).ready()
        if not state["ready"]:
            return JSONResponse(status_code=503, content={"status": "not ready", **state})
        return {"status": "ready", **state}

    @app.get("/metrics")
    def metrics(request: Request):
        return _service(request).metrics()

    @app.get("/metrics/prometheus")
    def prometheus_metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/alerts/{alert_id}/acknowledge", dependencies=[Depends(_require_api_key)])
    def acknowledge_alert(alert_id: int, request: Request):
        svc = _service(request)
        if svc.alerts is None:
            raise HTTPException(status_code=503, detail="service not started")
        try:
            alert = svc.alerts.acknowledge(alert_id)
        except PersistenceFailure as e:
            logger.error("[API] Acknowledge failed alert=%s: %s", alert_id, e)
            raise HTTPException(status_code=503, detail="storage unavailable")
        if alert is None:
            raise HTTPException(status_code=404, detail="alert not found")
        return {
            "id": alert.id,
            "type": alert.type,
            "acknowledged": alert.acknowledged,
            "acknowledgedAt": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
        }

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        svc: IngestionService = websocket.app.state.service
        if svc.broadcaster is None:
            await websocket.close(code=1013)
            return

        await websocket.accept()
        subscriber = AsyncioQueueSubscriber(
            asyncio.get_running_loop(),
            max_size=svc.settings.realtime_subscriber_queue_size,
        )
        svc.broadcaster.subscribe(subscriber)
        logger.info("[REALTIME] WebSocket client connected")
        try:
            while True:
                event, payload = await subscriber.queue.get()
                frame = orjson.dumps({"event": event, "data": payload}, default=str)
                await websocket.send_text(frame.decode())
        except WebSocketDisconnect:
            logger.info("[REALTIME] WebSocket client disconnected (dropped=%d)", subscriber.dropped)
        finally:
            svc.broadcaster.unsubscribe(subscriber)

    return app


app = create_app()
