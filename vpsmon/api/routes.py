from __future__ import annotations

import hmac
import logging

from fastapi import (
    APIRouter,
    Depends,
    Header,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
)

from vpsmon.config import settings
from vpsmon.db import database as db
from vpsmon.models import HostInfo, MetricSample

logger = logging.getLogger(__name__)

router = APIRouter()


# ── WebSocket connection manager ──────────────────────


class ConnectionManager:
    """Tracks active WebSocket clients and broadcasts messages."""

    def __init__(self) -> None:
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, data: dict) -> None:
        dead: list[WebSocket] = []
        for ws in list(self.active_connections):
            try:
                await ws.send_json(data)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)


ws_manager = ConnectionManager()


async def broadcast_sample(sample: MetricSample) -> None:
    """Broadcaster sink, pushes each ingested sample to every viewer."""
    await ws_manager.broadcast({"type": "metric", "data": sample.model_dump(mode="json")})


# ── auth ──────────────────────────────────────────────


async def verify_ingest_token(authorization: str = Header(default="")) -> None:
    token = authorization[7:] if authorization.startswith("Bearer ") else ""
    expected = settings.ingest_token
    if not token or not expected or not hmac.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ── ingest ────────────────────────────────────────────


@router.post("/api/ingest", dependencies=[Depends(verify_ingest_token)])
async def ingest(sample: MetricSample, request: Request) -> dict:
    try:
        await db.insert_sample(sample)
    except db.StoreError:
        logger.exception("Ingest from %s failed", sample.server_id)
        raise HTTPException(status_code=503, detail="Store write failed")

    request.app.state.broadcaster.offer(sample)
    return {"ok": True}


@router.post("/api/ingest/info/{server_id}", dependencies=[Depends(verify_ingest_token)])
async def ingest_info(server_id: str, info: HostInfo) -> dict:
    await db.upsert_host_info(server_id, info)
    return {"ok": True}


# ── REST routes ───────────────────────────────────────


@router.get("/api/latest")
async def get_latest(request: Request) -> list[dict]:
    snapshots = await request.app.state.aggregator.snapshot_all()
    return [s.model_dump(mode="json") for s in snapshots]


@router.get("/api/servers")
async def get_servers() -> list[str]:
    return await db.get_server_ids()


@router.get("/api/servers/{server_id}/history")
async def get_history(
    server_id: str,
    since: int | None = None,
    until: int | None = None,
    limit: int = 1000,
) -> list[dict]:
    if server_id not in await db.get_server_ids():
        raise HTTPException(status_code=404, detail="Server not found")
    samples = await db.get_samples(server_id, since_ts=since, until_ts=until, limit=limit)
    return [s.model_dump(mode="json") for s in samples]


@router.get("/api/alerts/state")
async def get_alert_states() -> dict[str, dict]:
    states = await db.get_alert_states()
    return {
        server_id: {"active": state.active, "last_email_ts": state.last_email_ts}
        for server_id, state in states.items()
    }


@router.get("/api/status")
async def get_status(request: Request) -> dict:
    state = request.app.state
    broadcaster = state.broadcaster
    evaluator = state.alert_evaluator
    last_report = evaluator.last_report
    return {
        "status": "running",
        "broadcaster_running": broadcaster.running,
        "pending_broadcasts": broadcaster.pending,
        "dropped_broadcasts": broadcaster.dropped,
        "failed_broadcasts": broadcaster.failed,
        "viewers": len(ws_manager.active_connections),
        "alert_evaluator_running": evaluator.running,
        "last_evaluation": last_report.model_dump() if last_report else None,
    }


# ── WebSocket endpoint ────────────────────────────────


@router.websocket("/ws/metrics")
async def websocket_metrics(websocket: WebSocket) -> None:
    await ws_manager.connect(websocket)
    try:
        while True:
            # Keep connection alive; client can send pings or messages
            await websocket.receive_text()
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket)
