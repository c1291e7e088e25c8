"""
Live dashboard push over WebSocket.

Every scored cycle is broadcast as a "data" event and every transition as a
"trade" event to all connected browsers. The server runs in a daemon thread
beside the scheduler; the engine only ever sees a telemetry sink.

    ws://<host>:<port>/ws      live stream (latest data event replayed on connect)
    GET /api/latest            latest data event as JSON
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from signals.engine import CycleRecord, TransitionRecord


def cycle_message(pair_id: str, record: CycleRecord) -> Optional[dict]:
    """Only cycles that produced a z-score are pushed."""
    if record.z is None:
        return None
    return {
        "event": "data",
        "pair": pair_id,
        "timestamp": record.timestamp.isoformat(),
        "spread": record.spread,
        "rollingMean": record.mean,
        "zScore": record.z,
    }


def trade_message(pair_id: str, tr: TransitionRecord) -> dict:
    return {
        "event": "trade",
        "pair": pair_id,
        "timestamp": tr.timestamp.isoformat(),
        "type": tr.kind,
        "positionType": tr.side,
        "zScore": tr.z,
        "spread": tr.spread,
        "originalBeta": tr.beta_raw,
        "usedBeta": tr.beta_used,
        "hedgeInverted": tr.inverted,
        "exitReason": tr.exit_reason,
    }


class ConnectionManager:
    """Manage WebSocket connections for live updates."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self.last_data: Optional[dict] = None
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self.active_connections.append(websocket)

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            if websocket in self.active_connections:
                self.active_connections.remove(websocket)

    async def broadcast(self, data: dict):
        """Send data to all connected clients; drop the ones that went away."""
        if data.get("event") == "data":
            self.last_data = data
        async with self._lock:
            disconnected = []
            for connection in self.active_connections:
                try:
                    await connection.send_json(data)
                except Exception as e:
                    logging.debug("Dropping dashboard client: %s", e)
                    disconnected.append(connection)

            for conn in disconnected:
                if conn in self.active_connections:
                    self.active_connections.remove(conn)


def create_app(manager: ConnectionManager) -> FastAPI:
    app = FastAPI(title="Pairs Bot Dashboard")

    @app.get("/api/latest")
    async def latest():
        return JSONResponse(manager.last_data or {})

    @app.websocket("/ws")
    async def live(websocket: WebSocket):
        await manager.connect(websocket)
        try:
            if manager.last_data is not None:
                await websocket.send_json(manager.last_data)
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            await manager.disconnect(websocket)

    return app


class DashboardSink:
    """
    Telemetry sink that publishes to the dashboard. With a server loop the
    broadcast is scheduled on it; without one it runs inline.
    """

    def __init__(self, manager: ConnectionManager, pair_id: str,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.manager = manager
        self.pair_id = pair_id
        self.loop = loop

    def record_cycle(self, record: CycleRecord) -> None:
        msg = cycle_message(self.pair_id, record)
        if msg is not None:
            self._publish(msg)

    def record_transition(self, transition: TransitionRecord) -> None:
        self._publish(trade_message(self.pair_id, transition))

    def _publish(self, msg: dict) -> None:
        if self.loop is None:
            asyncio.run(self.manager.broadcast(msg))
        else:
            asyncio.run_coroutine_threadsafe(self.manager.broadcast(msg), self.loop)


def start_dashboard(pair_id: str, host: str = "0.0.0.0", port: int = 3000) -> DashboardSink:
    """Serve the dashboard in a daemon thread and return the sink feeding it."""
    manager = ConnectionManager()
    server = uvicorn.Server(
        uvicorn.Config(create_app(manager), host=host, port=port, log_level="warning")
    )
    loop = asyncio.new_event_loop()

    def _serve():
        asyncio.set_event_loop(loop)
        loop.run_until_complete(server.serve())

    threading.Thread(target=_serve, name="dashboard", daemon=True).start()
    logging.info("📡 Dashboard live on ws://%s:%s/ws", host, port)
    return DashboardSink(manager, pair_id, loop=loop)
