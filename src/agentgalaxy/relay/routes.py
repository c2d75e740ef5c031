"""FastAPI routes for agent ingestion and the client push channel."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from agentgalaxy import __version__
from agentgalaxy.errors import IngestionError
from agentgalaxy.logging import get_logger
from agentgalaxy.relay.ingest import EventRelay
from agentgalaxy.relay.protocol import HELLO_TYPE, EventKind

log = get_logger("relay.routes")


def create_app(relay: EventRelay) -> FastAPI:
    """Create the relay application around an EventRelay."""
    app = FastAPI(
        title="agentgalaxy relay",
        description="Fans agent activity out to visualization clients",
        version=__version__,
    )
    app.state.relay = relay
    _register_routes(app, relay)
    return app


async def _ingest(relay: EventRelay, kind: EventKind, request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        body = None
    try:
        envelope = relay.ingest(kind, body)
    except IngestionError as e:
        log.warning("Rejected %s request: %s", kind.value, e)
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"status": "ok", "seq": envelope.seq}


def _register_routes(app: FastAPI, relay: EventRelay) -> None:
    """Register ingest, status and WebSocket routes."""

    @app.post("/session-start")
    async def session_start(request: Request) -> dict[str, Any]:
        return await _ingest(relay, EventKind.SESSION_START, request)

    @app.post("/read")
    async def read(request: Request) -> dict[str, Any]:
        return await _ingest(relay, EventKind.READ, request)

    @app.post("/write")
    async def write(request: Request) -> dict[str, Any]:
        return await _ingest(relay, EventKind.WRITE, request)

    @app.post("/edit")
    async def edit(request: Request) -> dict[str, Any]:
        return await _ingest(relay, EventKind.EDIT, request)

    @app.post("/session-end")
    async def session_end(request: Request) -> dict[str, Any]:
        return await _ingest(relay, EventKind.SESSION_END, request)

    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        return relay.status()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """Push channel: every ingested event, in receipt order."""
        connections = relay.connections
        greeting = {
            "type": HELLO_TYPE,
            "version": __version__,
            "last_seq": relay.last_seq,
            "epoch": relay.epoch,
        }
        client_id = await connections.connect(websocket, greeting)
        try:
            while True:
                try:
                    data = await websocket.receive_text()
                except (WebSocketDisconnect, RuntimeError):
                    # RuntimeError: the relay closed this socket itself
                    break
                if data == "ping":
                    connections.send(client_id, "pong")
        finally:
            await connections.disconnect(client_id)
