"""Tests for the relay server lifecycle."""

from __future__ import annotations

import asyncio
import json
import socket
from collections.abc import Iterator

import httpx
import pytest
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed

from agentgalaxy.config.schema import RelayConfig
from agentgalaxy.errors import RelayBindError, StartupError
from agentgalaxy.relay import RelayServer


@pytest.fixture
def occupied_port() -> Iterator[int]:
    """A port with another listener already on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    try:
        yield sock.getsockname()[1]
    finally:
        sock.close()


class TestBind:
    """Tests for binding the listening socket."""

    def test_port_in_use(self, occupied_port: int) -> None:
        server = RelayServer(RelayConfig(port=occupied_port))
        with pytest.raises(RelayBindError) as exc_info:
            server.bind()
        assert exc_info.value.port == occupied_port
        assert isinstance(exc_info.value, StartupError)

    @pytest.mark.asyncio
    async def test_start_reports_bind_failure(self, occupied_port: int) -> None:
        server = RelayServer(RelayConfig(port=occupied_port))
        with pytest.raises(RelayBindError):
            await server.start()
        assert not server.running

    def test_ephemeral_port(self) -> None:
        server = RelayServer(RelayConfig(port=0))
        sock = server.bind()
        try:
            assert sock.getsockname()[1] > 0
        finally:
            sock.close()


class TestServe:
    """End-to-end tests against a running relay."""

    @pytest.mark.asyncio
    async def test_ingest_reaches_websocket_client(self) -> None:
        server = RelayServer(RelayConfig(port=0))
        await server.start()
        try:
            assert server.running
            base = f"127.0.0.1:{server.port}"
            async with websocket_connect(f"ws://{base}/ws") as ws:
                hello = json.loads(await ws.recv())
                assert hello["type"] == "hello"

                async with httpx.AsyncClient(base_url=f"http://{base}") as http:
                    response = await http.post(
                        "/session-start",
                        json={"session_id": "a1", "cwd": "/proj", "model": "x"},
                    )
                    assert response.status_code == 200
                    status = (await http.get("/api/status")).json()
                    assert status["connections"] == 1

                event = json.loads(await asyncio.wait_for(ws.recv(), 2.0))
                assert event["kind"] == "session-start"
                assert event["session_id"] == "a1"
        finally:
            await server.stop()
        assert not server.running
        assert server.port is None

    @pytest.mark.asyncio
    async def test_stop_closes_clients(self) -> None:
        server = RelayServer(RelayConfig(port=0))
        await server.start()
        ws = await websocket_connect(f"ws://127.0.0.1:{server.port}/ws")
        try:
            await ws.recv()
            await server.stop()
            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(ws.recv(), 2.0)
            assert ws.close_code == 1001
        finally:
            await ws.close()

    @pytest.mark.asyncio
    async def test_status_while_running(self) -> None:
        server = RelayServer(RelayConfig(port=0))
        await server.start()
        try:
            status = server.status()
            assert status["running"] is True
            assert status["port"] == server.port
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_stop_after_uvicorn_closed_socket(self) -> None:
        server = RelayServer(RelayConfig(port=0))
        await server.start()
        first_port = server.port
        await server.stop()
        await server.stop()
        assert server.status()["port"] is None

        await server.start()
        try:
            assert server.running
            assert server.port is not None
            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{server.port}") as http:
                assert (await http.get("/api/status")).status_code == 200
        finally:
            await server.stop()
        assert first_port is not None
        assert server.port is None
