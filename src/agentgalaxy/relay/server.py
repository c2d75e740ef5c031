"""Relay server lifecycle management."""

from __future__ import annotations

import asyncio
import contextlib
import socket
import time
from typing import Any

import uvicorn

from agentgalaxy.config.schema import RelayConfig
from agentgalaxy.errors import RelayBindError, StartupError
from agentgalaxy.logging import get_logger
from agentgalaxy.relay.ingest import EventRelay
from agentgalaxy.relay.routes import create_app
from agentgalaxy.relay.websocket import ConnectionManager

log = get_logger("relay.server")


class RelayServer:
    """Runs the relay application under uvicorn.

    The listening socket is bound before uvicorn starts, so a port that is
    already taken surfaces as RelayBindError from ``start`` instead of a log
    line from inside the server task.

    Example:
        server = RelayServer(config.relay)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(self, config: RelayConfig | None = None, relay: EventRelay | None = None) -> None:
        self.config = config or RelayConfig()
        self.relay = relay or EventRelay(ConnectionManager(self.config.client_buffer))
        self.app = create_app(self.relay)
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._socket: socket.socket | None = None
        self._port: int | None = None
        self._start_time: float | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def port(self) -> int | None:
        """Port actually bound (differs from config when it was 0)."""
        return self._port

    def bind(self) -> socket.socket:
        """Bind the listening socket.

        Raises:
            RelayBindError: The address is in use or not available.
        """
        host, port = self.config.host, self.config.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(128)
        except OSError as e:
            sock.close()
            raise RelayBindError(host, port, e.strerror or str(e)) from e
        sock.setblocking(False)
        return sock

    async def start(self, startup_timeout: float = 10.0) -> None:
        """Bind and start serving in a background task."""
        if self.running:
            raise RuntimeError(f"Relay already running on port {self.port}")

        self._socket = self.bind()
        self._port = self._socket.getsockname()[1]
        config = uvicorn.Config(
            self.app,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[self._socket]))
        self._start_time = time.time()

        deadline = time.monotonic() + startup_timeout
        while not self._server.started:
            if self._task.done():
                error = self._task.exception()
                raise StartupError(f"Relay failed to start: {error}")
            if time.monotonic() > deadline:
                raise StartupError("Relay did not start in time")
            await asyncio.sleep(0.01)
        log.info("Relay listening on http://%s:%d", self.config.host, self.port)

    async def serve_forever(self) -> None:
        """Start and block until the server exits."""
        await self.start()
        assert self._task is not None
        try:
            await self._task
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Close client connections and stop the server."""
        if self._server is None:
            return

        await self.relay.connections.close_all("Relay shutting down")
        self._server.should_exit = True
        if self._task is not None and not self._task.done():
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task

        # uvicorn closes the sockets it was handed; close() is a no-op then
        port = self._port
        if self._socket is not None:
            self._socket.close()
        log.info("Relay stopped (was on port %s)", port)
        self._server = None
        self._task = None
        self._socket = None
        self._port = None

    def status(self) -> dict[str, Any]:
        status = self.relay.status()
        status.update(
            {
                "running": self.running,
                "port": self.port,
                "uptime": time.time() - self._start_time if self._start_time else 0,
            }
        )
        return status
