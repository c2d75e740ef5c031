"""WebSocket client for the relay push channel."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import WebSocketException

from agentgalaxy.config.schema import BridgeConfig
from agentgalaxy.errors import IngestionError, RelayConnectionError
from agentgalaxy.logging import get_logger
from agentgalaxy.relay.protocol import Envelope, parse_message

log = get_logger("bridge.client")

Connector = Callable[[str], AbstractAsyncContextManager[Any]]


class ConnectionState(Enum):
    """Relay connection state surfaced to the renderer."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPED = "stopped"


class RelayClient:
    """Keeps a connection to the relay and queues validated envelopes.

    On disconnect it retries with bounded exponential backoff. Nothing is
    replayed on reconnect: events the relay pushed while this client was
    away are gone for good. Malformed messages are counted and dropped, as
    are envelopes that arrive while the output queue is full.

    Example:
        client = RelayClient("ws://127.0.0.1:8080/ws")
        task = asyncio.create_task(client.run())
        envelope = await client.queue.get()
    """

    def __init__(
        self,
        url: str | None = None,
        queue: asyncio.Queue[Envelope] | None = None,
        config: BridgeConfig | None = None,
        connect: Connector | None = None,
    ) -> None:
        self._config = config or BridgeConfig()
        self.url = url or self._config.url
        self.queue: asyncio.Queue[Envelope] = queue or asyncio.Queue(maxsize=self._config.queue_size)
        self._connect: Connector = connect or websocket_connect

        self.state = ConnectionState.DISCONNECTED
        self._stopped = False
        self._wake = asyncio.Event()
        self._socket: Any = None

        self.attempt = 0
        self.connects = 0
        self.received = 0
        self.malformed = 0
        self.dropped = 0
        self.last_error: str | None = None

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt ``attempt`` (0-based)."""
        cfg = self._config
        return min(cfg.backoff_max, cfg.backoff_initial * (2**attempt))

    async def run(self) -> None:
        """Connect, consume, and reconnect until stopped."""
        while not self._stopped:
            self.state = ConnectionState.CONNECTING
            try:
                await self._session()
            except asyncio.CancelledError:
                raise
            except RelayConnectionError as e:
                self.last_error = str(e)
                log.debug("%s", e)

            if self._stopped:
                break
            self.state = ConnectionState.DISCONNECTED
            delay = self.backoff_delay(self.attempt)
            self.attempt += 1
            log.info("Relay disconnected, retrying in %.2fs", delay)
            await self._pause(delay)

        self.state = ConnectionState.STOPPED

    async def _session(self) -> None:
        """One connection lifetime.

        Raises:
            RelayConnectionError: Connecting failed or the connection dropped.
        """
        connected = False
        try:
            async with self._connect(self.url) as ws:
                connected = True
                self._socket = ws
                self.state = ConnectionState.CONNECTED
                self.attempt = 0
                self.connects += 1
                self.last_error = None
                log.info("Connected to relay at %s", self.url)
                try:
                    async for raw in ws:
                        self.handle(raw)
                finally:
                    self._socket = None
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            what = "lost" if connected else "failed"
            detail = str(e) or type(e).__name__
            raise RelayConnectionError(f"Relay connection to {self.url} {what}: {detail}", url=self.url) from e

    async def _pause(self, delay: float) -> None:
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def handle(self, raw: str | bytes) -> Envelope | None:
        """Validate one raw message and queue it. Never raises."""
        try:
            envelope = parse_message(raw)
        except IngestionError as e:
            self.malformed += 1
            log.warning("Dropping malformed relay message: %s", e)
            return None
        if envelope is None:
            return None

        self.received += 1
        try:
            self.queue.put_nowait(envelope)
        except asyncio.QueueFull:
            self.dropped += 1
            log.warning("Bridge queue full, dropping %s seq %d", envelope.kind.value, envelope.seq)
            return None
        return envelope

    async def stop(self) -> None:
        """Stop reconnecting and close the current connection."""
        self._stopped = True
        self._wake.set()
        ws = self._socket
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                log.debug("Error closing relay connection: %s", e)
        self.state = ConnectionState.STOPPED
