"""WebSocket connection manager for visualization clients.

Membership is an immutable frozenset replaced under a lock that is held only
while a client is added or removed. ``broadcast`` never awaits: it puts the
message on every client's bounded queue and returns. Each client has its own
sender task doing the socket I/O, so a stalled client only ever stalls
itself. A client whose queue is full is disconnected.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agentgalaxy.errors import ClientOverflowError
from agentgalaxy.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket

log = get_logger("relay.websocket")

Outbound = dict[str, Any] | str

# Policy violation: the client could not keep up
OVERFLOW_CLOSE_CODE = 1008
GOING_AWAY_CLOSE_CODE = 1001


@dataclass(eq=False)
class _Client:
    id: str
    websocket: WebSocket
    queue: asyncio.Queue[Outbound]
    sender: asyncio.Task[None] | None = None
    closing: bool = False
    sent: int = 0


class ConnectionManager:
    """Tracks connected clients and fans messages out to them."""

    def __init__(self, buffer_size: int = 256, close_timeout: float = 5.0) -> None:
        self._buffer_size = max(1, buffer_size)
        self._close_timeout = close_timeout
        self._clients: frozenset[_Client] = frozenset()
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._background: set[asyncio.Task[None]] = set()
        self.dropped_clients = 0

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    @property
    def client_ids(self) -> list[str]:
        return sorted(c.id for c in self._clients)

    def get_connection_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket, greeting: Outbound | None = None) -> str:
        """Accept a WebSocket and start its sender task. Returns the client id."""
        await websocket.accept()
        client = _Client(
            id=f"client-{next(self._ids)}",
            websocket=websocket,
            queue=asyncio.Queue(maxsize=self._buffer_size),
        )
        if greeting is not None:
            client.queue.put_nowait(greeting)
        client.sender = asyncio.create_task(self._send_loop(client), name=f"relay-send-{client.id}")
        async with self._lock:
            self._clients = self._clients | {client}
        log.debug("Client %s connected (%d total)", client.id, len(self._clients))
        return client.id

    async def disconnect(self, client_id: str) -> None:
        """Remove a client whose socket has already closed."""
        client = self._find(client_id)
        if client is not None:
            await self._remove(client)

    def _find(self, client_id: str) -> _Client | None:
        for client in self._clients:
            if client.id == client_id:
                return client
        return None

    async def _remove(
        self,
        client: _Client,
        code: int | None = None,
        reason: str = "",
    ) -> None:
        client.closing = True
        async with self._lock:
            if client not in self._clients:
                return
            self._clients = self._clients - {client}

        sender = client.sender
        if sender is not None and sender is not asyncio.current_task():
            sender.cancel()
        if code is not None:
            with contextlib.suppress(Exception):
                await asyncio.wait_for(
                    client.websocket.close(code=code, reason=reason),
                    self._close_timeout,
                )
        log.debug("Client %s disconnected (%d remaining)", client.id, len(self._clients))

    async def _send_loop(self, client: _Client) -> None:
        while True:
            message = await client.queue.get()
            try:
                if isinstance(message, str):
                    await client.websocket.send_text(message)
                else:
                    await client.websocket.send_json(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.debug("Send to %s failed: %s", client.id, e)
                break
            client.sent += 1
        await self._remove(client)

    def _offer(self, client: _Client, message: Outbound) -> None:
        try:
            client.queue.put_nowait(message)
        except asyncio.QueueFull:
            raise ClientOverflowError(client.id, self._buffer_size) from None

    def _drop(self, client: _Client) -> None:
        client.closing = True
        self.dropped_clients += 1
        task = asyncio.get_running_loop().create_task(
            self._remove(client, OVERFLOW_CLOSE_CODE, "outbound buffer overflow")
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def send(self, client_id: str, message: Outbound) -> bool:
        """Queue a message for one client. Returns False if it was not queued."""
        client = self._find(client_id)
        if client is None or client.closing:
            return False
        try:
            self._offer(client, message)
        except ClientOverflowError as e:
            log.warning("%s, disconnecting", e)
            self._drop(client)
            return False
        return True

    def broadcast(self, message: Outbound) -> int:
        """Queue a message for every client. Returns how many accepted it."""
        delivered = 0
        for client in self._clients:
            if client.closing:
                continue
            try:
                self._offer(client, message)
            except ClientOverflowError as e:
                log.warning("%s, disconnecting", e)
                self._drop(client)
            else:
                delivered += 1
        return delivered

    async def close_all(self, reason: str = "Relay shutting down") -> None:
        """Close every connection and stop all sender tasks."""
        clients = list(self._clients)
        await asyncio.gather(
            *(self._remove(c, GOING_AWAY_CLOSE_CODE, reason) for c in clients),
            return_exceptions=True,
        )
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        log.info("Closed %d relay connections", len(clients))
