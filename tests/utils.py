"""Shared test utilities for agentgalaxy tests."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any


def write_tree(root: Path, spec: dict[str, Any]) -> None:
    """Create files and directories from a nested dict.

    A dict value is a directory; a str value is file content.
    """
    root.mkdir(parents=True, exist_ok=True)
    for name, value in spec.items():
        path = root / name
        if isinstance(value, dict):
            write_tree(path, value)
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(value, encoding="utf-8")


class MockWebSocket:
    """Server-side WebSocket stand-in for ConnectionManager tests.

    With ``stalled=True`` every send blocks until ``release()`` is called,
    which is what a client that stopped reading looks like to the relay.
    """

    def __init__(self, should_fail: bool = False, stalled: bool = False):
        self.should_fail = should_fail
        self.accepted = False
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.sent_messages: list[Any] = []
        self._gate = asyncio.Event()
        if not stalled:
            self._gate.set()

    def release(self) -> None:
        self._gate.set()

    async def accept(self) -> None:
        self.accepted = True

    async def _send(self, message: Any) -> None:
        await self._gate.wait()
        if self.should_fail:
            raise Exception("WebSocket connection failed")
        self.sent_messages.append(message)

    async def send_json(self, message: dict) -> None:
        await self._send(message)

    async def send_text(self, message: str) -> None:
        await self._send(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    def events(self) -> list[dict]:
        """Sent agent events, without control traffic."""
        return [
            m for m in self.sent_messages
            if isinstance(m, dict) and m.get("type") == "agent_event"
        ]


class LoopbackSocket(MockWebSocket):
    """Both ends of one relay connection, with no network in between.

    The relay's ConnectionManager sees a server-side WebSocket; the bridge's
    RelayClient iterates the same object as its client connection and
    receives every JSON message the relay sends, serialized as text.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        super().__init__()
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    async def _send(self, message: Any) -> None:
        await super()._send(message)
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    def inject(self, raw: str) -> None:
        """Deliver raw text to the client end as if the relay sent it."""
        self._inbox.put_nowait(raw)

    def hang_up(self) -> None:
        """Drop the connection from the network side."""
        self._inbox.put_nowait(self._CLOSED)

    def fail(self, error: Exception) -> None:
        """Break the connection with a transport error."""
        self._inbox.put_nowait(error)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await super().close(code, reason)
        self.hang_up()

    def __aiter__(self) -> LoopbackSocket:
        return self

    async def __anext__(self) -> Any:
        item = await self._inbox.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll ``predicate`` until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
