"""Synchronization bridge: feeds the model and registry, composes scenes.

Three dedicated tasks do the work:

- watch loop: watcher batches -> model.apply_batch -> resolve deferred refs
- relay loop: client queue -> registry.apply
- housekeeping loop: registry.tick on a fixed interval

``compose`` only reads the two published snapshots, so it never waits on a
producer and producers never wait on it.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Coroutine
from typing import Any

from agentgalaxy.agents.registry import SessionRegistry
from agentgalaxy.bridge.client import ConnectionState, RelayClient
from agentgalaxy.bridge.scene import Scene
from agentgalaxy.config.schema import BridgeConfig
from agentgalaxy.errors import WatchError
from agentgalaxy.logging import get_logger
from agentgalaxy.model.events import WatchEvent
from agentgalaxy.model.tree import FileSystemModel
from agentgalaxy.watching.watcher import TreeWatcher

log = get_logger("bridge")


class SyncBridge:
    """Wires a model, a registry, a watcher and a relay client together.

    Example:
        bridge = SyncBridge(model, registry, watcher, client, config.bridge)
        await bridge.start()
        scene = bridge.compose()  # once per frame
        await bridge.stop()
    """

    def __init__(
        self,
        model: FileSystemModel,
        registry: SessionRegistry,
        watcher: TreeWatcher | None = None,
        client: RelayClient | None = None,
        config: BridgeConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.model = model
        self.registry = registry
        self.watcher = watcher
        self.client = client
        self._config = config or BridgeConfig()
        self._clock = clock

        self._tasks: list[asyncio.Task[None]] = []
        self._tick = 0
        self._running = False

        registry.set_resolver(self.resolve)

    @property
    def running(self) -> bool:
        return self._running

    def resolve(self, path: str) -> int | None:
        """Node id for a path in the latest model snapshot."""
        node = self.model.snapshot.lookup(path)
        return node.id if node is not None else None

    async def start(self) -> None:
        """Build the model if needed and start the producer tasks."""
        if self._running:
            return
        if self.model.snapshot.version == 0:
            self.model.build()

        if self.watcher is not None:
            try:
                self.watcher.start()
            except WatchError as e:
                log.error("Watcher failed to start: %s", e)
                self.model.mark_stale(str(e))
            self._spawn(self._watch_loop(self.watcher), "watch")

        if self.client is not None:
            self._spawn(self.client.run(), "relay-client")
            self._spawn(self._relay_loop(self.client), "relay")

        self._spawn(self._housekeeping_loop(), "housekeeping")
        self._running = True
        log.info("Bridge started for %s", self.model.root)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        self._tasks.append(asyncio.create_task(coro, name=f"bridge-{name}"))

    def apply_watch_batch(self, batch: list[WatchEvent]) -> None:
        """Apply watch events, then bind any deferred agent references."""
        if batch:
            self.model.apply_batch(batch)
        if self.registry.pending_count:
            self.registry.resolve_pending()

    async def _watch_loop(self, watcher: TreeWatcher) -> None:
        interval = self._config.housekeeping_interval
        while True:
            try:
                watcher.check_backend()
            except WatchError as e:
                self.model.mark_stale(str(e))
                await asyncio.sleep(interval)
                continue

            batch = await watcher.next_batch(timeout=interval)
            self.apply_watch_batch(batch)
            if watcher.consume_rescan():
                self.model.rescan()
                self.apply_watch_batch([])

    async def _relay_loop(self, client: RelayClient) -> None:
        while True:
            envelope = await client.queue.get()
            self.registry.apply(envelope)

    async def _housekeeping_loop(self) -> None:
        interval = self._config.housekeeping_interval
        while True:
            await asyncio.sleep(interval)
            self.registry.tick()

    async def stop(self) -> None:
        """Stop producers, apply whatever was already received, keep snapshots."""
        if not self._running:
            return
        self._running = False

        if self.watcher is not None:
            await self.watcher.stop()
        if self.client is not None:
            await self.client.stop()

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

        if self.watcher is not None:
            self.apply_watch_batch(self.watcher.drain())
        if self.client is not None:
            while True:
                try:
                    envelope = self.client.queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                self.registry.apply(envelope)
        log.info("Bridge stopped")

    def compose(self) -> Scene:
        """Merge the latest published snapshots into one Scene."""
        self._tick += 1
        client = self.client
        return Scene(
            tick=self._tick,
            composed_at=self._clock(),
            model=self.model.snapshot,
            agents=self.registry.snapshot,
            connection=client.state if client else ConnectionState.DISCONNECTED,
            malformed=client.malformed if client else 0,
            dropped=client.dropped if client else 0,
        )
