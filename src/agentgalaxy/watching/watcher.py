"""Directory watching backed by watchdog.

watchdog delivers events on its own observer thread. The handler never
touches the model: it hands each event to the event loop with
``call_soon_threadsafe`` and the loop puts it on a bounded queue. When the
queue is full the event is dropped and ``needs_rescan`` is raised so the
consumer can reconcile the model against disk instead.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from pathlib import Path

from watchdog.events import (
    DirModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from agentgalaxy.config.schema import WatchConfig
from agentgalaxy.errors import WatchError
from agentgalaxy.logging import get_logger
from agentgalaxy.model.events import WatchEvent

log = get_logger("watching")


class _Forwarder(FileSystemEventHandler):
    """Translates watchdog events into WatchEvents."""

    def __init__(self, submit: Callable[[WatchEvent], None]) -> None:
        self._submit = submit

    def on_created(self, event: FileSystemEvent) -> None:
        self._submit(WatchEvent.create(os.fsdecode(event.src_path), event.is_directory))

    def on_modified(self, event: FileSystemEvent) -> None:
        # Directory mtime churn accompanies every child change
        if isinstance(event, DirModifiedEvent):
            return
        self._submit(WatchEvent.modify(os.fsdecode(event.src_path)))

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._submit(WatchEvent.remove(os.fsdecode(event.src_path), event.is_directory))

    def on_moved(self, event: FileSystemEvent) -> None:
        self._submit(
            WatchEvent.rename(
                os.fsdecode(event.src_path),
                os.fsdecode(event.dest_path),
                event.is_directory,
            )
        )


class TreeWatcher:
    """Watches a directory tree and batches its changes for the model.

    Example:
        watcher = TreeWatcher(Path("/project"))
        watcher.start()
        while True:
            batch = await watcher.next_batch()
            model.apply_batch(batch)
    """

    def __init__(
        self,
        root: str | Path,
        config: WatchConfig | None = None,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        self._root = str(Path(root).resolve())
        self._config = config or WatchConfig()
        self._observer_factory = observer_factory or self._default_observer

        self._queue: asyncio.Queue[WatchEvent] = asyncio.Queue(maxsize=self._config.queue_size)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: BaseObserver | None = None
        self._handler = _Forwarder(self._submit)

        self._accepting = False
        self.needs_rescan = False
        self.overflowed = 0

    @property
    def root(self) -> str:
        return self._root

    @property
    def handler(self) -> FileSystemEventHandler:
        """The watchdog handler; events dispatched to it reach the queue."""
        return self._handler

    @property
    def running(self) -> bool:
        return self._accepting

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _default_observer(self) -> BaseObserver:
        if self._config.use_polling:
            return PollingObserver(timeout=self._config.poll_interval)
        return Observer()

    def start(self) -> None:
        """Start the observer thread. Must be called from the event loop."""
        if self._accepting:
            log.warning("TreeWatcher already running")
            return

        self._loop = asyncio.get_running_loop()
        self._accepting = True
        observer = self._observer_factory()
        try:
            observer.schedule(self._handler, self._root, recursive=True)
            observer.start()
        except OSError as e:
            self._accepting = False
            raise WatchError(f"Cannot watch {self._root}: {e}", path=self._root) from e
        self._observer = observer
        log.info(
            "TreeWatcher started on %s (%s)",
            self._root,
            "polling" if self._config.use_polling else "native",
        )

    def attach(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Accept events without starting a backend (events come via ``handler``)."""
        self._loop = loop or asyncio.get_running_loop()
        self._accepting = True

    def _submit(self, event: WatchEvent) -> None:
        # Observer thread
        loop = self._loop
        if not self._accepting or loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def _enqueue(self, event: WatchEvent) -> None:
        if not self._accepting:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.overflowed += 1
            if not self.needs_rescan:
                log.warning("Watch queue full (%d), model will be rescanned", self._config.queue_size)
            self.needs_rescan = True

    def consume_rescan(self) -> bool:
        """Return and clear the rescan flag."""
        flag = self.needs_rescan
        self.needs_rescan = False
        return flag

    def check_backend(self) -> None:
        """Raise WatchError if the observer thread died while running."""
        observer = self._observer
        if self._accepting and observer is not None and not observer.is_alive():
            raise WatchError(f"Watch backend for {self._root} stopped", path=self._root)

    async def next_batch(
        self,
        max_batch: int | None = None,
        timeout: float | None = None,
    ) -> list[WatchEvent]:
        """Wait for at least one event, then drain up to ``max_batch``.

        Returns an empty list if ``timeout`` elapses first.
        """
        limit = max_batch or self._config.batch_size
        try:
            if timeout is None:
                first = await self._queue.get()
            else:
                first = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return []

        batch = [first]
        while len(batch) < limit:
            try:
                batch.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    def drain(self) -> list[WatchEvent]:
        """Take everything currently queued without waiting."""
        events: list[WatchEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop accepting events, stop the observer and join its thread."""
        self._accepting = False
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        await asyncio.to_thread(observer.join, timeout)
        if observer.is_alive():
            log.warning("Watch observer did not stop within %.1fs", timeout)
        else:
            log.info("TreeWatcher stopped")
