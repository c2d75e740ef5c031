"""Directory watching for agentgalaxy.

Forwards watchdog events from the observer thread into a bounded asyncio
queue consumed by the sync bridge.
"""

from agentgalaxy.watching.watcher import TreeWatcher

__all__ = [
    "TreeWatcher",
]
