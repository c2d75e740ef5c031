"""Client synchronization bridge for agentgalaxy.

Consumes the relay push channel and the directory watcher, feeds the
registry and the model, and composes per-tick scenes for the renderer.
"""

from agentgalaxy.bridge.bridge import SyncBridge
from agentgalaxy.bridge.client import ConnectionState, RelayClient
from agentgalaxy.bridge.scene import AgentMotion, Scene

__all__ = [
    "AgentMotion",
    "ConnectionState",
    "RelayClient",
    "Scene",
    "SyncBridge",
]
