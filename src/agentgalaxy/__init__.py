"""agentgalaxy: a live, spatially stable model of a directory tree and the agents working in it."""

__version__ = "0.1.0"

# Public API
from agentgalaxy.agents import AgentState, AgentView, RegistrySnapshot, SessionRegistry, ToolKind
from agentgalaxy.bridge import ConnectionState, RelayClient, Scene, SyncBridge
from agentgalaxy.config import Config, get_config, load_config
from agentgalaxy.errors import (
    ClientOverflowError,
    GalaxyError,
    IngestionError,
    RelayBindError,
    RelayConnectionError,
    RootNotFoundError,
    StartupError,
    WatchError,
)
from agentgalaxy.model import FileSystemModel, LayoutEngine, ModelSnapshot, WatchEvent, WatchKind
from agentgalaxy.relay import ConnectionManager, Envelope, EventKind, EventRelay, RelayServer, create_app
from agentgalaxy.watching import TreeWatcher

__all__ = [
    # Model
    "FileSystemModel",
    "LayoutEngine",
    "ModelSnapshot",
    "WatchEvent",
    "WatchKind",
    "TreeWatcher",
    # Agents
    "AgentState",
    "AgentView",
    "RegistrySnapshot",
    "SessionRegistry",
    "ToolKind",
    # Relay
    "ConnectionManager",
    "Envelope",
    "EventKind",
    "EventRelay",
    "RelayServer",
    "create_app",
    # Bridge
    "ConnectionState",
    "RelayClient",
    "Scene",
    "SyncBridge",
    # Config
    "Config",
    "load_config",
    "get_config",
    # Errors
    "GalaxyError",
    "IngestionError",
    "WatchError",
    "RelayConnectionError",
    "ClientOverflowError",
    "StartupError",
    "RootNotFoundError",
    "RelayBindError",
]
