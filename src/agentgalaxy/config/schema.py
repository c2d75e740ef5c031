"""Configuration schema dataclasses for agentgalaxy.

Every section has working defaults so that a missing or partial config file
still yields a complete Config. The only required input at runtime is the
root directory, which is passed on the command line, not through this tree.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RelayConfig:
    """Event relay server settings.

    Example config.yaml:
        relay:
          host: 127.0.0.1
          port: 8080
          client_buffer: 256
    """

    host: str = "127.0.0.1"
    port: int = 8080
    client_buffer: int = 256  # Outbound messages queued per client before disconnect


@dataclass
class WatchConfig:
    """Directory watching configuration.

    Example config.yaml:
        watch:
          use_polling: false
          poll_interval: 1.0
          ignore_patterns:
            - "*.log"
            - "build/"
    """

    use_polling: bool = False  # PollingObserver instead of the native backend
    poll_interval: float = 1.0  # Seconds between polls when use_polling is set
    queue_size: int = 4096  # Raw events buffered before a full rescan is forced
    batch_size: int = 512  # Max events applied per model snapshot
    ignore_patterns: list[str] = field(default_factory=list)  # On top of .gitignore files


@dataclass
class LayoutConfig:
    """Layout assignment parameters."""

    ring_capacity: int = 12  # Slots per ring around a parent
    dir_radius: float = 8.0
    file_radius: float = 2.0
    ring_gap: float = 1.5
    layer_gap: float = 2.0
    file_drop: float = 1.5
    min_scale: float = 0.3  # Floor so zero-byte files stay visible
    max_scale: float = 1.2


@dataclass
class AgentsConfig:
    """Agent session registry timing and buffer sizes (seconds / counts)."""

    starting_hold: float = 0.5
    activity_hold: float = 1.2
    idle_timeout: float = 30.0
    activity_log_size: int = 50
    node_activity_size: int = 10
    deferred_grace: float = 5.0
    history_size: int = 64


@dataclass
class BridgeConfig:
    """Client synchronization bridge settings."""

    url: str = "ws://127.0.0.1:8080/ws"
    backoff_initial: float = 0.5
    backoff_max: float = 10.0
    queue_size: int = 1024
    tick_interval: float = 1.0 / 30.0
    housekeeping_interval: float = 0.25


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0..4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    relay: RelayConfig = field(default_factory=RelayConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    agents: AgentsConfig = field(default_factory=AgentsConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level sections are kept, not rejected
    extra: dict[str, Any] = field(default_factory=dict)
