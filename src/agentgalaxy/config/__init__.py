"""Configuration management for agentgalaxy.

Hierarchical YAML configuration with system, user and project layers plus
environment variable overrides (highest priority).

Example usage:
    from agentgalaxy.config import load_config

    config = load_config(root="/path/to/project")
    print(config.relay.port)
"""

from agentgalaxy.config.loader import (
    deep_merge,
    get_config,
    load_config,
    merge_configs,
    reset_config,
)
from agentgalaxy.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from agentgalaxy.config.schema import (
    AgentsConfig,
    BridgeConfig,
    Config,
    LayoutConfig,
    LoggingConfig,
    RelayConfig,
    WatchConfig,
)

__all__ = [
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "deep_merge",
    "merge_configs",
    "AgentsConfig",
    "BridgeConfig",
    "LayoutConfig",
    "LoggingConfig",
    "RelayConfig",
    "WatchConfig",
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
