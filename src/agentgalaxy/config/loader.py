"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Deep merging of the system, user and project layers
- Environment variable overrides
- Conversion from dict to the typed Config dataclass
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from agentgalaxy.config.paths import get_config_paths
from agentgalaxy.config.schema import (
    AgentsConfig,
    BridgeConfig,
    Config,
    LayoutConfig,
    LoggingConfig,
    RelayConfig,
    WatchConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("agentgalaxy.config")

_cached_config: Config | None = None

_SECTIONS: dict[str, type] = {
    "relay": RelayConfig,
    "watch": WatchConfig,
    "layout": LayoutConfig,
    "agents": AgentsConfig,
    "bridge": BridgeConfig,
    "logging": LoggingConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict if missing or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` onto ``base`` without mutating either.

    Nested dicts merge key by key, lists and scalars are replaced, and a
    ``None`` in the override leaves the base value alone.
    """
    result = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Fold config layers left to right; later layers win."""
    result: dict[str, Any] = {}
    for config in configs:
        if config:
            result = deep_merge(result, config)
    return result


def env_overrides() -> dict[str, Any]:
    """Build a config dict from AG_* environment variables."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("AG_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    relay_url = os.environ.get("AG_RELAY_URL")
    if relay_url:
        overrides.setdefault("bridge", {})["url"] = relay_url

    relay_port = os.environ.get("AG_RELAY_PORT")
    if relay_port:
        try:
            overrides.setdefault("relay", {})["port"] = int(relay_port)
        except ValueError:
            _log.warning("Ignoring non-numeric AG_RELAY_PORT=%r", relay_port)

    return overrides


def _build_section(cls: type, data: Any) -> Any:
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - known
    if unknown:
        _log.debug("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    return cls(**{k: v for k, v in data.items() if k in known})


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    sections = {name: _build_section(cls, data.get(name, {})) for name, cls in _SECTIONS.items()}
    extra = {k: v for k, v in data.items() if k not in _SECTIONS}
    return Config(**sections, extra=extra)


def load_config(root: str | Path | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config (<root>/.agentgalaxy/config.yaml)
    3. User config
    4. System config

    Args:
        root: Watched root directory for project-level config.
        reload: Force reload even if cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and root is None:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for path in get_config_paths(root):
        layer = load_yaml_file(path)
        if layer:
            _log.debug("Loaded config from %s", path)
            layers.append(layer)

    env_config = env_overrides()
    if env_config:
        layers.append(env_config)

    config = dict_to_config(merge_configs(*layers))

    # Only the root-less config is global
    if root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Drop the cached config (tests, forced reload)."""
    global _cached_config
    _cached_config = None
