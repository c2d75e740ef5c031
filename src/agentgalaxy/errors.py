"""Exception taxonomy for agentgalaxy.

Only StartupError subclasses are meant to terminate the process. Everything
else is caught at the boundary that raised it, logged, and the loop moves on.
"""

from __future__ import annotations


class GalaxyError(Exception):
    """Base class for all agentgalaxy errors."""


class IngestionError(GalaxyError):
    """An ingested relay request was malformed or missing a required field."""

    def __init__(self, message: str, kind: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind


class WatchError(GalaxyError):
    """A path could not be read, or the watch backend failed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class RelayConnectionError(GalaxyError, ConnectionError):
    """The relay could not be reached or the connection dropped."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class ClientOverflowError(GalaxyError):
    """A visualization client's outbound buffer exceeded its bound."""

    def __init__(self, client_id: str, buffer_size: int) -> None:
        super().__init__(f"Client {client_id} exceeded outbound buffer of {buffer_size}")
        self.client_id = client_id
        self.buffer_size = buffer_size


class StartupError(GalaxyError):
    """Fatal configuration or environment problem detected at startup."""


class RootNotFoundError(StartupError):
    """The configured root directory does not exist."""

    def __init__(self, root: str) -> None:
        super().__init__(f"Root directory not found: {root}")
        self.root = root


class RelayBindError(StartupError):
    """The relay could not bind its listening endpoint."""

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"Cannot bind relay on {host}:{port}: {reason}")
        self.host = host
        self.port = port
