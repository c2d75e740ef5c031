"""Raw watch events consumed by the model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import time


class WatchKind(Enum):
    CREATE = "create"
    MODIFY = "modify"
    REMOVE = "remove"
    RENAME = "rename"


@dataclass(frozen=True)
class WatchEvent:
    """A single change reported by the watch backend.

    ``dest_path`` is only set for RENAME, and only when the backend reported
    both ends of the move in one event.
    """

    kind: WatchKind
    path: str
    dest_path: str | None = None
    is_dir: bool = False
    timestamp: float = field(default_factory=time.time, compare=False)

    @classmethod
    def create(cls, path: str, is_dir: bool = False) -> WatchEvent:
        return cls(WatchKind.CREATE, path, is_dir=is_dir)

    @classmethod
    def modify(cls, path: str) -> WatchEvent:
        return cls(WatchKind.MODIFY, path)

    @classmethod
    def remove(cls, path: str, is_dir: bool = False) -> WatchEvent:
        return cls(WatchKind.REMOVE, path, is_dir=is_dir)

    @classmethod
    def rename(cls, path: str, dest_path: str, is_dir: bool = False) -> WatchEvent:
        return cls(WatchKind.RENAME, path, dest_path=dest_path, is_dir=is_dir)
