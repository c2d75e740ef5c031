"""Node types for the file-system model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Any

Vec3 = tuple[float, float, float]

ORIGIN: Vec3 = (0.0, 0.0, 0.0)


class NodeKind(Enum):
    """Whether a node models a file or a directory."""

    FILE = "file"
    DIRECTORY = "directory"


# Extension -> styling category. Only renderers look at this.
_CATEGORIES: dict[str, str] = {
    "rs": "rust",
    "toml": "config",
    "yaml": "config",
    "yml": "config",
    "json": "config",
    "ini": "config",
    "cfg": "config",
    "md": "text",
    "txt": "text",
    "rst": "text",
    "js": "script",
    "ts": "script",
    "jsx": "script",
    "tsx": "script",
    "py": "python",
    "pyi": "python",
    "html": "web",
    "css": "web",
    "java": "compiled",
    "c": "compiled",
    "h": "compiled",
    "cpp": "compiled",
    "hpp": "compiled",
    "go": "go",
}


def category_for(path: str, kind: NodeKind) -> str:
    """Derive the styling category of a path from its extension."""
    if kind is NodeKind.DIRECTORY:
        return "directory"
    suffix = PurePath(path).suffix.lower().lstrip(".")
    return _CATEGORIES.get(suffix, "other")


@dataclass
class Node:
    """A live file or directory owned by the model.

    Mutated only by FileSystemModel. ``next_slot`` is the parent-owned slot
    counter: it only grows, so a slot handed out once is never handed out
    again. ``weight`` is captured when the node is placed and never updated.
    """

    id: int
    path: str
    name: str
    kind: NodeKind
    parent: int | None
    depth: int
    slot: int = 0
    size: int = 0
    mtime: float | None = None
    category: str = "other"
    children: dict[int, int] = field(default_factory=dict)  # slot -> node id, insertion = slot order
    next_slot: int = 0
    weight: int = 1
    position: Vec3 = ORIGIN
    scale: float = 1.0

    @property
    def is_dir(self) -> bool:
        return self.kind is NodeKind.DIRECTORY

    def freeze(self) -> NodeView:
        return NodeView(
            id=self.id,
            path=self.path,
            name=self.name,
            kind=self.kind,
            parent=self.parent,
            depth=self.depth,
            slot=self.slot,
            size=self.size,
            mtime=self.mtime,
            category=self.category,
            children=tuple(self.children.values()),
            position=self.position,
            scale=self.scale,
        )


@dataclass(frozen=True)
class NodeView:
    """Immutable published view of a Node."""

    id: int
    path: str
    name: str
    kind: NodeKind
    parent: int | None
    depth: int
    slot: int
    size: int
    mtime: float | None
    category: str
    children: tuple[int, ...]
    position: Vec3
    scale: float

    @property
    def is_dir(self) -> bool:
        return self.kind is NodeKind.DIRECTORY

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "name": self.name,
            "kind": self.kind.value,
            "parent": self.parent,
            "depth": self.depth,
            "slot": self.slot,
            "size": self.size,
            "mtime": self.mtime,
            "category": self.category,
            "children": list(self.children),
            "position": list(self.position),
            "scale": self.scale,
        }
