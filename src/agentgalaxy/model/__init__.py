"""File-system model for agentgalaxy.

Builds the node tree for one root directory, mutates it from watch events and
publishes immutable snapshots with stable per-node layout.
"""

from agentgalaxy.model.events import WatchEvent, WatchKind
from agentgalaxy.model.ignore import IgnoreFile, IgnoreRules
from agentgalaxy.model.layout import LayoutEngine
from agentgalaxy.model.node import Node, NodeKind, NodeView, Vec3, category_for
from agentgalaxy.model.tree import FileSystemModel, ModelSnapshot

__all__ = [
    "FileSystemModel",
    "IgnoreFile",
    "IgnoreRules",
    "LayoutEngine",
    "ModelSnapshot",
    "Node",
    "NodeKind",
    "NodeView",
    "Vec3",
    "WatchEvent",
    "WatchKind",
    "category_for",
]
