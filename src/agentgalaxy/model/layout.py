"""Deterministic layout assignment for model nodes.

Each child gets a slot from its parent's monotonically growing counter. A
node's position is a pure function of its parent's position, its depth, its
slot and the layout weight captured when it was placed. Sibling counts never
enter the formula, so adding or removing a sibling cannot move anyone else.

Slots fill rings of ``ring_capacity`` positions around the parent; slot ``i``
sits on ring ``i // m`` at index ``i % m``:

    angle  = base_angle(depth) + (i % m) * 2π/m + ring * π/m
    radius = g(depth, weight) + ring * ring_gap

Directories rise one layer above their parent, files hang just below it.
"""

from __future__ import annotations

import math
from collections import deque
from collections.abc import Mapping

from agentgalaxy.config.schema import LayoutConfig
from agentgalaxy.model.node import ORIGIN, Node, Vec3

TAU = 2.0 * math.pi
GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))


class LayoutEngine:
    """Computes slots, positions and marker scales."""

    def __init__(self, config: LayoutConfig | None = None) -> None:
        self.config = config or LayoutConfig()

    def allocate_slot(self, parent: Node) -> int:
        """Hand out the parent's next unused slot. Slots are never reused."""
        slot = parent.next_slot
        parent.next_slot += 1
        return slot

    def base_angle(self, depth: int) -> float:
        return (depth * GOLDEN_ANGLE) % TAU

    def polar(self, slot: int, depth: int) -> tuple[float, int]:
        """Return (angle, ring) for a slot at a depth."""
        m = max(1, self.config.ring_capacity)
        ring, index = divmod(slot, m)
        angle = self.base_angle(depth) + index * (TAU / m) + ring * (math.pi / m)
        return angle, ring

    def radius(self, node: Node, ring: int) -> float:
        cfg = self.config
        if node.is_dir:
            falloff = 1.0 + 0.35 * max(0, node.depth - 1)
            spread = 1.0 + 0.25 * math.log2(1 + max(1, node.weight))
            return cfg.dir_radius * spread / falloff + ring * cfg.ring_gap
        return cfg.file_radius + ring * cfg.ring_gap * 0.5

    def position(self, node: Node, parent: Node | None) -> Vec3:
        """Position of ``node`` given its (already placed) parent."""
        if parent is None:
            return ORIGIN

        angle, ring = self.polar(node.slot, node.depth)
        r = self.radius(node, ring)
        px, py, pz = parent.position
        if node.is_dir:
            y = py + self.config.layer_gap
        else:
            y = py - self.config.file_drop - 0.1 * (node.depth % 3)
        return (px + r * math.cos(angle), y, pz + r * math.sin(angle))

    def scale(self, node: Node) -> float:
        """Marker scale: monotonic in byte size for files, floor-bounded."""
        cfg = self.config
        if node.is_dir:
            return 0.8 + min(0.05 * len(node.children), 1.2)
        grown = cfg.min_scale + 0.06 * math.log2(1 + max(0, node.size))
        return max(cfg.min_scale, min(cfg.max_scale, grown))

    def place(self, node: Node, parent: Node | None) -> None:
        node.position = self.position(node, parent)
        node.scale = self.scale(node)

    def place_subtree(self, node: Node, nodes: Mapping[int, Node]) -> int:
        """Recompute positions below ``node``; returns how many were moved.

        ``node`` itself must already be placed. Descendants keep their slots
        and weights; depths follow the new parent.
        """
        moved = 0
        queue = deque([node])
        while queue:
            current = queue.popleft()
            for child_id in current.children.values():
                child = nodes[child_id]
                child.depth = current.depth + 1
                self.place(child, current)
                moved += 1
                if child.is_dir:
                    queue.append(child)
        return moved
