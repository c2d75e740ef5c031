"""Agent session tracking for agentgalaxy.

Each session reported through the relay becomes an agent with a state
machine, a stable label and color, and a bounded activity log. The registry
also keeps per-node relation tables (recent activity, hotness).
"""

from agentgalaxy.agents.registry import PALETTE, SessionRegistry, color_for, label_for
from agentgalaxy.agents.schema import (
    ActivityRecord,
    AgentState,
    AgentView,
    HotNode,
    RegistrySnapshot,
    ToolKind,
)

__all__ = [
    "ActivityRecord",
    "AgentState",
    "AgentView",
    "HotNode",
    "PALETTE",
    "RegistrySnapshot",
    "SessionRegistry",
    "ToolKind",
    "color_for",
    "label_for",
]
