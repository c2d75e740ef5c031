"""Data schemas for agent sessions."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


class AgentState(Enum):
    """Lifecycle state of an agent session."""

    STARTING = "starting"  # session-start seen, no tool use yet
    IDLE = "idle"  # Between tool uses
    READING = "reading"
    WRITING = "writing"
    EDITING = "editing"
    ENDED = "ended"  # Explicit end or idle timeout

    @property
    def is_activity(self) -> bool:
        return self in (AgentState.READING, AgentState.WRITING, AgentState.EDITING)


class ToolKind(Enum):
    """Tool uses the registry tracks."""

    READ = "read"
    WRITE = "write"
    EDIT = "edit"

    @property
    def state(self) -> AgentState:
        return _TOOL_STATES[self]

    @property
    def tool_name(self) -> str:
        """Tool name as reported by the agent ("Read", "Write", "Edit")."""
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: ToolKind | str) -> ToolKind:
        if isinstance(value, ToolKind):
            return value
        return cls(value.lower())


_TOOL_STATES = {
    ToolKind.READ: AgentState.READING,
    ToolKind.WRITE: AgentState.WRITING,
    ToolKind.EDIT: AgentState.EDITING,
}


@dataclass(frozen=True)
class ActivityRecord:
    """One tool use by one session.

    ``node_id`` is None while the path is still a deferred reference.
    """

    session_id: str
    tool: ToolKind
    path: str
    node_id: int | None
    at: float
    seq: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "tool": self.tool.value,
            "path": self.path,
            "node_id": self.node_id,
            "at": self.at,
            "seq": self.seq,
        }


@dataclass(frozen=True)
class AgentView:
    """Published view of one agent session."""

    session_id: str
    label: str
    color: str
    state: AgentState
    current_node: int | None
    previous_node: int | None
    current_path: str | None
    previous_path: str | None
    transition_start: float
    started_at: float
    last_event_at: float
    cwd: str | None = None
    model: str | None = None
    ended_at: float | None = None
    end_reason: str | None = None
    lifecycle: int = 1
    activity: tuple[ActivityRecord, ...] = ()
    history: tuple[AgentState, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.state is not AgentState.ENDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "label": self.label,
            "color": self.color,
            "state": self.state.value,
            "current_node": self.current_node,
            "previous_node": self.previous_node,
            "current_path": self.current_path,
            "previous_path": self.previous_path,
            "transition_start": self.transition_start,
            "started_at": self.started_at,
            "last_event_at": self.last_event_at,
            "cwd": self.cwd,
            "model": self.model,
            "ended_at": self.ended_at,
            "end_reason": self.end_reason,
            "lifecycle": self.lifecycle,
            "activity": [r.to_dict() for r in self.activity],
            "history": [s.value for s in self.history],
        }


@dataclass(frozen=True)
class HotNode:
    """A node ranked by how many tool uses referenced it."""

    node_id: int
    count: int
    path: str | None = None


def _empty_mapping() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of every session plus the node relation tables."""

    version: int = 0
    agents: Mapping[str, AgentView] = field(default_factory=_empty_mapping)
    node_activity: Mapping[int, tuple[ActivityRecord, ...]] = field(default_factory=_empty_mapping)
    hotness: Mapping[int, int] = field(default_factory=_empty_mapping)
    node_paths: Mapping[int, str] = field(default_factory=_empty_mapping)
    pending: int = 0

    def agent(self, session_id: str) -> AgentView | None:
        return self.agents.get(session_id)

    def active_agents(self) -> list[AgentView]:
        return sorted(
            (a for a in self.agents.values() if a.is_active),
            key=lambda a: a.session_id,
        )

    def agents_at(self, node_id: int) -> list[AgentView]:
        """Active agents whose current target is ``node_id``."""
        return [a for a in self.active_agents() if a.current_node == node_id]

    def recent_activity(self, node_id: int) -> tuple[ActivityRecord, ...]:
        return self.node_activity.get(node_id, ())

    def top_hot(self, n: int = 10) -> list[HotNode]:
        """Most referenced nodes, highest count first, ties by id."""
        ranked = sorted(self.hotness.items(), key=lambda item: (-item[1], item[0]))
        return [
            HotNode(node_id=node_id, count=count, path=self.node_paths.get(node_id))
            for node_id, count in ranked[:n]
        ]
