"""The merged per-tick view handed to the renderer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from agentgalaxy.agents.schema import RegistrySnapshot
from agentgalaxy.bridge.client import ConnectionState
from agentgalaxy.model.node import Vec3
from agentgalaxy.model.tree import ModelSnapshot

AgentMotion = tuple[str, Vec3 | None, Vec3 | None, float]


@dataclass(frozen=True)
class Scene:
    """One model snapshot and one registry snapshot, read together.

    The two may be up to one tick apart; there is no cross-source
    transaction.
    """

    tick: int
    composed_at: float
    model: ModelSnapshot
    agents: RegistrySnapshot
    connection: ConnectionState
    malformed: int = 0
    dropped: int = 0

    @property
    def is_stale(self) -> bool:
        return self.model.stale

    @property
    def connected(self) -> bool:
        return self.connection is ConnectionState.CONNECTED

    def agent_positions(self) -> list[AgentMotion]:
        """(session_id, from_position, to_position, transition_start) per active agent.

        Positions are None while a target is unknown to the model.
        """
        motions: list[AgentMotion] = []
        for agent in self.agents.active_agents():
            source = self.model.node(agent.previous_node)
            target = self.model.node(agent.current_node)
            motions.append(
                (
                    agent.session_id,
                    source.position if source else None,
                    target.position if target else None,
                    agent.transition_start,
                )
            )
        return motions

    def summary(self) -> dict[str, Any]:
        hot = self.agents.top_hot(3)
        return {
            "tick": self.tick,
            "nodes": len(self.model),
            "model_version": self.model.version,
            "stale": self.is_stale,
            "connection": self.connection.value,
            "active_agents": len(self.agents.active_agents()),
            "malformed": self.malformed,
            "dropped": self.dropped,
            "hot": [(h.path, h.count) for h in hot],
        }
