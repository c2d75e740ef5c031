"""Tests for the agent session registry."""

from __future__ import annotations

import json

import pytest

from agentgalaxy.agents import (
    PALETTE,
    AgentState,
    RegistrySnapshot,
    SessionRegistry,
    ToolKind,
    color_for,
    label_for,
)
from agentgalaxy.config.schema import AgentsConfig
from agentgalaxy.relay.protocol import Envelope, EventKind


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


NODES = {
    "/proj/src/main.x": 5,
    "/proj/src/lib.rs": 6,
    "/proj/README.md": 7,
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> SessionRegistry:
    return SessionRegistry(AgentsConfig(), resolve=NODES.get, clock=clock)


def tool_envelope(
    kind: EventKind, session_id: str, path: str | None, seq: int, epoch: str | None = None
) -> Envelope:
    tool_input = {"file_path": path} if path is not None else {}
    return Envelope(
        kind=kind,
        session_id=session_id,
        payload={"session_id": session_id, "tool_name": kind.tool_name, "tool_input": tool_input},
        seq=seq,
        received_at=0.0,
        epoch=epoch,
    )


class TestLifecycle:
    """Session state machine transitions."""

    def test_start_read_edit(self, registry: SessionRegistry) -> None:
        registry.start_session("a1", cwd="/proj", model="x")
        registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        registry.record_tool_use("a1", ToolKind.EDIT, "/proj/src/main.x")

        snapshot = registry.snapshot
        assert list(snapshot.agents) == ["a1"]
        agent = snapshot.agent("a1")
        assert agent.history == (AgentState.STARTING, AgentState.READING, AgentState.EDITING)
        assert agent.state is AgentState.EDITING
        assert agent.current_node == 5
        assert len(agent.activity) == 2
        assert agent.model == "x"

    def test_previous_target_tracked(self, registry: SessionRegistry) -> None:
        registry.start_session("a1", cwd="/proj")
        registry.record_tool_use("a1", "read", "/proj/src/main.x")
        registry.record_tool_use("a1", "write", "/proj/src/lib.rs")
        agent = registry.snapshot.agent("a1")
        assert agent.previous_node == 5
        assert agent.current_node == 6
        assert agent.previous_path == "/proj/src/main.x"
        assert agent.state is AgentState.WRITING

    def test_unknown_session_created_implicitly(self, registry: SessionRegistry) -> None:
        record = registry.record_tool_use("ghost", ToolKind.READ, "/proj/README.md")
        assert record is not None
        agent = registry.snapshot.agent("ghost")
        assert agent.history == (AgentState.STARTING, AgentState.READING)
        assert agent.lifecycle == 1

    def test_relative_path_joined_with_cwd(self, registry: SessionRegistry) -> None:
        registry.start_session("a1", cwd="/proj")
        record = registry.record_tool_use("a1", ToolKind.READ, "src/../README.md")
        assert record.path == "/proj/README.md"
        assert record.node_id == 7

    def test_end_session(self, registry: SessionRegistry, clock: FakeClock) -> None:
        registry.start_session("a1")
        assert registry.end_session("a1", reason="user quit") is True
        agent = registry.snapshot.agent("a1")
        assert agent.state is AgentState.ENDED
        assert agent.end_reason == "user quit"
        assert agent.ended_at == clock.now
        assert not agent.is_active
        assert registry.end_session("a1") is False
        assert registry.end_session("nobody") is False

    def test_tool_use_after_end_reopens(self, registry: SessionRegistry) -> None:
        registry.start_session("a1")
        registry.end_session("a1")
        registry.record_tool_use("a1", ToolKind.EDIT, "/proj/src/lib.rs")
        agent = registry.snapshot.agent("a1")
        assert agent.lifecycle == 2
        assert agent.history[-3:] == (AgentState.ENDED, AgentState.STARTING, AgentState.EDITING)
        assert agent.ended_at is None

    def test_restart_after_end(self, registry: SessionRegistry) -> None:
        registry.start_session("a1", model="x")
        registry.end_session("a1")
        view = registry.start_session("a1", model="y")
        assert view.lifecycle == 2
        assert view.state is AgentState.STARTING
        assert view.model == "y"

    def test_active_agents_sorted(self, registry: SessionRegistry) -> None:
        for session_id in ("b", "c", "a"):
            registry.start_session(session_id)
        registry.end_session("c")
        assert [a.session_id for a in registry.snapshot.active_agents()] == ["a", "b"]


class TestOrdering:
    """Envelope sequence numbers guard against stale events."""

    def test_older_seq_ignored(self, registry: SessionRegistry) -> None:
        registry.start_session("a1", seq=1)
        registry.record_tool_use("a1", ToolKind.EDIT, "/proj/src/lib.rs", seq=5)
        assert registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x", seq=3) is None
        assert registry.end_session("a1", seq=4) is False
        agent = registry.snapshot.agent("a1")
        assert agent.state is AgentState.EDITING
        assert agent.current_node == 6

    def test_duplicate_seq_ignored(self, registry: SessionRegistry) -> None:
        registry.start_session("a1", seq=2)
        assert registry.start_session("a1", seq=2) is None

    def test_seq_is_per_session(self, registry: SessionRegistry) -> None:
        registry.start_session("a1", seq=10)
        assert registry.start_session("a2", seq=3) is not None


class TestNodeRelations:
    """Hotness and per-node activity tables."""

    def test_hotness_counts_references(self, registry: SessionRegistry) -> None:
        registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        registry.record_tool_use("a2", ToolKind.READ, "/proj/src/main.x")
        registry.record_tool_use("a2", ToolKind.EDIT, "/proj/src/lib.rs")
        hot = registry.snapshot.top_hot(2)
        assert [(h.node_id, h.count) for h in hot] == [(5, 2), (6, 1)]
        assert hot[0].path == "/proj/src/main.x"

    def test_top_hot_ties_by_id(self, registry: SessionRegistry) -> None:
        registry.record_tool_use("a1", ToolKind.READ, "/proj/README.md")
        registry.record_tool_use("a1", ToolKind.READ, "/proj/src/lib.rs")
        assert [h.node_id for h in registry.snapshot.top_hot()] == [6, 7]

    def test_hotness_survives_session_end(self, registry: SessionRegistry, clock: FakeClock) -> None:
        registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        registry.end_session("a1")
        registry.tick(clock.advance(100.0))
        assert registry.snapshot.hotness[5] == 1

    def test_node_activity_bounded(self, clock: FakeClock) -> None:
        registry = SessionRegistry(AgentsConfig(node_activity_size=3), resolve=NODES.get, clock=clock)
        for _ in range(5):
            registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        assert len(registry.snapshot.recent_activity(5)) == 3
        assert registry.snapshot.hotness[5] == 5

    def test_activity_log_bounded(self, clock: FakeClock) -> None:
        registry = SessionRegistry(AgentsConfig(activity_log_size=4), resolve=NODES.get, clock=clock)
        for _ in range(10):
            registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        assert len(registry.snapshot.agent("a1").activity) == 4

    def test_agents_at(self, registry: SessionRegistry) -> None:
        registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        registry.record_tool_use("a2", ToolKind.READ, "/proj/src/main.x")
        registry.record_tool_use("a3", ToolKind.READ, "/proj/src/lib.rs")
        assert [a.session_id for a in registry.snapshot.agents_at(5)] == ["a1", "a2"]


class TestDeferredReferences:
    """Paths the model has not reported yet."""

    def test_resolved_when_model_catches_up(self, registry: SessionRegistry) -> None:
        record = registry.record_tool_use("a1", ToolKind.WRITE, "/proj/new.rs")
        assert record.node_id is None
        assert registry.pending_count == 1
        assert registry.snapshot.pending == 1
        assert registry.snapshot.agent("a1").current_node is None

        assert registry.resolve_pending({"/proj/new.rs": 42}.get) == 1
        snapshot = registry.snapshot
        agent = snapshot.agent("a1")
        assert agent.current_node == 42
        assert agent.activity[-1].node_id == 42
        assert snapshot.hotness[42] == 1
        assert snapshot.pending == 0

    def test_unresolved_stays_pending(self, registry: SessionRegistry) -> None:
        registry.record_tool_use("a1", ToolKind.WRITE, "/proj/new.rs")
        version = registry.snapshot.version
        assert registry.resolve_pending() == 0
        assert registry.snapshot.version == version

    def test_dropped_after_grace(self, registry: SessionRegistry, clock: FakeClock) -> None:
        registry.record_tool_use("a1", ToolKind.WRITE, "/proj/new.rs")
        registry.tick(clock.now + 4.9)
        assert registry.pending_count == 1
        registry.tick(clock.now + 5.0)
        assert registry.pending_count == 0
        assert registry.resolve_pending({"/proj/new.rs": 42}.get) == 0
        assert 42 not in registry.snapshot.hotness


class TestTick:
    """Time-based transitions."""

    def test_starting_becomes_idle(self, registry: SessionRegistry, clock: FakeClock) -> None:
        registry.start_session("a1")
        assert registry.tick(clock.now + 0.4) == 0
        assert registry.tick(clock.now + 0.5) == 1
        assert registry.snapshot.agent("a1").state is AgentState.IDLE

    def test_activity_becomes_idle(self, registry: SessionRegistry, clock: FakeClock) -> None:
        registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        registry.tick(clock.now + 1.0)
        assert registry.snapshot.agent("a1").state is AgentState.READING
        registry.tick(clock.now + 1.2)
        agent = registry.snapshot.agent("a1")
        assert agent.state is AgentState.IDLE
        assert agent.current_node == 5

    def test_idle_timeout_ends_session(self, registry: SessionRegistry, clock: FakeClock) -> None:
        registry.start_session("a1")
        registry.tick(clock.now + 30.0)
        agent = registry.snapshot.agent("a1")
        assert agent.state is AgentState.ENDED
        assert agent.end_reason == "idle"

    def test_ended_sessions_left_alone(self, registry: SessionRegistry, clock: FakeClock) -> None:
        registry.start_session("a1")
        registry.end_session("a1")
        version = registry.snapshot.version
        assert registry.tick(clock.now + 100.0) == 0
        assert registry.snapshot.version == version


class TestIdentity:
    """Labels and colors."""

    def test_label_is_prefix(self) -> None:
        assert label_for("abcdef123456") == "abcdef12"
        assert label_for("abc") == "abc"

    def test_color_stable_and_from_palette(self) -> None:
        assert color_for("session-1") == color_for("session-1")
        assert color_for("session-1") in PALETTE

    def test_view_carries_identity(self, registry: SessionRegistry) -> None:
        view = registry.start_session("0123456789")
        assert view.label == "01234567"
        assert view.color == color_for("0123456789")


class TestApplyEnvelope:
    """Dispatching relay envelopes."""

    def test_session_start_and_tool_use(self, registry: SessionRegistry) -> None:
        start = Envelope(
            kind=EventKind.SESSION_START,
            session_id="a1",
            payload={"session_id": "a1", "cwd": "/proj", "model": "x"},
            seq=0,
            received_at=0.0,
        )
        assert registry.apply(start) is True
        assert registry.apply(tool_envelope(EventKind.READ, "a1", "src/main.x", 1)) is True
        agent = registry.snapshot.agent("a1")
        assert agent.cwd == "/proj"
        assert agent.current_node == 5

    def test_tool_without_path_ignored(self, registry: SessionRegistry) -> None:
        assert registry.apply(tool_envelope(EventKind.EDIT, "a1", None, 0)) is False
        assert registry.snapshot.agent("a1") is None

    def test_session_end_reason(self, registry: SessionRegistry) -> None:
        registry.start_session("a1")
        end = Envelope(
            kind=EventKind.SESSION_END,
            session_id="a1",
            payload={"session_id": "a1", "reason": "logout"},
            seq=3,
            received_at=0.0,
        )
        assert registry.apply(end) is True
        assert registry.snapshot.agent("a1").end_reason == "logout"

    def test_order_kept_within_one_relay_run(self, registry: SessionRegistry) -> None:
        assert registry.apply(tool_envelope(EventKind.READ, "a1", "/proj/src/main.x", 5, epoch="run1"))
        assert not registry.apply(tool_envelope(EventKind.EDIT, "a1", "/proj/README.md", 0, epoch="run1"))
        assert registry.snapshot.agent("a1").state is AgentState.READING

    def test_relay_restart_resets_order(self, registry: SessionRegistry) -> None:
        registry.apply(tool_envelope(EventKind.READ, "a1", "/proj/src/main.x", 5, epoch="run1"))
        registry.apply(tool_envelope(EventKind.READ, "a2", "/proj/src/lib.rs", 6, epoch="run1"))

        assert registry.apply(tool_envelope(EventKind.EDIT, "a1", "/proj/README.md", 0, epoch="run2"))
        assert registry.apply(tool_envelope(EventKind.WRITE, "a2", "/proj/README.md", 1, epoch="run2"))
        first, second = registry.snapshot.agent("a1"), registry.snapshot.agent("a2")
        assert (first.state, first.current_node) == (AgentState.EDITING, 7)
        assert (second.state, second.current_node) == (AgentState.WRITING, 7)
        assert not registry.apply(tool_envelope(EventKind.READ, "a1", "/proj/src/lib.rs", 0, epoch="run2"))


class TestSnapshots:
    """Published snapshots are immutable."""

    def test_old_snapshot_unchanged(self, registry: SessionRegistry) -> None:
        registry.start_session("a1")
        before = registry.snapshot
        registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        assert before.agent("a1").state is AgentState.STARTING
        assert registry.snapshot.version == before.version + 1
        with pytest.raises(TypeError):
            before.agents["x"] = None  # type: ignore[index]

    def test_view_serializes(self, registry: SessionRegistry) -> None:
        registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        data = json.loads(json.dumps(registry.snapshot.agent("a1").to_dict()))
        assert data["state"] == "reading"
        assert data["activity"][0]["node_id"] == 5

    def test_default_snapshot_is_empty_and_read_only(self) -> None:
        first, second = RegistrySnapshot(), RegistrySnapshot()
        assert dict(first.agents) == {} and dict(first.hotness) == {}
        assert first.active_agents() == []
        assert first.top_hot(3) == []
        with pytest.raises(TypeError):
            first.node_paths[1] = "/proj"  # type: ignore[index]
        assert first.agents is not second.agents
