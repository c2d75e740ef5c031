"""Agent session registry: one state machine per session.

    STARTING -> {IDLE, READING, WRITING, EDITING} -> ENDED

The registry has a single writer (the bridge's relay and housekeeping loops,
both on the event loop) and publishes a RegistrySnapshot after every change.
Node relations are plain tables keyed by node id and session id; nothing
holds references to model nodes.
"""

from __future__ import annotations

import hashlib
import itertools
import os
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import TYPE_CHECKING

from agentgalaxy.agents.schema import (
    ActivityRecord,
    AgentState,
    AgentView,
    RegistrySnapshot,
    ToolKind,
)
from agentgalaxy.config.schema import AgentsConfig
from agentgalaxy.logging import get_logger

if TYPE_CHECKING:
    from agentgalaxy.relay.protocol import Envelope

log = get_logger("agents")

PALETTE: tuple[str, ...] = (
    "#e6194b",
    "#3cb44b",
    "#ffe119",
    "#4363d8",
    "#f58231",
    "#911eb4",
    "#46f0f0",
    "#f032e6",
    "#bcf60c",
    "#fabebe",
    "#008080",
    "#e6beff",
)

Resolver = Callable[[str], int | None]


def label_for(session_id: str) -> str:
    return session_id[:8]


def color_for(session_id: str) -> str:
    """Deterministic palette color for a session id."""
    digest = hashlib.blake2b(session_id.encode("utf-8"), digest_size=4).digest()
    return PALETTE[int.from_bytes(digest, "big") % len(PALETTE)]


@dataclass
class _Session:
    """Mutable per-session state owned by the registry."""

    session_id: str
    label: str
    color: str
    state: AgentState
    started_at: float
    transition_start: float
    last_event_at: float
    activity: deque[ActivityRecord]
    history: deque[AgentState]
    cwd: str | None = None
    model: str | None = None
    current_node: int | None = None
    previous_node: int | None = None
    current_path: str | None = None
    previous_path: str | None = None
    ended_at: float | None = None
    end_reason: str | None = None
    lifecycle: int = 1
    last_seq: int | None = None

    def enter(self, state: AgentState, at: float) -> None:
        self.state = state
        self.transition_start = at
        self.history.append(state)

    def view(self) -> AgentView:
        return AgentView(
            session_id=self.session_id,
            label=self.label,
            color=self.color,
            state=self.state,
            current_node=self.current_node,
            previous_node=self.previous_node,
            current_path=self.current_path,
            previous_path=self.previous_path,
            transition_start=self.transition_start,
            started_at=self.started_at,
            last_event_at=self.last_event_at,
            cwd=self.cwd,
            model=self.model,
            ended_at=self.ended_at,
            end_reason=self.end_reason,
            lifecycle=self.lifecycle,
            activity=tuple(self.activity),
            history=tuple(self.history),
        )


@dataclass
class _Deferred:
    """A tool use whose path the model has not reported yet."""

    record: ActivityRecord
    deadline: float


class SessionRegistry:
    """Tracks agent sessions from relay envelopes.

    ``resolve`` maps an absolute path to a model node id (or None when the
    model has not observed the path). Unknown sessions referenced by a tool
    use are created implicitly.

    Example:
        registry = SessionRegistry(config, resolve=lambda p: model_ids.get(p))
        registry.start_session("a1", cwd="/proj", model="x")
        registry.record_tool_use("a1", ToolKind.READ, "/proj/src/main.x")
        registry.snapshot.agent("a1").state  # AgentState.READING
    """

    def __init__(
        self,
        config: AgentsConfig | None = None,
        resolve: Resolver | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or AgentsConfig()
        self._resolve: Resolver = resolve or (lambda path: None)
        self._clock = clock

        self._sessions: dict[str, _Session] = {}
        self._views: dict[str, AgentView] = {}
        self._node_activity: dict[int, deque[ActivityRecord]] = {}
        self._hotness: Counter[int] = Counter()
        self._node_paths: dict[int, str] = {}
        self._pending: dict[int, _Deferred] = {}
        self._deferred_ids = itertools.count()
        self._relay_epoch: str | None = None

        self._version = 0
        self._snapshot = RegistrySnapshot()

    @property
    def snapshot(self) -> RegistrySnapshot:
        """The latest published snapshot."""
        return self._snapshot

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def set_resolver(self, resolve: Resolver) -> None:
        self._resolve = resolve

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _new_session(self, session_id: str, at: float) -> _Session:
        session = _Session(
            session_id=session_id,
            label=label_for(session_id),
            color=color_for(session_id),
            state=AgentState.STARTING,
            started_at=at,
            transition_start=at,
            last_event_at=at,
            activity=deque(maxlen=self._config.activity_log_size),
            history=deque([AgentState.STARTING], maxlen=self._config.history_size),
        )
        self._sessions[session_id] = session
        return session

    def _reopen(self, session: _Session, at: float) -> None:
        session.lifecycle += 1
        session.started_at = at
        session.ended_at = None
        session.end_reason = None
        session.enter(AgentState.STARTING, at)

    def _stale_seq(self, session: _Session | None, seq: int | None) -> bool:
        if session is None or seq is None or session.last_seq is None:
            return False
        return seq <= session.last_seq

    def start_session(
        self,
        session_id: str,
        cwd: str | None = None,
        model: str | None = None,
        at: float | None = None,
        seq: int | None = None,
    ) -> AgentView | None:
        """Create a session, or reset an existing one to STARTING.

        Returns None if ``seq`` is older than what the session already saw.
        """
        at = self._clock() if at is None else at
        session = self._sessions.get(session_id)
        if self._stale_seq(session, seq):
            log.debug("Ignoring out-of-order session-start for %s (seq %s)", session_id, seq)
            return None

        if session is None:
            session = self._new_session(session_id, at)
            log.info("Session %s started (%s)", session.label, model or "unknown model")
        elif session.state is AgentState.ENDED:
            self._reopen(session, at)
            log.info("Session %s restarted", session.label)
        else:
            session.started_at = at
            session.enter(AgentState.STARTING, at)

        session.cwd = cwd or session.cwd
        session.model = model or session.model
        session.last_event_at = at
        if seq is not None:
            session.last_seq = seq
        self._touch(session)
        self._publish()
        return self._views[session_id]

    def _normalize_path(self, session: _Session, path: str) -> str:
        if not os.path.isabs(path) and session.cwd:
            path = os.path.join(session.cwd, path)
        return os.path.normpath(path)

    def record_tool_use(
        self,
        session_id: str,
        tool: ToolKind | str,
        path: str,
        at: float | None = None,
        seq: int | None = None,
    ) -> ActivityRecord | None:
        """Move a session into the tool's activity state targeting ``path``.

        Unknown sessions are created implicitly. A session that has ENDED
        starts a new lifecycle first. Returns None for out-of-order events.
        """
        tool = ToolKind.parse(tool)
        at = self._clock() if at is None else at
        session = self._sessions.get(session_id)
        if self._stale_seq(session, seq):
            log.debug("Ignoring out-of-order %s for %s (seq %s)", tool.value, session_id, seq)
            return None

        if session is None:
            session = self._new_session(session_id, at)
            log.info("Session %s created implicitly by %s", session.label, tool.value)
        elif session.state is AgentState.ENDED:
            self._reopen(session, at)

        path = self._normalize_path(session, path)
        node_id = self._resolve(path)
        record = ActivityRecord(
            session_id=session_id,
            tool=tool,
            path=path,
            node_id=node_id,
            at=at,
            seq=seq,
        )

        session.previous_node = session.current_node
        session.previous_path = session.current_path
        session.current_node = node_id
        session.current_path = path
        session.enter(tool.state, at)
        session.last_event_at = at
        session.activity.append(record)
        if seq is not None:
            session.last_seq = seq

        if node_id is None:
            self._defer(record, at)
        else:
            self._credit(record)

        self._touch(session)
        self._publish()
        return record

    def end_session(
        self,
        session_id: str,
        at: float | None = None,
        reason: str = "explicit",
        seq: int | None = None,
    ) -> bool:
        """Mark a session ENDED. Returns False if unknown or already ended."""
        session = self._sessions.get(session_id)
        if session is None or session.state is AgentState.ENDED:
            return False
        if self._stale_seq(session, seq):
            return False

        at = self._clock() if at is None else at
        self._end(session, at, reason)
        if seq is not None:
            session.last_seq = seq
        self._publish()
        return True

    def _end(self, session: _Session, at: float, reason: str) -> None:
        session.enter(AgentState.ENDED, at)
        session.ended_at = at
        session.end_reason = reason
        self._touch(session)
        log.info("Session %s ended (%s)", session.label, reason)

    def _observe_epoch(self, epoch: str | None) -> None:
        """Forget per-session ordering when the relay has restarted."""
        if epoch is None or epoch == self._relay_epoch:
            return
        if self._relay_epoch is not None:
            log.info("Relay restarted (epoch %s -> %s), resetting event order", self._relay_epoch, epoch)
            for session in self._sessions.values():
                session.last_seq = None
        self._relay_epoch = epoch

    def apply(self, envelope: Envelope) -> bool:
        """Dispatch one relay envelope. Returns False if it was ignored."""
        self._observe_epoch(envelope.epoch)
        kind = envelope.kind.value
        at = self._clock()
        if kind == "session-start":
            payload = envelope.payload
            view = self.start_session(
                envelope.session_id,
                cwd=payload.get("cwd"),
                model=payload.get("model"),
                at=at,
                seq=envelope.seq,
            )
            return view is not None
        if kind == "session-end":
            return self.end_session(
                envelope.session_id,
                at=at,
                reason=envelope.payload.get("reason") or "explicit",
                seq=envelope.seq,
            )
        if kind in ("read", "write", "edit"):
            path = envelope.file_path
            if not path:
                log.warning("Dropping %s envelope without file_path (seq %s)", kind, envelope.seq)
                return False
            record = self.record_tool_use(
                envelope.session_id, ToolKind(kind), path, at=at, seq=envelope.seq
            )
            return record is not None

        log.warning("Ignoring envelope of unknown kind %r", kind)
        return False

    # ------------------------------------------------------------------
    # Node relations
    # ------------------------------------------------------------------

    def _credit(self, record: ActivityRecord) -> None:
        ring = self._node_activity.get(record.node_id)
        if ring is None:
            ring = self._node_activity[record.node_id] = deque(
                maxlen=self._config.node_activity_size
            )
        ring.append(record)
        self._hotness[record.node_id] += 1
        self._node_paths[record.node_id] = record.path

    def _defer(self, record: ActivityRecord, at: float) -> None:
        deadline = at + self._config.deferred_grace
        self._pending[next(self._deferred_ids)] = _Deferred(record=record, deadline=deadline)
        log.debug("Deferred reference to %s for %s", record.path, record.session_id)

    def resolve_pending(self, lookup: Resolver | None = None) -> int:
        """Resolve deferred references against the model; returns how many."""
        if not self._pending:
            return 0
        lookup = lookup or self._resolve
        resolved = 0
        for key, deferred in list(self._pending.items()):
            node_id = lookup(deferred.record.path)
            if node_id is None:
                continue
            del self._pending[key]
            self._bind(deferred.record, node_id)
            resolved += 1
        if resolved:
            log.debug("Resolved %d deferred references", resolved)
            self._publish()
        return resolved

    def _bind(self, record: ActivityRecord, node_id: int) -> None:
        bound = replace(record, node_id=node_id)
        self._credit(bound)

        session = self._sessions.get(record.session_id)
        if session is None:
            return
        session.activity = deque(
            (bound if r is record else r for r in session.activity),
            maxlen=session.activity.maxlen,
        )
        if session.current_node is None and session.current_path == record.path:
            session.current_node = node_id
        if session.previous_node is None and session.previous_path == record.path:
            session.previous_node = node_id
        self._touch(session)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def tick(self, now: float | None = None) -> int:
        """Apply time-based transitions; returns how many sessions changed."""
        now = self._clock() if now is None else now
        cfg = self._config
        changed = 0

        for session in self._sessions.values():
            state = session.state
            if state is AgentState.ENDED:
                continue
            if now - session.last_event_at >= cfg.idle_timeout:
                self._end(session, now, "idle")
                changed += 1
                continue
            held = now - session.transition_start
            if (state is AgentState.STARTING and held >= cfg.starting_hold) or (
                state.is_activity and held >= cfg.activity_hold
            ):
                session.enter(AgentState.IDLE, now)
                self._touch(session)
                changed += 1

        expired = [k for k, d in self._pending.items() if d.deadline <= now]
        for key in expired:
            deferred = self._pending.pop(key)
            log.debug("Dropped deferred reference to %s", deferred.record.path)

        if changed or expired:
            self._publish()
        return changed

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _touch(self, session: _Session) -> None:
        self._views[session.session_id] = session.view()

    def _publish(self) -> None:
        self._version += 1
        self._snapshot = RegistrySnapshot(
            version=self._version,
            agents=MappingProxyType(dict(self._views)),
            node_activity=MappingProxyType(
                {node_id: tuple(ring) for node_id, ring in self._node_activity.items()}
            ),
            hotness=MappingProxyType(dict(self._hotness)),
            node_paths=MappingProxyType(dict(self._node_paths)),
            pending=len(self._pending),
        )
