"""Tests for the relay wire protocol and event ingestion."""

from __future__ import annotations

import json

import pytest

from agentgalaxy.errors import IngestionError
from agentgalaxy.relay import EventRelay, parse_message, validate_payload
from agentgalaxy.relay.protocol import (
    Envelope,
    EventKind,
    SessionStartPayload,
    ToolUsePayload,
)


def tool_body(tool_name: str = "Read", path: str = "/proj/src/main.x", session_id: str = "a1") -> dict:
    return {"session_id": session_id, "tool_name": tool_name, "tool_input": {"file_path": path}}


class TestEventKind:
    """Tests for ingest kinds."""

    def test_tool_names(self) -> None:
        assert EventKind.READ.tool_name == "Read"
        assert EventKind.EDIT.tool_name == "Edit"
        assert EventKind.SESSION_START.tool_name is None

    def test_is_tool_use(self) -> None:
        assert [k for k in EventKind if k.is_tool_use] == [EventKind.READ, EventKind.WRITE, EventKind.EDIT]


class TestValidatePayload:
    """Tests for ingest body validation."""

    def test_session_start(self) -> None:
        payload = validate_payload(
            EventKind.SESSION_START, {"session_id": "a1", "cwd": "/proj", "model": "x"}
        )
        assert isinstance(payload, SessionStartPayload)
        assert payload.cwd == "/proj"

    def test_tool_use(self) -> None:
        payload = validate_payload(EventKind.WRITE, tool_body("Write"))
        assert isinstance(payload, ToolUsePayload)
        assert payload.tool_input.file_path == "/proj/src/main.x"

    def test_unknown_fields_kept(self) -> None:
        body = tool_body() | {"hook_event_name": "PreToolUse"}
        assert validate_payload(EventKind.READ, body).model_dump()["hook_event_name"] == "PreToolUse"

    @pytest.mark.parametrize(
        "kind, body",
        [
            (EventKind.SESSION_START, {"session_id": "a1", "cwd": "/proj"}),
            (EventKind.SESSION_START, {"session_id": "", "cwd": "/proj", "model": "x"}),
            (EventKind.READ, {"session_id": "a1", "tool_name": "Read"}),
            (EventKind.READ, {"session_id": "a1", "tool_name": "Read", "tool_input": {"file_path": ""}}),
            (EventKind.SESSION_END, {}),
        ],
    )
    def test_missing_fields(self, kind: EventKind, body: dict) -> None:
        with pytest.raises(IngestionError) as exc_info:
            validate_payload(kind, body)
        assert exc_info.value.kind == kind.value

    @pytest.mark.parametrize("body", [None, [], "text", 3])
    def test_non_object_body(self, body: object) -> None:
        with pytest.raises(IngestionError, match="JSON object"):
            validate_payload(EventKind.READ, body)

    def test_tool_name_must_match_endpoint(self) -> None:
        with pytest.raises(IngestionError, match="does not match"):
            validate_payload(EventKind.EDIT, tool_body("Read"))


class TestEnvelopeMessages:
    """Tests for the pushed message form."""

    def test_to_message_flattens_fields(self) -> None:
        envelope = Envelope(
            kind=EventKind.EDIT,
            session_id="a1",
            payload=tool_body("Edit"),
            seq=4,
            received_at=12.5,
        )
        message = envelope.to_message()
        assert message["type"] == "agent_event"
        assert message["kind"] == "edit"
        assert message["seq"] == 4
        assert message["tool_name"] == "Edit"
        assert message["file_path"] == "/proj/src/main.x"
        assert "cwd" not in message

    def test_parse_pushed_message(self) -> None:
        envelope = Envelope(
            kind=EventKind.SESSION_START,
            session_id="a1",
            payload={"session_id": "a1", "cwd": "/proj", "model": "x"},
            seq=0,
            received_at=1.0,
        )
        parsed = parse_message(json.dumps(envelope.to_message()))
        assert parsed == envelope

    @pytest.mark.parametrize("raw", ["pong", b"pong", '{"type": "hello", "version": "0.1.0"}'])
    def test_control_traffic(self, raw: str | bytes) -> None:
        assert parse_message(raw) is None

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            '{"type": "other"}',
            '{"type": "agent_event", "kind": "teleport", "session_id": "a1", "seq": 0, "received_at": 0}',
            '{"type": "agent_event", "kind": "read", "session_id": "a1", "seq": -1, "received_at": 0}',
        ],
    )
    def test_malformed(self, raw: str) -> None:
        with pytest.raises(IngestionError):
            parse_message(raw)

    def test_event_with_invalid_payload(self) -> None:
        message = {
            "type": "agent_event",
            "kind": "read",
            "session_id": "a1",
            "seq": 0,
            "received_at": 0.0,
            "payload": {"tool_name": "Read", "tool_input": {}},
        }
        with pytest.raises(IngestionError):
            parse_message(message)


class TestEventRelay:
    """Tests for ingestion, stamping and counters."""

    def test_seq_follows_receipt_order(self) -> None:
        relay = EventRelay(clock=lambda: 100.0)
        seqs = [relay.ingest("read", tool_body()).seq for _ in range(3)]
        assert seqs == [0, 1, 2]
        assert relay.last_seq == 2

    def test_each_relay_run_has_its_own_epoch(self) -> None:
        first, second = EventRelay(), EventRelay()
        assert first.epoch != second.epoch
        envelope = first.ingest("read", tool_body())
        assert envelope.epoch == first.epoch
        assert parse_message(json.dumps(envelope.to_message())).epoch == first.epoch
        assert first.status()["epoch"] == first.epoch

    def test_envelope_fields(self) -> None:
        relay = EventRelay(clock=lambda: 100.0)
        envelope = relay.ingest(EventKind.SESSION_END, {"session_id": "a1", "reason": "done"})
        assert envelope.kind is EventKind.SESSION_END
        assert envelope.session_id == "a1"
        assert envelope.received_at == 100.0
        assert envelope.payload["reason"] == "done"

    def test_rejections_counted_and_seq_unused(self) -> None:
        relay = EventRelay()
        with pytest.raises(IngestionError):
            relay.ingest("teleport", {})
        with pytest.raises(IngestionError):
            relay.ingest("edit", tool_body("Read"))
        assert relay.rejected == 2
        assert relay.ingest("read", tool_body()).seq == 0

    def test_status(self) -> None:
        now = [10.0]
        relay = EventRelay(clock=lambda: now[0])
        relay.ingest("read", tool_body())
        now[0] = 15.0
        status = relay.status()
        assert status["uptime"] == 5.0
        assert status["ingested"] == 1
        assert status["connections"] == 0
        assert status["last_seq"] == 0
