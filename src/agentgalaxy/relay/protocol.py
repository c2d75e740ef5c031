"""Relay wire protocol.

Ingest bodies are validated into payload models, normalized into an
Envelope stamped with the relay's receipt order, and pushed to clients as
``agent_event`` messages. The bridge turns those messages back into
Envelopes with ``parse_message``.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agentgalaxy.errors import IngestionError

MESSAGE_TYPE = "agent_event"
HELLO_TYPE = "hello"


class EventKind(str, Enum):
    """Ingest operations accepted by the relay."""

    SESSION_START = "session-start"
    READ = "read"
    WRITE = "write"
    EDIT = "edit"
    SESSION_END = "session-end"

    @property
    def is_tool_use(self) -> bool:
        return self in (EventKind.READ, EventKind.WRITE, EventKind.EDIT)

    @property
    def tool_name(self) -> str | None:
        """Tool name a tool-use body must carry for this endpoint."""
        return self.value.capitalize() if self.is_tool_use else None


class RelayModel(BaseModel):
    """Base model for relay payloads; unknown fields are kept."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SessionStartPayload(RelayModel):
    session_id: str = Field(min_length=1)
    cwd: str
    model: str


class ToolInput(RelayModel):
    file_path: str = Field(min_length=1)


class ToolUsePayload(RelayModel):
    session_id: str = Field(min_length=1)
    tool_name: str
    tool_input: ToolInput


class SessionEndPayload(RelayModel):
    session_id: str = Field(min_length=1)
    reason: str | None = None


PAYLOAD_MODELS: dict[EventKind, type[RelayModel]] = {
    EventKind.SESSION_START: SessionStartPayload,
    EventKind.READ: ToolUsePayload,
    EventKind.WRITE: ToolUsePayload,
    EventKind.EDIT: ToolUsePayload,
    EventKind.SESSION_END: SessionEndPayload,
}

# Payload fields repeated at the top level of pushed messages
_FLAT_FIELDS = ("cwd", "model", "tool_name", "reason")


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "body"
        parts.append(f"{loc}: {item['msg']}")
    return "; ".join(parts)


def validate_payload(kind: EventKind, body: Any) -> RelayModel:
    """Validate an ingest body for ``kind``.

    Raises:
        IngestionError: Body is not an object, a required field is missing,
            or ``tool_name`` does not match the endpoint.
    """
    if not isinstance(body, dict):
        raise IngestionError("Request body must be a JSON object", kind=kind.value)
    try:
        payload = PAYLOAD_MODELS[kind].model_validate(body)
    except ValidationError as e:
        raise IngestionError(f"Invalid {kind.value} body: {_describe(e)}", kind=kind.value) from e

    if isinstance(payload, ToolUsePayload) and payload.tool_name != kind.tool_name:
        raise IngestionError(
            f"tool_name {payload.tool_name!r} does not match {kind.value} endpoint",
            kind=kind.value,
        )
    return payload


class Envelope(BaseModel):
    """A normalized, receipt-ordered agent event."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    session_id: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    seq: int = Field(ge=0)
    received_at: float
    epoch: str | None = None

    @property
    def file_path(self) -> str | None:
        tool_input = self.payload.get("tool_input")
        if isinstance(tool_input, dict):
            return tool_input.get("file_path")
        return None

    def to_message(self) -> dict[str, Any]:
        """Wire form pushed to visualization clients."""
        message: dict[str, Any] = {
            "type": MESSAGE_TYPE,
            "kind": self.kind.value,
            "session_id": self.session_id,
            "seq": self.seq,
            "received_at": self.received_at,
            "payload": self.payload,
        }
        if self.epoch is not None:
            message["epoch"] = self.epoch
        for key in _FLAT_FIELDS:
            if self.payload.get(key) is not None:
                message[key] = self.payload[key]
        if self.file_path is not None:
            message["file_path"] = self.file_path
        return message


class RelayMessage(RelayModel):
    """An ``agent_event`` message as received by the bridge."""

    type: Literal["agent_event"]
    kind: EventKind
    session_id: str = Field(min_length=1)
    seq: int = Field(ge=0)
    received_at: float
    payload: dict[str, Any] = Field(default_factory=dict)
    epoch: str | None = None

    def to_envelope(self) -> Envelope:
        return Envelope(
            kind=self.kind,
            session_id=self.session_id,
            payload=self.payload,
            seq=self.seq,
            received_at=self.received_at,
            epoch=self.epoch,
        )


def parse_message(raw: str | bytes | dict[str, Any]) -> Envelope | None:
    """Parse one pushed message.

    Returns None for control traffic (``pong``, ``hello``). Raises
    IngestionError for anything malformed, including agent events whose
    payload would not have passed ingest validation.
    """
    if isinstance(raw, (str, bytes)):
        if raw in ("pong", b"pong"):
            return None
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise IngestionError(f"Message is not JSON: {e}", kind="message") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise IngestionError("Message is not a JSON object", kind="message")
    if data.get("type") == HELLO_TYPE:
        return None

    try:
        message = RelayMessage.model_validate(data)
    except ValidationError as e:
        raise IngestionError(f"Invalid message: {_describe(e)}", kind="message") from e

    payload = dict(message.payload)
    payload.setdefault("session_id", message.session_id)
    validate_payload(message.kind, payload)
    return message.to_envelope()
