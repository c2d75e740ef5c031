"""Event relay for agentgalaxy.

Agents POST session and tool-use events; the relay normalizes them into
receipt-ordered envelopes and pushes them to every connected visualization
client over WebSocket.
"""

from agentgalaxy.relay.ingest import EventRelay
from agentgalaxy.relay.protocol import (
    Envelope,
    EventKind,
    RelayMessage,
    SessionEndPayload,
    SessionStartPayload,
    ToolUsePayload,
    parse_message,
    validate_payload,
)
from agentgalaxy.relay.routes import create_app
from agentgalaxy.relay.server import RelayServer
from agentgalaxy.relay.websocket import ConnectionManager

__all__ = [
    "ConnectionManager",
    "Envelope",
    "EventKind",
    "EventRelay",
    "RelayMessage",
    "RelayServer",
    "SessionEndPayload",
    "SessionStartPayload",
    "ToolUsePayload",
    "create_app",
    "parse_message",
    "validate_payload",
]
