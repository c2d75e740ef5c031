"""Event ingestion: normalize, stamp, broadcast."""

from __future__ import annotations

import itertools
import uuid
import time
from collections.abc import Callable
from typing import Any

from agentgalaxy.errors import IngestionError
from agentgalaxy.logging import get_logger
from agentgalaxy.relay.protocol import Envelope, EventKind, validate_payload
from agentgalaxy.relay.websocket import ConnectionManager

log = get_logger("relay")


class EventRelay:
    """Turns ingest requests into receipt-ordered envelopes and fans them out.

    ``ingest`` is synchronous and never awaits, so envelopes are stamped and
    queued for every client in exactly the order requests are accepted. If
    no client is connected the envelope is simply not seen by anyone.
    """

    def __init__(
        self,
        connections: ConnectionManager | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.connections = connections or ConnectionManager()
        self._clock = clock
        self._seq = itertools.count()
        # seq restarts at 0 with every relay run; clients compare epochs
        self.epoch = uuid.uuid4().hex[:12]
        self._started_at = clock()
        self.last_seq: int | None = None
        self.ingested = 0
        self.rejected = 0

    def ingest(self, kind: EventKind | str, body: Any) -> Envelope:
        """Validate, stamp and broadcast one agent event.

        Raises:
            IngestionError: Unknown kind, malformed body, missing required
                field, or a tool_name that does not match the endpoint.
        """
        try:
            kind = EventKind(kind)
        except ValueError:
            self.rejected += 1
            raise IngestionError(f"Unknown event kind {kind!r}") from None

        try:
            payload = validate_payload(kind, body)
        except IngestionError:
            self.rejected += 1
            raise

        envelope = Envelope(
            kind=kind,
            session_id=payload.session_id,
            payload=payload.model_dump(),
            seq=next(self._seq),
            received_at=self._clock(),
            epoch=self.epoch,
        )
        self.last_seq = envelope.seq
        self.ingested += 1
        delivered = self.connections.broadcast(envelope.to_message())
        log.debug(
            "Ingested %s for %s (seq %d, %d clients)",
            kind.value,
            envelope.session_id,
            envelope.seq,
            delivered,
        )
        return envelope

    def status(self) -> dict[str, Any]:
        return {
            "running": True,
            "uptime": self._clock() - self._started_at,
            "connections": self.connections.get_connection_count(),
            "dropped_clients": self.connections.dropped_clients,
            "ingested": self.ingested,
            "rejected": self.rejected,
            "last_seq": self.last_seq,
            "epoch": self.epoch,
        }
