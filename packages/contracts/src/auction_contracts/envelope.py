"""
Event Envelope - Standard wrapper for all auction domain events.

The outbox relay serializes envelopes into flat Redis Stream entries and the
search worker parses them back. The payload MUST be self-contained so the
read side never has to call back into the auction service to apply it.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4


@dataclass
class EventEnvelope:
    """
    Standard event envelope for auction events.

    Attributes:
        event_id: Unique identifier for this event instance (deduplication key)
        event_type: Type of event (EventType value)
        aggregate_id: Auction the event refers to (also the partition key)
        occurred_at: When the event occurred (UTC)
        version: Event contract version (for schema evolution)
        payload: Self-contained event data
        correlation_id: Optional correlation ID for tracing
        metadata: Optional metadata (stream message id, source, etc.)
    """

    event_id: UUID
    event_type: str
    aggregate_id: UUID
    occurred_at: datetime
    payload: dict[str, Any]
    version: int = 1
    correlation_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        event_type: str,
        aggregate_id: UUID,
        payload: dict[str, Any],
        correlation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "EventEnvelope":
        """Create a new envelope with auto-generated event_id and timestamp."""
        return cls(
            event_id=uuid4(),
            event_type=str(event_type),
            aggregate_id=aggregate_id,
            occurred_at=datetime.now(timezone.utc),
            payload=payload,
            correlation_id=correlation_id,
            metadata=metadata or {},
        )

    @classmethod
    def from_stream_message(cls, msg_id: str, data: dict[str, str]) -> "EventEnvelope":
        """
        Parse a Redis Stream message into an envelope.

        Raises KeyError/ValueError on malformed entries; callers decide
        whether to park the message.
        """
        payload = json.loads(data.get("payload") or "{}")
        metadata = json.loads(data.get("metadata") or "{}")
        metadata["stream_msg_id"] = msg_id

        return cls(
            event_id=UUID(data["event_id"]),
            event_type=data["event_type"],
            aggregate_id=UUID(data["aggregate_id"]),
            occurred_at=(
                datetime.fromisoformat(data["occurred_at"])
                if data.get("occurred_at")
                else datetime.now(timezone.utc)
            ),
            version=int(data.get("version") or "1"),
            payload=payload,
            correlation_id=data.get("correlation_id") or None,
            metadata=metadata,
        )

    def to_stream_data(self) -> dict[str, str]:
        """Convert to dictionary suitable for Redis Stream (all string values)."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "aggregate_id": str(self.aggregate_id),
            "occurred_at": self.occurred_at.isoformat(),
            "version": str(self.version),
            "payload": json.dumps(self.payload),
            "correlation_id": self.correlation_id or "",
            "metadata": json.dumps(self.metadata),
        }
