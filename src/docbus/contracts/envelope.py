"""
Bus Envelope

Standard wrapper for every message that crosses a bus transport.
Carries routing (address, reply_to, correlation_id) next to the body so
that request/reply can be layered over plain streams.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4


@dataclass
class BusEnvelope:
    """
    Envelope for bus messages.

    Attributes:
        message_id: Unique identifier for this message
        address: Logical address the message was sent to
        body: JSON-compatible message body
        sent_at: When the message was sent (UTC)
        reply_to: Where the reply should go (None for publish / replies)
        correlation_id: Ties a reply to its request
        status: 0 for success, otherwise the failure code of a reply
        error: Failure message of a failed reply
        headers: Additional metadata (stream message id, ...)
    """

    message_id: UUID
    address: str
    body: Any
    sent_at: datetime
    reply_to: str | None = None
    correlation_id: str | None = None
    status: int = 0
    error: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        address: str,
        body: Any,
        reply_to: str | None = None,
        correlation_id: str | None = None,
        headers: dict[str, Any] | None = None,
    ) -> "BusEnvelope":
        """Create a new envelope with auto-generated id and timestamp."""
        message_id = uuid4()
        if reply_to and correlation_id is None:
            correlation_id = str(message_id)
        return cls(
            message_id=message_id,
            address=address,
            body=body,
            sent_at=datetime.now(timezone.utc),
            reply_to=reply_to,
            correlation_id=correlation_id,
            headers=headers or {},
        )

    @property
    def failed(self) -> bool:
        return self.status != 0

    def reply(self, body: Any) -> "BusEnvelope":
        """Successful reply to this envelope."""
        return BusEnvelope.create(
            address=self.reply_to or "",
            body=body,
            correlation_id=self.correlation_id,
        )

    def failure(self, code: int, message: str) -> "BusEnvelope":
        """Failed reply to this envelope."""
        envelope = BusEnvelope.create(
            address=self.reply_to or "",
            body=None,
            correlation_id=self.correlation_id,
        )
        envelope.status = code
        envelope.error = message
        return envelope

    @classmethod
    def from_stream_message(cls, msg_id: str, data: dict[str, str]) -> "BusEnvelope":
        """Parse a Redis Stream message into an envelope."""
        headers = json.loads(data.get("headers", "{}"))
        headers["stream_msg_id"] = msg_id

        return cls(
            message_id=UUID(data["message_id"]),
            address=data["address"],
            body=json.loads(data.get("body", "null")),
            sent_at=(
                datetime.fromisoformat(data["sent_at"])
                if data.get("sent_at")
                else datetime.now(timezone.utc)
            ),
            reply_to=data.get("reply_to") or None,
            correlation_id=data.get("correlation_id") or None,
            status=int(data.get("status", "0")),
            error=data.get("error") or None,
            headers=headers,
        )

    def to_stream_data(self) -> dict[str, str]:
        """Convert to dictionary suitable for Redis Stream (all string values)."""
        return {
            "message_id": str(self.message_id),
            "address": self.address,
            "body": json.dumps(self.body),
            "sent_at": self.sent_at.isoformat(),
            "reply_to": self.reply_to or "",
            "correlation_id": self.correlation_id or "",
            "status": str(self.status),
            "error": self.error or "",
            "headers": json.dumps(self.headers),
        }
