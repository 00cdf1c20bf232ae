"""Core data models for sbwatcher."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

# Keys tried, in order, when reading the backlog count out of raw metadata.
_COUNT_DETAILS_KEYS = ("ActiveMessageCount", "d2p1:ActiveMessageCount")


@dataclass
class Message:
    """
    A peek-locked queue message.

    Owned by the worker loop that received it until its completion callback
    resolves; the lock token proves ownership to the transport.
    """

    body: Any
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    queue_name: str | None = None
    lock_token: str | None = None
    delivery_count: int = 0
    enqueued_at: float | None = None
    properties: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "message_id": self.message_id,
            "queue_name": self.queue_name,
            "body": self.body,
            "lock_token": self.lock_token,
            "delivery_count": self.delivery_count,
            "enqueued_at": self.enqueued_at,
            "properties": self.properties,
        }


@dataclass(frozen=True)
class QueueSnapshot:
    """Point-in-time queue metadata. Replaced wholesale on every refresh."""

    name: str
    active_message_count: int
    raw: dict[str, Any] = field(default_factory=dict)
    captured_at: float = field(default_factory=time.time)

    @classmethod
    def from_raw(cls, name: str, raw: dict[str, Any]) -> QueueSnapshot:
        """Build a snapshot, parsing the backlog out of transport metadata."""
        return cls(name=name, active_message_count=parse_active_count(raw), raw=raw)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "active_message_count": self.active_message_count,
            "raw": self.raw,
            "captured_at": self.captured_at,
        }


def parse_active_count(raw: dict[str, Any]) -> int:
    """
    Read the backlog count from queue metadata.

    Accepts a top-level ``active_message_count`` or a ``CountDetails``
    mapping. Missing or unparsable values count as an empty queue.
    """
    value: Any = raw.get("active_message_count")
    if value is None:
        details = raw.get("CountDetails")
        if isinstance(details, dict):
            value = next(
                (details[k] for k in _COUNT_DETAILS_KEYS if k in details), None
            )
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0
