"""In-process peek-lock queue client.

Useful for tests and local demos. Mirrors the lock semantics of the real
transports: a received message is invisible until deleted, unlocked or
its lock expires, after which it goes back to the front of the queue.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from sbwatcher.client.base import BaseQueueClient
from sbwatcher.errors import MessageNotFoundError, QueueClientError, QueueNotFoundError
from sbwatcher.models import Message, QueueSnapshot

DEFAULT_LOCK_DURATION_MS = 30_000


@dataclass
class _LockedEntry:
    message: Message
    lock_token: str
    expires_at: float


@dataclass
class _MemoryQueue:
    name: str
    lock_duration_ms: int
    available: deque[Message] = field(default_factory=deque)
    locked: dict[str, _LockedEntry] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)


class InMemoryQueueClient(BaseQueueClient):
    """
    Peek-lock queue kept in process memory.

    Example:
        client = InMemoryQueueClient()
        await client.create_queue("orders")
        await client.send_message("orders", {"id": 1})
    """

    def __init__(
        self,
        *,
        lock_duration_ms: int = DEFAULT_LOCK_DURATION_MS,
        clock: Any = time.monotonic,
    ) -> None:
        self._lock_duration_ms = lock_duration_ms
        self._clock = clock
        self._queues: dict[str, _MemoryQueue] = {}
        self._failures: dict[str, deque[BaseException]] = {}

        # Call counters, handy for assertions
        self.calls: dict[str, int] = {
            "get_queue": 0,
            "receive_message": 0,
            "unlock_message": 0,
            "delete_message": 0,
        }

    # =========================================================================
    # TEST HOOKS
    # =========================================================================

    def fail_next(self, operation: str, exc: BaseException, *, times: int = 1) -> None:
        """Make the next `times` calls of an operation raise `exc`."""
        if operation not in self.calls:
            raise ValueError(f"Unknown operation: {operation}")
        self._failures.setdefault(operation, deque()).extend([exc] * times)

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] += 1
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

    # =========================================================================
    # ADMIN
    # =========================================================================

    async def create_queue(
        self,
        queue_name: str,
        *,
        lock_duration_ms: int | None = None,
    ) -> None:
        if queue_name in self._queues:
            return
        self._queues[queue_name] = _MemoryQueue(
            name=queue_name,
            lock_duration_ms=lock_duration_ms or self._lock_duration_ms,
        )

    async def delete_queue(self, queue_name: str) -> bool:
        return self._queues.pop(queue_name, None) is not None

    async def send_message(
        self,
        queue_name: str,
        body: Any,
        properties: dict[str, Any] | None = None,
    ) -> str:
        queue = self._get(queue_name)
        message = Message(
            body=body,
            enqueued_at=time.time(),
            properties=dict(properties or {}),
        )
        queue.available.append(message)
        return message.message_id

    def locked_count(self, queue_name: str) -> int:
        return len(self._get(queue_name).locked)

    # =========================================================================
    # CORE
    # =========================================================================

    async def get_queue(self, queue_name: str) -> QueueSnapshot | None:
        self._maybe_fail("get_queue")
        queue = self._queues.get(queue_name)
        if queue is None:
            return None
        self._release_expired(queue)
        raw = {
            "QueueName": queue.name,
            "LockDuration": queue.lock_duration_ms,
            "CreatedAt": queue.created_at,
            "CountDetails": {
                "ActiveMessageCount": len(queue.available),
                "LockedMessageCount": len(queue.locked),
            },
        }
        return QueueSnapshot.from_raw(queue.name, raw)

    async def receive_message(self, queue_name: str) -> Message | None:
        self._maybe_fail("receive_message")
        queue = self._get(queue_name)
        self._release_expired(queue)
        if not queue.available:
            return None

        stored = queue.available.popleft()
        stored.delivery_count += 1
        lock_token = uuid.uuid4().hex
        queue.locked[stored.message_id] = _LockedEntry(
            message=stored,
            lock_token=lock_token,
            expires_at=self._clock() + queue.lock_duration_ms / 1000,
        )
        return Message(
            body=stored.body,
            message_id=stored.message_id,
            queue_name=queue.name,
            lock_token=lock_token,
            delivery_count=stored.delivery_count,
            enqueued_at=stored.enqueued_at,
            properties=dict(stored.properties),
        )

    async def unlock_message(self, message: Message) -> None:
        self._maybe_fail("unlock_message")
        queue, entry = self._take_lock(message)
        queue.available.appendleft(entry.message)

    async def delete_message(self, message: Message) -> None:
        self._maybe_fail("delete_message")
        self._take_lock(message)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _get(self, queue_name: str) -> _MemoryQueue:
        queue = self._queues.get(queue_name)
        if queue is None:
            raise QueueNotFoundError(queue_name)
        return queue

    def _take_lock(self, message: Message) -> tuple[_MemoryQueue, _LockedEntry]:
        if message.lock_token is None or message.queue_name is None:
            raise QueueClientError("message was not received in peek-lock mode")
        queue = self._get(message.queue_name)
        self._release_expired(queue)
        entry = queue.locked.get(message.message_id)
        if entry is None:
            raise MessageNotFoundError(f"message {message.message_id} is not locked")
        if entry.lock_token != message.lock_token:
            raise MessageNotFoundError(f"lock lost for message {message.message_id}")
        del queue.locked[message.message_id]
        return queue, entry

    def _release_expired(self, queue: _MemoryQueue) -> None:
        now = self._clock()
        expired = [
            entry for entry in queue.locked.values() if entry.expires_at <= now
        ]
        # Oldest lock first ends up at the front of the queue.
        for entry in sorted(expired, key=lambda e: e.expires_at, reverse=True):
            del queue.locked[entry.message.message_id]
            queue.available.appendleft(entry.message)
