"""Base queue client abstraction for sbwatcher."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from sbwatcher.models import Message, QueueSnapshot


class BaseQueueClient(ABC):
    """
    Abstract peek-lock queue transport.

    The watcher engine only needs the four core operations. Transports
    signal failures with `QueueClientError`; a lock that expired or a
    message that is already gone must raise `MessageNotFoundError` so the
    engine can tell terminal failures from transient ones.

    Lifecycle:
        client = RedisQueueClient(...)
        # ... use client ...
        await client.close()
    """

    # =========================================================================
    # CORE - Must implement these
    # =========================================================================

    @abstractmethod
    async def get_queue(self, queue_name: str) -> QueueSnapshot | None:
        """
        Look up queue metadata.

        Args:
            queue_name: Queue to look up

        Returns:
            Snapshot with the current backlog, or None if the queue does not exist

        Raises:
            QueueClientError: On transport failure
        """
        ...

    @abstractmethod
    async def receive_message(self, queue_name: str) -> Message | None:
        """
        Receive one message in peek-lock mode.

        The message stays invisible to other consumers until it is deleted,
        unlocked or its lock expires.

        Returns:
            The locked message, or None if no messages are available

        Raises:
            QueueClientError: On transport failure
        """
        ...

    @abstractmethod
    async def unlock_message(self, message: Message) -> None:
        """
        Release a message lock so it can be delivered again.

        Raises:
            MessageNotFoundError: If the lock expired or the message is gone
            QueueClientError: On transport failure
        """
        ...

    @abstractmethod
    async def delete_message(self, message: Message) -> None:
        """
        Permanently remove a locked message.

        Raises:
            MessageNotFoundError: If the lock expired or the message is gone
            QueueClientError: On transport failure
        """
        ...

    # =========================================================================
    # OPTIONAL - Producer/admin helpers, override where supported
    # =========================================================================

    async def send_message(
        self,
        queue_name: str,
        body: Any,
        properties: dict[str, Any] | None = None,
    ) -> str:
        """
        Add a message to the queue.

        Returns:
            Message ID
        """
        raise NotImplementedError(f"{type(self).__name__} cannot send messages")

    async def create_queue(
        self,
        queue_name: str,
        *,
        lock_duration_ms: int | None = None,
    ) -> None:
        """Create a queue if it does not exist yet."""
        raise NotImplementedError(f"{type(self).__name__} cannot create queues")

    async def close(self) -> None:
        """
        Close connections.

        Default: no-op. Override to clean up resources.
        """
        pass
