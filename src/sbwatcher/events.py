"""Process-local event bus for error and debug events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]


class Channel(StrEnum):
    """Event channels."""

    ERROR = "error"
    DEBUG = "debug"


@dataclass
class DebugEvent:
    """Diagnostic event; never part of the error contract."""

    message: str
    metadata: dict[str, Any] | None = None
    status: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "message": self.message,
            "metadata": self.metadata,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }


class EventBus:
    """
    Fan-out of events to listeners in registration order.

    Delivery is synchronous. Each listener is isolated: an exception in one
    is logged and the remaining listeners still receive the event. Coroutine
    listeners are scheduled as tasks on the running loop.

    Example:
        bus = EventBus()
        bus.subscribe(Channel.ERROR, lambda err: print(err.status))
        bus.publish(Channel.ERROR, WatcherError("boom", ErrorStatus.START_ERROR))
    """

    def __init__(self) -> None:
        self._listeners: dict[Channel, list[Listener]] = {
            channel: [] for channel in Channel
        }
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, channel: Channel, listener: Listener) -> Listener:
        """Append a listener. Returns it so this can be used as a decorator."""
        self._listeners[channel].append(listener)
        return listener

    def unsubscribe(self, channel: Channel, listener: Listener) -> bool:
        """
        Remove a listener.

        Returns:
            True if the listener was registered
        """
        try:
            self._listeners[channel].remove(listener)
        except ValueError:
            return False
        return True

    def listeners(self, channel: Channel) -> list[Listener]:
        """Get registered listeners for a channel."""
        return self._listeners[channel].copy()

    def publish(self, channel: Channel, event: Any) -> None:
        """Deliver an event to every listener of a channel."""
        for listener in self._listeners[channel].copy():
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    self._schedule(result)
            except Exception:
                logger.exception(
                    "Listener %r failed handling %s event", listener, channel.value
                )

    def error(self, event: Any) -> None:
        self.publish(Channel.ERROR, event)

    def debug(self, message: str, *, status: str | None = None, **metadata: Any) -> None:
        self.publish(
            Channel.DEBUG,
            DebugEvent(message=message, metadata=metadata or None, status=status),
        )

    def _schedule(self, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async listener failed: %s", exc, exc_info=exc)
