"""Per-message completion protocol: delete on success, unlock on failure."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from sbwatcher.client.base import BaseQueueClient
from sbwatcher.engine.retry import RetryExhaustedError, RetryPolicy, call_with_retry
from sbwatcher.engine.state import WatcherState
from sbwatcher.errors import (
    ErrorStatus,
    WatcherError,
    classify_delete_error,
    classify_unlock_error,
)
from sbwatcher.events import EventBus
from sbwatcher.models import Message

logger = logging.getLogger(__name__)


class CompletionCallback:
    """
    Single-use `done(error=None)` callable bound to one message.

    A falsy `error` means the message was handled and should be deleted;
    anything truthy means it should be unlocked for redelivery. Only the
    first call counts, later calls are reported through `on_repeat`.
    Safe to call from other threads.
    """

    def __init__(
        self,
        message: Message,
        *,
        on_repeat: Callable[[Message], None] | None = None,
    ) -> None:
        self.message = message
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future[Any] = self._loop.create_future()
        self._on_repeat = on_repeat

    @property
    def called(self) -> bool:
        return self._future.done()

    def __call__(self, error: Any = None) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._resolve(error)
        else:
            self._loop.call_soon_threadsafe(self._resolve, error)

    def fail(self, error: BaseException) -> None:
        """Resolve as failed unless the handler already called back."""
        if not self._future.done():
            self._future.set_result(error)

    async def wait(self) -> Any:
        """Suspend until the handler calls back; returns the error it passed."""
        return await self._future

    def _resolve(self, error: Any) -> None:
        if self._future.done():
            if self._on_repeat is not None:
                self._on_repeat(self.message)
            return
        self._future.set_result(error or None)


class CompletionHandler:
    """
    Resolves received messages against the queue.

    Failures never propagate: terminal ones (lock expired, message gone)
    are published on the error channel, everything else is logged and
    reported as a debug event. The caller always moves on to the next
    receive afterwards.
    """

    def __init__(
        self,
        client: BaseQueueClient,
        events: EventBus,
        state: WatcherState,
        retry_policy: RetryPolicy,
    ) -> None:
        self._client = client
        self._events = events
        self._state = state
        self._retry_policy = retry_policy

    def bind(self, message: Message) -> CompletionCallback:
        return CompletionCallback(message, on_repeat=self._on_repeat)

    async def complete(self, message: Message, error: Any = None) -> None:
        if error:
            await self._unlock(message)
        else:
            await self._delete(message)

    async def _delete(self, message: Message) -> None:
        try:
            await call_with_retry(
                "delete_message",
                lambda: self._client.delete_message(message),
                self._retry_policy,
            )
        except Exception as e:
            self._state.record_completion(time.time(), message, e)
            self._report_failure(
                "delete",
                message,
                e,
                classify_delete_error,
                ErrorStatus.DELETE_MAX_ATTEMPTS,
            )
            return
        self._state.record_completion(time.time(), message)

    async def _unlock(self, message: Message) -> None:
        try:
            await call_with_retry(
                "unlock_message",
                lambda: self._client.unlock_message(message),
                self._retry_policy,
            )
        except Exception as e:
            self._state.record_completion(time.time(), message, e)
            self._report_failure(
                "unlock",
                message,
                e,
                classify_unlock_error,
                ErrorStatus.UNLOCK_MAX_ATTEMPTS,
            )
            return
        self._state.record_completion(time.time(), message)

    def _report_failure(
        self,
        action: str,
        message: Message,
        error: Exception,
        classify: Callable[[BaseException], ErrorStatus | None],
        exhausted_status: ErrorStatus,
    ) -> None:
        status = classify(error)
        if status is not None:
            self._events.error(
                WatcherError(str(error), status, message, cause=error)
            )
            return

        # Not actionable for the embedder; keep it off the error channel.
        exhausted = isinstance(error, RetryExhaustedError)
        logger.warning(
            "Failed to %s message %s: %s", action, message.message_id, error
        )
        self._events.debug(
            f"{action} failed for message {message.message_id}",
            status=exhausted_status.value if exhausted else None,
            message_id=message.message_id,
            error=str(error),
            attempts=error.attempts if exhausted else 1,
        )

    def _on_repeat(self, message: Message) -> None:
        logger.warning("done() called more than once for message %s", message.message_id)
        self._events.debug(
            f"done() called more than once for message {message.message_id}",
            message_id=message.message_id,
        )
