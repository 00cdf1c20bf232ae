"""Error taxonomy and transport exceptions.

Transports raise `QueueClientError` (or a subclass). The engine converts
every failure into a `WatcherError` carrying one of the `ErrorStatus`
codes and publishes it on the error channel; nothing propagates out of
a running watcher.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sbwatcher.models import Message

NOT_FOUND_CODE = "404"


class ErrorStatus(StrEnum):
    """Stable status codes published on the error channel."""

    RECEIVE_FAILED = "on_error_read_message_from_azure"
    QUEUE_NOT_FOUND = "queue_not_found"
    UNLOCK_FAILED = "on_unlock_message_from_azure"
    DELETE_FAILED = "on_remove_unlock_message_from_azure"
    UNLOCK_MAX_ATTEMPTS = "on_unlock_message_from_azure_max_attempts"
    DELETE_MAX_ATTEMPTS = "on_delete_message_from_azure_max_attempts"
    MAX_THREADS_EXCEEDED = "max_threads_exceeded"
    START_ERROR = "start_error"


class QueueClientError(Exception):
    """Base error raised by queue transports."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class QueueNotFoundError(QueueClientError):
    """Raised by transports when an operation targets a missing queue."""

    def __init__(self, queue_name: str) -> None:
        super().__init__(f"queue not found: {queue_name}", code=NOT_FOUND_CODE)
        self.queue_name = queue_name


class MessageNotFoundError(QueueClientError):
    """Lock expired or message already removed. Never worth retrying."""

    def __init__(self, message: str = "message or lock not found") -> None:
        super().__init__(message, code=NOT_FOUND_CODE)


class WatcherError(Exception):
    """Payload of an error event."""

    def __init__(
        self,
        message: str,
        status: ErrorStatus,
        queue_message: Message | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.queue_message = queue_message
        self.cause = cause

    def __repr__(self) -> str:
        return f"WatcherError(status={self.status.value!r}, message={self.message!r})"


def is_terminal(exc: BaseException) -> bool:
    """Check whether a transport error can never succeed on retry."""
    if isinstance(exc, MessageNotFoundError):
        return True
    return isinstance(exc, QueueClientError) and exc.code == NOT_FOUND_CODE


def classify_unlock_error(exc: BaseException) -> ErrorStatus | None:
    """Status to publish for an unlock failure, or None when it is not published."""
    return ErrorStatus.UNLOCK_FAILED if is_terminal(exc) else None


def classify_delete_error(exc: BaseException) -> ErrorStatus | None:
    """Status to publish for a delete failure, or None when it is not published."""
    return ErrorStatus.DELETE_FAILED if is_terminal(exc) else None
