"""Watcher state and the diagnostic snapshot built from it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from sbwatcher.models import Message, QueueSnapshot


@dataclass
class WatcherState:
    """
    Mutable watcher bookkeeping.

    Only touched from the event loop thread, so no locking is needed.
    """

    desired_concurrency: int = 0
    active_workers: int = 0
    # Surplus loops retire above this count; None until a scale-down is requested
    worker_ceiling: int | None = None
    queue_snapshot: QueueSnapshot | None = None
    is_start_running: bool = False
    started_at: float | None = None

    # Receive history
    last_receive_at: float | None = None
    last_received_message: Message | None = None
    last_receive_error: BaseException | None = None

    # Completion history
    last_completion_at: float | None = None
    last_completed_message: Message | None = None
    last_completion_error: BaseException | None = None

    def record_receive(
        self,
        at: float,
        message: Message | None,
        error: BaseException | None,
    ) -> None:
        self.last_receive_at = at
        self.last_received_message = message
        self.last_receive_error = error

    def record_completion(
        self,
        at: float,
        message: Message,
        error: BaseException | None = None,
    ) -> None:
        self.last_completion_at = at
        self.last_completed_message = message
        self.last_completion_error = error

    @property
    def backlog(self) -> int:
        """Backlog from the last snapshot, -1 before the first lookup."""
        if self.queue_snapshot is None:
            return -1
        return self.queue_snapshot.active_message_count


def _describe_error(error: BaseException | None) -> str | None:
    if error is None:
        return None
    return f"{type(error).__name__}: {error}"


def _message_dict(message: Message | None) -> dict[str, Any] | None:
    return message.to_dict() if message is not None else None


class ReadHistory(BaseModel):
    """Outcome of the most recent receive call."""

    last_read_message_at: float | None = None
    last_read_message: dict[str, Any] | None = None
    last_read_error_message: str | None = None


class JobDoneHistory(BaseModel):
    """Outcome of the most recent completion."""

    last_job_done_at: float | None = None
    last_job_done: dict[str, Any] | None = None
    last_job_error_done: str | None = None


class WatcherHistory(BaseModel):
    on_read_one_message: ReadHistory = Field(default_factory=ReadHistory)
    on_job_done: JobDoneHistory = Field(default_factory=JobDoneHistory)


class WatcherInfo(BaseModel):
    """Point-in-time watcher diagnostics for health checks and dashboards."""

    queue_name: str
    concurrency: int
    desired_concurrency: int
    active_workers: int
    is_running: bool
    is_start_running: bool
    started_at: float | None = None
    queue_data: dict[str, Any] | None = None
    current_messages_in_queue: int = -1
    history: WatcherHistory = Field(default_factory=WatcherHistory)

    @classmethod
    def from_state(
        cls,
        state: WatcherState,
        *,
        queue_name: str,
        concurrency: int,
        is_running: bool,
    ) -> WatcherInfo:
        snapshot = state.queue_snapshot
        return cls(
            queue_name=queue_name,
            concurrency=concurrency,
            desired_concurrency=state.desired_concurrency,
            active_workers=state.active_workers,
            is_running=is_running,
            is_start_running=state.is_start_running,
            started_at=state.started_at,
            queue_data=snapshot.to_dict() if snapshot is not None else None,
            current_messages_in_queue=state.backlog,
            history=WatcherHistory(
                on_read_one_message=ReadHistory(
                    last_read_message_at=state.last_receive_at,
                    last_read_message=_message_dict(state.last_received_message),
                    last_read_error_message=_describe_error(state.last_receive_error),
                ),
                on_job_done=JobDoneHistory(
                    last_job_done_at=state.last_completion_at,
                    last_job_done=_message_dict(state.last_completed_message),
                    last_job_error_done=_describe_error(state.last_completion_error),
                ),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump()
