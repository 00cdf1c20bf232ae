"""Adaptive-concurrency queue watcher.

Architecture:
    start() → [get_queue] → spin-up → N x worker loop
                                  ↘ ConcurrencyMonitor (every 10s)

    worker loop: receive → handler(message, done) → done() → delete/unlock → receive ...

Each worker loop is an asyncio task. The number of live loops is tracked in
`WatcherState.active_workers`, bounded by `concurrency` and steered by
`desired_concurrency`, which the monitor derives from the queue backlog.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from sbwatcher.client.base import BaseQueueClient
from sbwatcher.config import Settings, get_settings
from sbwatcher.engine.completion import CompletionCallback, CompletionHandler
from sbwatcher.engine.monitor import ConcurrencyMonitor
from sbwatcher.engine.retry import RetryExhaustedError, RetryPolicy, call_with_retry
from sbwatcher.engine.state import WatcherInfo, WatcherState
from sbwatcher.errors import ErrorStatus, WatcherError
from sbwatcher.events import Channel, EventBus, Listener
from sbwatcher.models import Message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Message, CompletionCallback], Any]


@dataclass(frozen=True)
class WatcherConfig:
    """Timings and retry budget for a watcher (seconds)."""

    receive_retry_delay: float = 0.5
    monitor_interval: float = 10.0
    spinup_stagger: float = 0.025
    stop_timeout: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> WatcherConfig:
        settings = settings or get_settings()
        return cls(
            receive_retry_delay=settings.receive_retry_delay_ms / 1000,
            monitor_interval=settings.monitor_interval_ms / 1000,
            spinup_stagger=settings.spinup_stagger_ms / 1000,
            stop_timeout=settings.stop_timeout_seconds,
            retry=RetryPolicy(
                attempts=settings.retry_attempts,
                base_delay_seconds=settings.retry_base_delay_ms / 1000,
                max_delay_seconds=settings.retry_max_delay_ms / 1000,
            ),
        )


class QueueWatcher:
    """
    Consumes one peek-lock queue with backlog-driven concurrency.

    Failures never raise out of a running watcher; subscribe with
    `on_error` to observe them.

    Example:
        async def handle(message, done):
            try:
                await process(message.body)
            except Exception as exc:
                done(exc)      # unlock, message is redelivered later
            else:
                done()         # delete

        watcher = QueueWatcher(client, "orders", concurrency=10, handler=handle)
        watcher.on_error(lambda err: log.error("%s: %s", err.status, err))
        await watcher.start()
    """

    def __init__(
        self,
        client: BaseQueueClient,
        queue_name: str,
        concurrency: int | None = None,
        *,
        handler: MessageHandler | None = None,
        config: WatcherConfig | None = None,
    ) -> None:
        if concurrency is None:
            concurrency = get_settings().concurrency
        if isinstance(concurrency, bool) or not isinstance(concurrency, int):
            raise ValueError(f"concurrency must be an integer, got {concurrency!r}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self._client = client
        self._queue_name = queue_name
        self._concurrency = concurrency
        self._handler = handler
        self._config = config or WatcherConfig.from_settings()

        self._events = EventBus()
        self._state = WatcherState()
        self._completion = CompletionHandler(
            client, self._events, self._state, self._config.retry
        )
        self._monitor = ConcurrencyMonitor(self, interval=self._config.monitor_interval)

        # Live worker loops and async handler runs
        self._workers: set[asyncio.Task[None]] = set()
        self._handler_tasks: set[asyncio.Task[Any]] = set()
        self._worker_seq = 0

        self._started = False
        self._stop_event = asyncio.Event()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client(self) -> BaseQueueClient:
        return self._client

    @property
    def queue_name(self) -> str:
        return self._queue_name

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def config(self) -> WatcherConfig:
        return self._config

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def monitor(self) -> ConcurrencyMonitor:
        return self._monitor

    @property
    def is_running(self) -> bool:
        return self._started and not self._stop_event.is_set()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def on_message(self, handler: MessageHandler) -> MessageHandler:
        """
        Register the message handler.

        Prefer passing `handler=` to the constructor. Only one handler can
        be registered; a second registration raises instead of silently
        replacing the first.
        """
        if self._handler is not None:
            raise RuntimeError(
                f"A message handler is already registered for '{self._queue_name}'"
            )
        self._handler = handler
        return handler

    def on_error(self, listener: Listener) -> Listener:
        """Add an error listener. Receives `WatcherError` instances."""
        return self._events.subscribe(Channel.ERROR, listener)

    def on_debug(self, listener: Listener) -> Listener:
        """Add a debug listener. Receives `DebugEvent` instances."""
        return self._events.subscribe(Channel.DEBUG, listener)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """
        Verify the queue exists, launch worker loops and schedule the monitor.

        Runtime failures (missing queue, unreachable transport) are
        published on the error channel instead of raised.

        Raises:
            RuntimeError: If no message handler is registered
        """
        if self._handler is None:
            raise RuntimeError(
                "No message handler registered; pass handler= or use on_message()"
            )
        if self._started:
            logger.warning(f"Watcher for '{self._queue_name}' already started")
            return

        self._stop_event.clear()
        try:
            snapshot = await call_with_retry(
                "get_queue",
                lambda: self._client.get_queue(self._queue_name),
                self._config.retry,
            )
        except Exception as e:
            cause = e.last_error if isinstance(e, RetryExhaustedError) else e
            self._events.error(
                WatcherError(str(e), ErrorStatus.START_ERROR, None, cause=cause)
            )
            return

        if snapshot is None:
            self._events.error(
                WatcherError(
                    f"queue not found: {self._queue_name}",
                    ErrorStatus.QUEUE_NOT_FOUND,
                )
            )
            return

        self._started = True
        self._state.queue_snapshot = snapshot
        self._state.started_at = time.time()
        self._spin_up(snapshot.active_message_count)
        self._monitor.start()

        logger.debug(
            f"Watcher started on '{self._queue_name}' "
            f"(backlog={snapshot.active_message_count}, concurrency={self._concurrency})"
        )

    async def stop(self, timeout: float | None = None) -> None:
        """
        Request graceful shutdown.

        Worker loops exit at their next suspension boundary. Loops still
        waiting on a handler after `timeout` seconds are cancelled; their
        messages become available again once the lock expires.

        Args:
            timeout: Maximum time to wait for in-flight handlers
        """
        if timeout is None:
            timeout = self._config.stop_timeout
        self._stop_event.set()
        await self._monitor.stop()

        pending = {task for task in self._workers if not task.done()}
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            if still_running:
                logger.warning(
                    f"Shutdown timeout, {len(still_running)} worker loop(s) still busy"
                )
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)

        for task in list(self._handler_tasks):
            task.cancel()
        if self._handler_tasks:
            await asyncio.gather(*self._handler_tasks, return_exceptions=True)

        self._started = False
        logger.debug(f"Watcher for '{self._queue_name}' stopped")

    async def run(self, *, handle_signals: bool = True) -> None:
        """
        Start the watcher and block until it is stopped.

        Args:
            handle_signals: Whether to stop on SIGTERM/SIGINT (default True).
                Set to False when signals are handled at a higher level.
        """
        await self.start()
        if not self._started:
            return

        loop = asyncio.get_running_loop()
        if handle_signals:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._stop_event.set)
        try:
            await self._stop_event.wait()
        finally:
            if handle_signals:
                for sig in (signal.SIGTERM, signal.SIGINT):
                    loop.remove_signal_handler(sig)
            await self.stop()

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================

    def get_watcher_info(self) -> WatcherInfo:
        """Point-in-time diagnostics. Pure read."""
        return WatcherInfo.from_state(
            self._state,
            queue_name=self._queue_name,
            concurrency=self._concurrency,
            is_running=self.is_running,
        )

    # =========================================================================
    # WORKER LOOPS
    # =========================================================================

    def _spin_up(self, backlog: int) -> None:
        """Launch the initial loops: one for an empty queue, else min(concurrency, backlog) staggered."""
        self._state.is_start_running = True
        count = 1 if backlog <= 0 else min(self._concurrency, backlog)
        self._state.desired_concurrency = count
        for index in range(count):
            self.launch_worker(delay=index * self._config.spinup_stagger)
        self._state.is_start_running = False

    def launch_worker(self, *, delay: float = 0.0) -> asyncio.Task[None]:
        """Launch one worker loop and count it as active immediately."""
        self._state.active_workers += 1
        self._worker_seq += 1
        task = asyncio.create_task(
            self._worker_loop(delay),
            name=f"sbwatcher-worker-{self._queue_name}-{self._worker_seq}",
        )
        self._workers.add(task)
        task.add_done_callback(self._workers.discard)
        return task

    async def _worker_loop(self, delay: float) -> None:
        try:
            if delay > 0:
                await self._pause(delay)
            while not self._stop_event.is_set():
                if not await self._read_one_message():
                    break
        finally:
            self._state.active_workers -= 1

    async def _read_one_message(self) -> bool:
        """
        Run one receive → handle → complete cycle.

        Returns:
            False when this worker loop should retire
        """
        state = self._state
        if state.active_workers > self._concurrency:
            self._events.error(
                WatcherError(
                    ErrorStatus.MAX_THREADS_EXCEEDED.value,
                    ErrorStatus.MAX_THREADS_EXCEEDED,
                )
            )
            return False
        ceiling = state.worker_ceiling
        if ceiling is not None and state.active_workers > ceiling:
            self._events.debug(
                "worker loop retiring",
                active=state.active_workers,
                ceiling=ceiling,
            )
            return False

        try:
            message = await self._client.receive_message(self._queue_name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            state.record_receive(time.time(), None, e)
            self._events.error(
                WatcherError(str(e), ErrorStatus.RECEIVE_FAILED, None, cause=e)
            )
            await self._pause(self._config.receive_retry_delay)
            return True

        state.record_receive(time.time(), message, None)
        if message is None:
            await self._pause(self._config.receive_retry_delay)
            return True

        done = self._completion.bind(message)
        self._dispatch(message, done)
        outcome = await done.wait()
        await self._completion.complete(message, outcome)
        return True

    def _dispatch(self, message: Message, done: CompletionCallback) -> None:
        handler = self._handler
        if handler is None:
            raise RuntimeError(
                f"No message handler registered for '{self._queue_name}'"
            )
        try:
            result = handler(message, done)
        except Exception as e:
            logger.exception(f"Handler failed for message {message.message_id}")
            done.fail(e)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._handler_tasks.add(task)
            task.add_done_callback(partial(self._on_handler_done, done))

    def _on_handler_done(self, done: CompletionCallback, task: asyncio.Task[Any]) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            done.fail(asyncio.CancelledError())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Handler failed for message {done.message.message_id}: {exc}",
                exc_info=exc,
            )
            done.fail(exc)

    async def _pause(self, seconds: float) -> None:
        """Sleep, waking early when the watcher is stopping."""
        try:
            async with asyncio.timeout(seconds):
                await self._stop_event.wait()
        except TimeoutError:
            pass
