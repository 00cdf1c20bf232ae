"""Periodic backlog check that scales the number of worker loops."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sbwatcher.engine.retry import RetryExhaustedError, call_with_retry
from sbwatcher.errors import ErrorStatus, WatcherError

if TYPE_CHECKING:
    from sbwatcher.engine.watcher import QueueWatcher

logger = logging.getLogger(__name__)


class ConcurrencyMonitor:
    """
    Re-reads the queue backlog every `interval` seconds and rebalances.

    Scaling up launches worker loops right away. Scaling down only sets a
    ceiling; surplus loops retire at their next iteration boundary so no
    in-flight message is ever interrupted.
    """

    def __init__(self, watcher: QueueWatcher, *, interval: float) -> None:
        self._watcher = watcher
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._ticks = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the first tick one interval from now."""
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(
            self._monitor_loop(), name=f"sbwatcher-monitor-{self._watcher.queue_name}"
        )

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Concurrency monitor stopped")

    async def _monitor_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                async with asyncio.timeout(self._interval):
                    await self._stop_event.wait()
                return
            except TimeoutError:
                pass

            if self._ticks == 0:
                self._watcher.events.debug("starting concurrency checker")
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Concurrency monitor tick error: {e}", exc_info=True)

    async def tick(self) -> None:
        """Refresh the queue snapshot and rebalance worker loops once."""
        watcher = self._watcher
        state = watcher.state
        if state.queue_snapshot is None:
            return
        self._ticks += 1

        try:
            snapshot = await call_with_retry(
                "get_queue",
                lambda: watcher.client.get_queue(watcher.queue_name),
                watcher.config.retry,
            )
        except Exception as e:
            cause = e.last_error if isinstance(e, RetryExhaustedError) else e
            watcher.events.error(
                WatcherError(str(e), ErrorStatus.START_ERROR, None, cause=cause)
            )
            return

        if snapshot is None:
            watcher.events.error(
                WatcherError(
                    f"queue not found: {watcher.queue_name}",
                    ErrorStatus.QUEUE_NOT_FOUND,
                )
            )
            return

        state.queue_snapshot = snapshot
        self.rebalance(snapshot.active_message_count)

    def rebalance(self, backlog: int) -> int:
        """
        Align worker loops with the observed backlog.

        - empty queue: expect a single loop, but leave the idle ones polling
        - backlog above `concurrency`: launch loops up to `concurrency`
        - backlog below the live loop count: surplus loops retire at their
          next iteration boundary

        Returns:
            Number of worker loops launched
        """
        watcher = self._watcher
        state = watcher.state
        limit = watcher.concurrency

        launched = 0
        if backlog <= 0:
            state.desired_concurrency = 1
        elif backlog > limit:
            state.desired_concurrency = limit
            state.worker_ceiling = None
            while state.active_workers < limit:
                watcher.launch_worker()
                launched += 1
        elif backlog < state.active_workers:
            state.desired_concurrency = backlog
            state.worker_ceiling = backlog
        else:
            return 0

        logger.debug(
            f"Rebalanced '{watcher.queue_name}': backlog={backlog} "
            f"desired={state.desired_concurrency} active={state.active_workers} "
            f"launched={launched}"
        )
        watcher.events.debug(
            "concurrency rebalanced",
            backlog=backlog,
            desired=state.desired_concurrency,
            active=state.active_workers,
            launched=launched,
        )
        return launched
