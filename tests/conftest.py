from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from sbwatcher.client.base import BaseQueueClient
from sbwatcher.engine.retry import RetryPolicy
from sbwatcher.engine.watcher import WatcherConfig
from sbwatcher.models import Message, QueueSnapshot


class ScriptedClient(BaseQueueClient):
    """
    Transport whose results are scripted by the test.

    `receive_message` blocks until the test feeds a result with `feed()`,
    which makes call counts deterministic.
    """

    def __init__(self, queue_name: str = "orders", backlog: int = 0) -> None:
        self.queue_name = queue_name
        self.lookups: deque[Any] = deque()
        self.default_backlog: int | None = backlog
        self.inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.delete_results: deque[BaseException | None] = deque()
        self.unlock_results: deque[BaseException | None] = deque()

        self.calls: list[tuple[str, str | None]] = []
        self.receive_times: list[float] = []

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def feed(self, *items: Any) -> None:
        for item in items:
            self.inbox.put_nowait(item)

    def snapshot(self, backlog: int) -> QueueSnapshot:
        return QueueSnapshot.from_raw(
            self.queue_name,
            {"CountDetails": {"ActiveMessageCount": backlog}},
        )

    async def get_queue(self, queue_name: str) -> QueueSnapshot | None:
        self.calls.append(("get_queue", queue_name))
        if self.lookups:
            item = self.lookups.popleft()
        elif self.default_backlog is None:
            item = None
        else:
            item = self.default_backlog
        if isinstance(item, BaseException):
            raise item
        if item is None:
            return None
        return self.snapshot(item)

    async def receive_message(self, queue_name: str) -> Message | None:
        self.calls.append(("receive_message", queue_name))
        self.receive_times.append(time.monotonic())
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def unlock_message(self, message: Message) -> None:
        self.calls.append(("unlock_message", message.message_id))
        result = self.unlock_results.popleft() if self.unlock_results else None
        if result is not None:
            raise result

    async def delete_message(self, message: Message) -> None:
        self.calls.append(("delete_message", message.message_id))
        result = self.delete_results.popleft() if self.delete_results else None
        if result is not None:
            raise result


def make_message(body: Any = "payload", **kwargs: Any) -> Message:
    kwargs.setdefault("queue_name", "orders")
    kwargs.setdefault("lock_token", "token")
    return Message(body=body, **kwargs)


async def wait_until(
    predicate: Callable[[], bool], *, timeout: float = 2.0, interval: float = 0.005
) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


async def settle(rounds: int = 20) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fast_config() -> WatcherConfig:
    # Long monitor interval: tests drive ticks by hand.
    return WatcherConfig(
        receive_retry_delay=0.01,
        monitor_interval=3600.0,
        spinup_stagger=0.02,
        stop_timeout=1.0,
        retry=RetryPolicy(attempts=2, base_delay_seconds=0.0, max_delay_seconds=0.0),
    )


@pytest.fixture
def scripted_client() -> ScriptedClient:
    return ScriptedClient()


@pytest.fixture
def helpers() -> Any:
    class _Helpers:
        make_message = staticmethod(make_message)
        wait_until = staticmethod(wait_until)
        settle = staticmethod(settle)

    return _Helpers


@pytest_asyncio.fixture
async def fake_redis() -> AsyncIterator[FakeRedis]:
    client = FakeRedis(decode_responses=False)
    try:
        yield client
    finally:
        await client.aclose()

