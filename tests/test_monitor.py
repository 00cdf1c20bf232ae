from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest
from sbwatcher.engine.watcher import QueueWatcher
from sbwatcher.errors import ErrorStatus, QueueClientError


def _watcher(client, config, concurrency: int) -> QueueWatcher:
    return QueueWatcher(
        client,
        "orders",
        concurrency,
        handler=lambda message, done: done(),
        config=config,
    )


@pytest.mark.asyncio
async def test_backlog_growth_scales_up_without_stagger(
    scripted_client, fast_config, helpers
) -> None:
    scripted_client.default_backlog = 0
    watcher = _watcher(scripted_client, fast_config, concurrency=5)
    await watcher.start()
    try:
        await helpers.wait_until(lambda: scripted_client.count("receive_message") == 1)
        assert watcher.state.active_workers == 1

        scripted_client.lookups.append(8)
        await watcher.monitor.tick()

        assert watcher.state.active_workers == 5
        assert watcher.state.desired_concurrency == 5
        assert watcher.state.queue_snapshot.active_message_count == 8
        await helpers.wait_until(lambda: scripted_client.count("receive_message") == 5)

        new_receives = scripted_client.receive_times[1:]
        # Stagger would spread these by at least 3 * spinup_stagger.
        assert max(new_receives) - min(new_receives) < fast_config.spinup_stagger
    finally:
        await watcher.stop(timeout=0.05)


@pytest.mark.asyncio
async def test_empty_backlog_lowers_desired_but_keeps_idle_workers(
    scripted_client, fast_config, helpers
) -> None:
    scripted_client.default_backlog = 4
    watcher = _watcher(scripted_client, fast_config, concurrency=4)
    errors: list = []
    watcher.on_error(errors.append)
    await watcher.start()
    try:
        await helpers.wait_until(lambda: scripted_client.count("receive_message") == 4)

        scripted_client.lookups.append(0)
        await watcher.monitor.tick()
        assert watcher.state.desired_concurrency == 1

        # Every loop goes back to polling.
        scripted_client.feed(None, None, None, None)
        await helpers.wait_until(lambda: scripted_client.count("receive_message") == 8)

        assert watcher.state.active_workers == 4
        assert errors == []
    finally:
        await watcher.stop(timeout=0.05)


@pytest.mark.asyncio
async def test_backlog_below_active_retires_surplus_workers(
    scripted_client, fast_config, helpers
) -> None:
    scripted_client.default_backlog = 4
    watcher = _watcher(scripted_client, fast_config, concurrency=4)
    errors: list = []
    watcher.on_error(errors.append)
    await watcher.start()
    try:
        await helpers.wait_until(lambda: scripted_client.count("receive_message") == 4)

        scripted_client.lookups.append(2)
        await watcher.monitor.tick()
        assert watcher.state.desired_concurrency == 2
        # Nothing is interrupted mid-receive.
        assert watcher.state.active_workers == 4

        # Let every loop finish its current (empty) receive.
        scripted_client.feed(None, None, None, None)
        await helpers.wait_until(lambda: watcher.state.active_workers == 2)
        await helpers.wait_until(lambda: scripted_client.count("receive_message") == 6)

        assert errors == []
    finally:
        await watcher.stop(timeout=0.05)


@pytest.mark.asyncio
async def test_large_backlog_cancels_pending_scale_down(
    scripted_client, fast_config, helpers
) -> None:
    scripted_client.default_backlog = 4
    watcher = _watcher(scripted_client, fast_config, concurrency=4)
    await watcher.start()
    try:
        await helpers.wait_until(lambda: scripted_client.count("receive_message") == 4)

        scripted_client.lookups.extend([2, 10])
        await watcher.monitor.tick()
        await watcher.monitor.tick()
        assert watcher.state.desired_concurrency == 4

        scripted_client.feed(None, None, None, None)
        await helpers.wait_until(lambda: scripted_client.count("receive_message") == 8)
        assert watcher.state.active_workers == 4
    finally:
        await watcher.stop(timeout=0.05)


@pytest.mark.asyncio
async def test_smaller_backlog_caps_desired_concurrency(
    scripted_client, fast_config, helpers
) -> None:
    scripted_client.default_backlog = 5
    watcher = _watcher(scripted_client, fast_config, concurrency=5)
    await watcher.start()
    try:
        scripted_client.lookups.append(2)
        launched = await _tick_and_count(watcher)

        assert launched == 0
        assert watcher.state.desired_concurrency == 2
    finally:
        await watcher.stop(timeout=0.05)


async def _tick_and_count(watcher: QueueWatcher) -> int:
    before = watcher.state.active_workers
    await watcher.monitor.tick()
    return max(0, watcher.state.active_workers - before)


@pytest.mark.asyncio
async def test_backlog_within_limit_does_not_scale_up(
    scripted_client, fast_config
) -> None:
    scripted_client.default_backlog = 0
    watcher = _watcher(scripted_client, fast_config, concurrency=5)
    await watcher.start()
    try:
        scripted_client.lookups.append(3)
        launched = await _tick_and_count(watcher)

        assert launched == 0
        assert watcher.state.active_workers == 1
        assert watcher.state.desired_concurrency == 1
    finally:
        await watcher.stop(timeout=0.05)


@pytest.mark.asyncio
async def test_missing_queue_on_tick_publishes_and_keeps_counts(
    scripted_client, fast_config
) -> None:
    scripted_client.default_backlog = 2
    watcher = _watcher(scripted_client, fast_config, concurrency=3)
    errors: list = []
    watcher.on_error(errors.append)
    await watcher.start()
    try:
        snapshot = watcher.state.queue_snapshot
        scripted_client.default_backlog = None
        await watcher.monitor.tick()

        assert [e.status for e in errors] == [ErrorStatus.QUEUE_NOT_FOUND]
        assert watcher.state.active_workers == 2
        assert watcher.state.desired_concurrency == 2
        assert watcher.state.queue_snapshot is snapshot
    finally:
        await watcher.stop(timeout=0.05)


@pytest.mark.asyncio
async def test_lookup_failure_on_tick_publishes_start_error(
    scripted_client, fast_config
) -> None:
    watcher = _watcher(scripted_client, fast_config, concurrency=3)
    errors: list = []
    watcher.on_error(errors.append)
    await watcher.start()
    try:
        boom = QueueClientError("unreachable")
        scripted_client.lookups.extend([boom] * (fast_config.retry.attempts + 1))
        await watcher.monitor.tick()

        assert [e.status for e in errors] == [ErrorStatus.START_ERROR]
        assert errors[0].cause is boom
        assert watcher.state.active_workers == 1
    finally:
        await watcher.stop(timeout=0.05)


@pytest.mark.asyncio
async def test_tick_before_start_is_a_noop(scripted_client, fast_config) -> None:
    watcher = _watcher(scripted_client, fast_config, concurrency=3)

    await watcher.monitor.tick()

    assert scripted_client.count("get_queue") == 0
    assert watcher.monitor.ticks == 0


@pytest.mark.asyncio
async def test_monitor_runs_periodically_until_stopped(
    scripted_client, fast_config, helpers
) -> None:
    config = replace(fast_config, monitor_interval=0.02)
    watcher = _watcher(scripted_client, config, concurrency=2)
    debugs: list = []
    watcher.on_debug(debugs.append)
    await watcher.start()
    try:
        await helpers.wait_until(lambda: watcher.monitor.ticks >= 3)
    finally:
        await watcher.stop(timeout=0.05)

    ticks = watcher.monitor.ticks
    await asyncio.sleep(0.06)

    assert watcher.monitor.ticks == ticks
    assert [d.message for d in debugs].count("starting concurrency checker") == 1
    # Initial lookup plus one per tick.
    assert scripted_client.count("get_queue") == ticks + 1


@pytest.mark.asyncio
async def test_first_tick_waits_one_interval(scripted_client, fast_config) -> None:
    config = replace(fast_config, monitor_interval=0.1)
    watcher = _watcher(scripted_client, config, concurrency=2)
    await watcher.start()
    try:
        await asyncio.sleep(0.03)
        assert watcher.monitor.ticks == 0
        assert scripted_client.count("get_queue") == 1
    finally:
        await watcher.stop(timeout=0.05)
