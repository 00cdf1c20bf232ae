"""
Example sbwatcher consumer.

Demonstrates:
- Sync and async handlers calling done()
- Failing a message so it is unlocked and redelivered
- Subscribing to error and debug events

Run with the CLI:
    sbwatcher send '{"order_id": 1}' -q orders --create
    sbwatcher watch examples/consumer.py:handle -q orders -c 10

Or standalone against an in-memory queue:
    python examples/consumer.py
"""

import asyncio
import logging
import random

from sbwatcher import InMemoryQueueClient, QueueWatcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def handle(message, done):
    """Process one order; roughly one in ten fails and is redelivered."""
    await asyncio.sleep(random.uniform(0.05, 0.2))
    if random.random() < 0.1:
        done(RuntimeError(f"flaky processing for {message.message_id}"))
        return
    logger.info(
        f"Processed order {message.body.get('order_id')} "
        f"(delivery {message.delivery_count})"
    )
    done()


async def main() -> None:
    client = InMemoryQueueClient()
    await client.create_queue("orders")
    for order_id in range(50):
        await client.send_message("orders", {"order_id": order_id})

    watcher = QueueWatcher(client, "orders", 8, handler=handle)
    watcher.on_error(lambda err: logger.error(f"{err.status}: {err.message}"))
    watcher.on_debug(lambda event: logger.debug(event.message))

    await watcher.start()
    while True:
        snapshot = await client.get_queue("orders")
        if snapshot.active_message_count == 0 and not client.locked_count("orders"):
            break
        await asyncio.sleep(0.2)

    info = watcher.get_watcher_info()
    logger.info(f"Drained queue with {info.active_workers} worker(s) still polling")
    await watcher.stop()


if __name__ == "__main__":
    asyncio.run(main())
