"""Queue transports for sbwatcher."""

from sbwatcher.client.base import BaseQueueClient
from sbwatcher.client.memory import InMemoryQueueClient
from sbwatcher.client.redis import RedisQueueClient

__all__ = [
    "BaseQueueClient",
    "InMemoryQueueClient",
    "RedisQueueClient",
]
