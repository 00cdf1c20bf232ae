"""sbwatcher - Adaptive-concurrency consumer for peek-lock message queues."""

from sbwatcher._version import __version__
from sbwatcher.client import (
    BaseQueueClient,
    InMemoryQueueClient,
    RedisQueueClient,
)
from sbwatcher.engine import (
    CompletionCallback,
    QueueWatcher,
    RetryPolicy,
    WatcherConfig,
    WatcherInfo,
)
from sbwatcher.errors import (
    ErrorStatus,
    MessageNotFoundError,
    QueueClientError,
    QueueNotFoundError,
    WatcherError,
)
from sbwatcher.events import DebugEvent
from sbwatcher.models import Message, QueueSnapshot

__all__ = [
    "BaseQueueClient",
    "CompletionCallback",
    "DebugEvent",
    "ErrorStatus",
    "InMemoryQueueClient",
    "Message",
    "MessageNotFoundError",
    "QueueClientError",
    "QueueNotFoundError",
    "QueueSnapshot",
    "QueueWatcher",
    "RedisQueueClient",
    "RetryPolicy",
    "WatcherConfig",
    "WatcherError",
    "WatcherInfo",
    "__version__",
]
