"""sbwatcher Engine - Worker loops, completion and concurrency control."""

from sbwatcher.engine.completion import CompletionCallback, CompletionHandler
from sbwatcher.engine.monitor import ConcurrencyMonitor
from sbwatcher.engine.retry import RetryExhaustedError, RetryPolicy, call_with_retry
from sbwatcher.engine.state import WatcherInfo, WatcherState
from sbwatcher.engine.watcher import MessageHandler, QueueWatcher, WatcherConfig

__all__ = [
    # Watcher
    "QueueWatcher",
    "WatcherConfig",
    "MessageHandler",
    # Completion
    "CompletionCallback",
    "CompletionHandler",
    # Monitor
    "ConcurrencyMonitor",
    # Retry
    "RetryPolicy",
    "RetryExhaustedError",
    "call_with_retry",
    # State
    "WatcherState",
    "WatcherInfo",
]
