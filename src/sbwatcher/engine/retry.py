"""Bounded exponential retry for transport calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sbwatcher.errors import is_terminal

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for lookup/unlock/delete calls."""

    attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 4.0

    def delay_for(self, attempt: int) -> float:
        base = max(0.0, self.base_delay_seconds)
        return min(max(base, self.max_delay_seconds), base * (2**attempt))


class RetryExhaustedError(Exception):
    """Raised when every attempt failed with a retryable error."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


async def call_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
) -> T:
    """
    Run `func`, retrying transient failures.

    Terminal errors (see `is_terminal`) are re-raised immediately. After
    `policy.attempts` extra attempts the last error is wrapped in
    `RetryExhaustedError`.
    """
    attempts = max(0, policy.attempts)

    for attempt in range(attempts + 1):
        try:
            return await func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_terminal(e):
                raise
            if attempt >= attempts:
                raise RetryExhaustedError(operation, attempt + 1, e) from e
            delay = policy.delay_for(attempt)
            logger.debug(
                "%s failed (attempt %s/%s), retrying in %.3fs: %s",
                operation,
                attempt + 1,
                attempts + 1,
                delay,
                e,
            )
            if delay > 0:
                await asyncio.sleep(delay)

    raise AssertionError("unreachable")
