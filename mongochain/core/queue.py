"""
Bounded-concurrency queue for MongoDB operations.

Index builds are expensive and MongoDB limits how many can run at once on a
collection, so index drops and creates are pushed through a small worker budget
instead of being fired all at once.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from mongochain.log.logging import logger

T = TypeVar("T")


class OperationTimeoutError(Exception):
    """Raised when a queued operation exceeds its timeout."""

    def __init__(self, timeout: float):
        super().__init__(f"Operation timeout after {timeout}s")
        self.timeout = timeout


@dataclass
class QueueStats:
    """Snapshot of queue counters."""

    pending: int
    running: int
    completed: int
    failed: int


def calculate_backoff_delay(attempt: int, base_delay: float, max_delay: float = 16.0) -> float:
    """
    Calculate exponential backoff delay for a given attempt.

    Args:
        attempt: Current attempt number (1-indexed).
        base_delay: Base delay in seconds.
        max_delay: Maximum delay in seconds.

    Returns:
        Delay in seconds before next retry.
    """
    delay = base_delay * (2 ** (attempt - 1))
    return min(delay, max_delay)


class OperationQueue:
    """
    Runs async operations with a fixed concurrency budget.

    Submission order is not preserved once more than one worker slot exists;
    callers only rely on every task of a batch finishing before ``run_all`` returns.
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        default_timeout: float | None = 30.0,
        retry_attempts: int = 0,
        retry_delay: float = 1.0,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.max_concurrent = max_concurrent
        self.default_timeout = default_timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._pending = 0
        self._running = 0
        self._completed = 0
        self._failed = 0

    @classmethod
    def from_settings(cls, settings: Any) -> "OperationQueue":
        """Build a queue from the index queue settings."""
        return cls(
            max_concurrent=settings.index_queue_concurrency,
            default_timeout=settings.index_queue_timeout,
            retry_attempts=settings.index_queue_retry_attempts,
            retry_delay=settings.index_queue_retry_delay,
        )

    async def submit(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout: float | None = None,
    ) -> T:
        """
        Run one operation once a worker slot is free.

        Args:
            operation: Zero-argument coroutine factory.
            timeout: Per-task timeout in seconds (defaults to the queue timeout).

        Returns:
            The operation's result.

        Raises:
            OperationTimeoutError: If the operation exceeds its timeout.
        """
        task_timeout = self.default_timeout if timeout is None else timeout
        self._pending += 1
        async with self._semaphore:
            self._pending -= 1
            self._running += 1
            try:
                result = await self._execute(operation, task_timeout)
            except BaseException:
                self._failed += 1
                raise
            else:
                self._completed += 1
                return result
            finally:
                self._running -= 1

    async def _execute(self, operation: Callable[[], Awaitable[T]], timeout: float | None) -> T:
        max_attempts = self.retry_attempts + 1

        for attempt in range(1, max_attempts + 1):
            try:
                if timeout is None:
                    return await operation()
                return await asyncio.wait_for(operation(), timeout=timeout)

            except asyncio.TimeoutError as e:
                logger.error(
                    "Queued operation timed out",
                    event_type="queue_task_timeout",
                    timeout=timeout,
                )
                raise OperationTimeoutError(timeout) from e

            except Exception as e:
                if attempt >= max_attempts:
                    raise

                delay = calculate_backoff_delay(attempt, self.retry_delay)
                logger.warning(
                    "Queued operation failed, retrying",
                    event_type="queue_task_retry",
                    attempt=attempt,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

        raise RuntimeError("unreachable")

    async def run_all(self, operations: Iterable[Callable[[], Awaitable[T]]]) -> list[T]:
        """
        Submit a batch and wait for every task to finish.

        Raises:
            The first failure of the batch, after all tasks have completed.
        """
        results = await asyncio.gather(
            *(self.submit(operation) for operation in operations),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    def stats(self) -> QueueStats:
        """Get current queue statistics."""
        return QueueStats(
            pending=self._pending,
            running=self._running,
            completed=self._completed,
            failed=self._failed,
        )
