"""Bounded-concurrency task execution with cooperative cancellation.

Every task gets its own thread, but only ``max_workers`` of them may hold a
semaphore slot and execute at the same time. Results come back in task
order no matter which task finishes first.
"""

import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Sequence, TypeVar

from .errors import CancellationError
from .utils.logging import get_logger

logger = get_logger("worker_pool")

T = TypeVar("T")

# Polling interval while waiting for a slot, so cancellation is noticed promptly
_ACQUIRE_POLL_SECONDS = 0.05


class CancelContext:
    """Cancellation signal shared by a run and all of its tasks.

    Cancelled either explicitly through ``cancel`` or implicitly once the
    optional deadline passes.
    """

    def __init__(self, timeout: float | None = None):
        self._event = threading.Event()
        self._reason = ""
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self, reason: str = "run cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    @property
    def error(self) -> CancellationError | None:
        """The cancellation cause, or None while the context is live."""
        if not self.cancelled:
            return None
        return CancellationError(self._reason)

    def check(self) -> None:
        """Raise CancellationError if the context has been cancelled."""
        error = self.error
        if error is not None:
            raise error

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled meanwhile."""
        if self._deadline is not None:
            timeout = min(timeout, max(self._deadline - time.monotonic(), 0.0))
        self._event.wait(timeout)
        return self.cancelled


Task = Callable[[CancelContext], Any]


@dataclass
class Result(Generic[T]):
    """Outcome of one task."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def default_max_workers() -> int:
    return os.cpu_count() or 1


class WorkerPool:
    """Runs independent tasks with at most ``max_workers`` executing at once."""

    def __init__(self, max_workers: int = 0):
        self.max_workers = max_workers if max_workers > 0 else default_max_workers()

    def run(self, ctx: CancelContext, tasks: Sequence[Task]) -> list[Result]:
        """Execute all tasks and wait for every one of them.

        Args:
            ctx: Shared cancellation context passed to each task
            tasks: Callables taking the context and returning a value

        Returns:
            One Result per task, at the task's index
        """
        if not tasks:
            return []

        semaphore = threading.BoundedSemaphore(self.max_workers)
        results: list[Result] = [Result() for _ in tasks]

        def execute(index: int, task: Task) -> None:
            while not semaphore.acquire(timeout=_ACQUIRE_POLL_SECONDS):
                if ctx.cancelled:
                    results[index] = Result(error=ctx.error)
                    return
            try:
                if ctx.cancelled:
                    results[index] = Result(error=ctx.error)
                    return
                results[index] = Result(value=task(ctx))
            except Exception as e:
                logger.debug(f"Task {index} failed: {e}")
                results[index] = Result(error=e)
            finally:
                semaphore.release()

        with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="worker") as executor:
            futures = [executor.submit(execute, i, task) for i, task in enumerate(tasks)]
            for future in futures:
                future.result()

        return results
