"""
Tracking for detached work that must outlive the request that started it.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional, Set, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class BackgroundTasks:
    """
    Holds strong references to detached asyncio tasks until they finish.

    Cache writes, token refreshes and the losing side of a deadline race are
    spawned here so they run to completion after the caller has its answer.
    ``drain`` waits for everything still pending and is called on shutdown.
    """

    def __init__(self, metrics: Optional["MetricsCollector"] = None):
        self.metrics = metrics
        self.logger = get_logger("icp.background")
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of tasks not yet finished."""
        return len(self._tasks)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        name: str,
        report_errors: bool = True,
    ) -> asyncio.Task:
        """Schedule ``coro`` as a tracked task.

        Args:
            coro: Coroutine to run
            name: Task name used in logs and metrics
            report_errors: Log and count the task's exception when it fails.
                Pass False when a caller awaits this task and receives the
                failure itself; call ``report_failures`` later if the task
                ends up detached.

        Returns:
            The created task
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if report_errors:
            self.report_failures(task)
        return task

    def report_failures(self, task: asyncio.Future) -> None:
        """Log ``task``'s exception once it finishes, if it has one."""
        task.add_done_callback(self._log_failure)

    def _log_failure(self, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return

        name = task.get_name() if isinstance(task, asyncio.Task) else "future"
        self.logger.warning(
            "Background task failed",
            task=name,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        if self.metrics:
            self.metrics.increment_counter(
                "background_task_failures_total",
                task=name.split(":", 1)[0],
            )

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for pending tasks, including ones spawned while draining.

        Returns the number of tasks still running when ``timeout`` expired.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)

        if self._tasks:
            self.logger.warning("Background tasks still running after drain", pending=len(self._tasks))
        return len(self._tasks)
