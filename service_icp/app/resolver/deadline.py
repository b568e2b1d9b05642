"""
Bounds caller-visible latency without cancelling the work being raced.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional, TypeVar, TYPE_CHECKING

from shared.errors import DeadlineExceededError
from shared.logging import get_logger

from ..caching.background import BackgroundTasks

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


T = TypeVar("T")


class DeadlineGuard:
    """
    Races work against a timer.

    The work runs as a tracked background task. If the timer fires first
    the caller gets DeadlineExceededError while the task keeps running, so
    its cache writes still land. If the work finishes first its result or
    exception is delivered unchanged.
    """

    def __init__(
        self,
        background: BackgroundTasks,
        timeout: float = 10.0,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.background = background
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("icp.deadline")

    async def run(
        self,
        work: Awaitable[T],
        *,
        name: str,
        timeout: Optional[float] = None,
        mode: str = "lookup",
    ) -> T:
        budget = self.timeout if timeout is None else timeout
        task = self.background.spawn(_await(work), name=name, report_errors=False)

        done, _ = await asyncio.wait({task}, timeout=budget)
        if task in done:
            return task.result()

        # Nobody will observe the result now, so failures get logged instead
        self.background.report_failures(task)
        if self.metrics:
            self.metrics.increment_counter("deadline_exceeded_total", mode=mode)
        self.logger.warning("Deadline exceeded", task=name, deadline_seconds=budget)
        raise DeadlineExceededError(details={"deadline_seconds": budget})


async def _await(work: Awaitable[Any]) -> Any:
    return await work
