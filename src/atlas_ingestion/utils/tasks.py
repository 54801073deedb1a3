"""Background task runner for work kicked off without awaiting it."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Coroutine, List, Set

from atlas_ingestion.utils.logging import get_logger

logger = get_logger("tasks")


@dataclass
class TaskFailure:
    """A background task that ended with an exception."""

    name: str
    error: BaseException
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BackgroundTaskRunner:
    """
    Spawn coroutines as tracked asyncio tasks.

    Failures are logged and pushed onto a bounded queue so callers (tests,
    operators, the service shutdown path) can inspect them. When the queue is
    full the oldest failure is dropped.
    """

    def __init__(self, max_failures: int = 100):
        """
        Initialize the runner.

        Args:
            max_failures: Capacity of the failure channel
        """
        self._tasks: Set[asyncio.Task] = set()
        self._failures: asyncio.Queue[TaskFailure] = asyncio.Queue(maxsize=max_failures)
        self._closed = False

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule *coro* on the running loop and track it until it finishes."""
        if self._closed:
            coro.close()
            raise RuntimeError("Background task runner is shut down")

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Spawned background task: {name}")
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task cancelled: {task.get_name()}")
            return

        error = task.exception()
        if error is None:
            return

        logger.error(
            f"Background task failed: {task.get_name()} - {error}",
            exc_info=(type(error), error, error.__traceback__),
        )
        if self._failures.full():
            dropped = self._failures.get_nowait()
            logger.warning(f"Failure channel full, dropping oldest failure: {dropped.name}")
        self._failures.put_nowait(TaskFailure(name=task.get_name(), error=error))

    def failures(self) -> List[TaskFailure]:
        """Drain and return every failure reported so far."""
        drained: List[TaskFailure] = []
        while not self._failures.empty():
            drained.append(self._failures.get_nowait())
        return drained

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    async def join(self) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight tasks and wait for them to unwind."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Background task runner stopped ({len(tasks)} task(s) cancelled)")
