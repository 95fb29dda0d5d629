"""
In-process fire-and-forget task handoff.

The caller of a stage does not wait for the next stage. Tasks are tracked so
that shutdown (and tests) can drain them, and failures are logged instead of
disappearing with an unawaited coroutine. Anything lost in a crash is picked
up again by PipelineOrchestrator.recover_stuck().
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Set

logger = logging.getLogger(__name__)


class TaskDispatcher:
    """Spawns coroutines as asyncio tasks and keeps references until they finish."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, func: Callable[..., Awaitable[Any]], *args: Any, name: str = "") -> asyncio.Task:
        task = asyncio.create_task(func(*args), name=name or getattr(func, "__name__", "task"))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Task {task.get_name()} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Task {task.get_name()} failed: {error}", exc_info=error)

    async def drain(self) -> None:
        """Wait until no task is pending, including tasks spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

