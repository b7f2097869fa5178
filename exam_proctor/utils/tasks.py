import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """
    Tracks fire-and-forget coroutines.

    Holds a strong reference to every task until it finishes so the loop
    cannot garbage-collect it mid-flight, and logs failures instead of
    letting them surface as "exception was never retrieved".
    """

    def __init__(self, name: str = "background"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, label: str = "task") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(f"{self.name}:{label}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {task.get_name()} failed: {exc!r}")

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every tracked task (including ones spawned meanwhile) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
