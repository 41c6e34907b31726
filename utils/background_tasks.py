"""
Tracked fire-and-forget tasks.
"""
import asyncio
import logging
from typing import Awaitable, Dict


logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Keeps references to spawned tasks until they finish, and cancels them on close."""

    def __init__(self, name: str):
        self.name = name
        self._tasks: Dict[int, asyncio.Task] = {}
        self._counter = 0

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, label: str = "") -> asyncio.Task:
        """
        Run a coroutine in the background.

        Exceptions are logged when the task finishes; nothing is re-raised.
        """
        self._counter += 1
        task_id = self._counter
        task = asyncio.ensure_future(coro)
        self._tasks[task_id] = task

        def _finished(done: asyncio.Task) -> None:
            self._tasks.pop(task_id, None)
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                logger.error(
                    f"[{self.name}] Background task '{label}' failed: {error}",
                    exc_info=(type(error), error, error.__traceback__)
                )

        task.add_done_callback(_finished)
        logger.debug(f"[{self.name}] Spawned background task '{label}'", extra={"active": len(self._tasks)})
        return task

    async def wait(self) -> None:
        """Wait for every current task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending tasks and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
