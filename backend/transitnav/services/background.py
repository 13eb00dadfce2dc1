"""Fire-and-forget side effects that must never block or fail a request."""

import asyncio
import logging
from typing import Awaitable, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRegistry:
    """Schedules side-effect coroutines and keeps them referenced until done.

    Failures are logged and absorbed. ``drain()`` waits for everything that is
    still running, which the app lifespan and the tests use.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: str = "background") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, name))
        return task

    def _finished(self, task: asyncio.Task, name: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task {name} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background task {name} failed: {type(exc).__name__}: {exc}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for outstanding tasks, cancelling whatever outlives ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} background task(s) on drain")
            await asyncio.gather(*still_running, return_exceptions=True)
