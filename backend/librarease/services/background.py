"""Detached side effects that must outlive the request that triggered them."""

import asyncio
import logging
from typing import Awaitable

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Fire-and-forget runner that keeps strong references and logs failures."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: str = "background") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._done)
        return task

    def _done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background task {task.get_name()} failed: {exc!r}")

    async def wait_idle(self) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        if not self._tasks:
            return
        try:
            await asyncio.wait_for(self.wait_idle(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Cancelling {len(self._tasks)} background task(s) still running")
            for task in list(self._tasks):
                task.cancel()
