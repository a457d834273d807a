from __future__ import annotations

"""
In-process background task runner.

Variant generation and opportunistic backups run out-of-band from the upload
request. `BackgroundRunner.submit` schedules a coroutine as a tracked
`asyncio.Task`; failures are logged (the coroutines record their own outcome
in the registry). `drain()` waits for everything in flight, which the app
lifespan calls on shutdown and tests call to make background work observable.
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundRunner:
    def __init__(self, *, name: str = "background") -> None:
        self.name = name
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, coro: Coroutine[Any, Any, Any], *, label: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=label or f"{self.name}-task")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("Background task cancelled", extra={"task": task.get_name()})
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed: %r", exc,
                extra={"task": task.get_name()},
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait until no tasks are in flight (tasks may enqueue follow-ups)."""
        while self._tasks:
            pending = list(self._tasks)
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                logger.warning("Background drain timed out with %s task(s) pending", len(not_done))
                return

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


__all__ = ["BackgroundRunner"]
