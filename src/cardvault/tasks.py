"""Bounded background task queue for work the caller does not wait on."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTaskQueue:
    """Runs fire-and-forget coroutines with bounded concurrency.

    submit() returns immediately; the caller gets no completion signal. A
    failing task is logged and does not affect other tasks. drain() waits for
    everything submitted so far, which shutdown code and tests rely on.
    """

    def __init__(self, max_concurrency: int = 5):
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, factory: Callable[[], Awaitable[Any]], name: str | None = None) -> bool:
        """Schedule factory() to run in the background.

        Returns:
            False if the queue is closed and the work was dropped.
        """
        if self._closed:
            logger.debug("Background queue closed, dropping %s", name or factory)
            return False
        task = asyncio.get_running_loop().create_task(self._run(factory, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, factory: Callable[[], Awaitable[Any]], name: str | None) -> None:
        async with self._semaphore:
            try:
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failed += 1
                logger.exception("Background task %s failed", name or "<unnamed>")
            else:
                self.completed += 1

    async def drain(self) -> None:
        """Wait until every submitted task (including ones they submit) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self, cancel: bool = False) -> None:
        """Stop accepting work and finish (or cancel) what is running."""
        self._closed = True
        if cancel:
            for task in list(self._tasks):
                task.cancel()
        await self.drain()
