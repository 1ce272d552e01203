"""Detached background tasks with observable failure.

Fire-and-forget persistence still needs two guarantees: a failure is
logged (and handed to an optional callback) instead of vanishing, and
shutdown can wait for every outstanding write so the last batch is not lost.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[BaseException], None]


class BackgroundTasks:
    """Spawns detached asyncio tasks and joins them at shutdown."""

    def __init__(self, name: str = "background") -> None:
        self._name = name
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        name: str | None = None,
        on_error: ErrorCallback | None = None,
    ) -> asyncio.Task[Any]:
        """Schedule ``coro`` without awaiting it.

        Exceptions raised by the task are logged and passed to ``on_error``;
        they never propagate to the spawner.
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, on_error))
        return task

    def _on_done(self, task: asyncio.Task[Any], on_error: ErrorCallback | None) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("%s task cancelled name=%s", self._name, task.get_name())
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("%s task failed name=%s error=%s", self._name, task.get_name(), exc)
        if on_error is not None:
            try:
                on_error(exc)
            except Exception as cb_exc:
                logger.error("%s on_error callback failed: %s", self._name, cb_exc)

    async def join(self) -> None:
        """Wait for every task spawned so far (and any they spawn)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.join()
