"""Named timers bound to the running event loop.

Debounce, idle-flush and poll timers all go through a TimerManager so their
lifetime is explicit: re-arming a name replaces the previous timer, and
``dispose()`` cancels everything the manager owns (pending timers and any
async callbacks they started). A disposed manager refuses to arm again.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class TimerManager:
    """Arm, cancel and fire-once/interval timers by name."""

    def __init__(self) -> None:
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def is_armed(self, name: str) -> bool:
        return name in self._handles

    def arm(self, name: str, delay: float, callback: Callable[..., Any], *args: Any) -> None:
        """Fire ``callback(*args)`` once after ``delay`` seconds.

        Arming an already-armed name cancels the earlier timer first.

        Raises:
            RuntimeError: If the manager was disposed.
        """
        self._check_usable()
        self.cancel(name)
        loop = asyncio.get_running_loop()
        self._handles[name] = loop.call_later(delay, self._fire_once, name, callback, args)

    def arm_interval(
        self,
        name: str,
        interval: float,
        callback: Callable[..., Any],
        *args: Any,
    ) -> None:
        """Fire ``callback(*args)`` every ``interval`` seconds until cancelled."""
        self._check_usable()
        self.cancel(name)
        loop = asyncio.get_running_loop()
        self._handles[name] = loop.call_later(
            interval, self._fire_interval, name, interval, callback, args
        )

    def cancel(self, name: str) -> bool:
        """Cancel a pending timer. Returns True if one was armed."""
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        """Cancel every pending timer and every callback task still running."""
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def dispose(self) -> None:
        self.cancel_all()
        self._disposed = True

    def _check_usable(self) -> None:
        if self._disposed:
            raise RuntimeError("TimerManager has been disposed")

    def _fire_once(self, name: str, callback: Callable[..., Any], args: tuple) -> None:
        self._handles.pop(name, None)
        self._invoke(name, callback, args)

    def _fire_interval(
        self,
        name: str,
        interval: float,
        callback: Callable[..., Any],
        args: tuple,
    ) -> None:
        # Re-arm before invoking so the callback may cancel its own interval
        loop = asyncio.get_running_loop()
        self._handles[name] = loop.call_later(
            interval, self._fire_interval, name, interval, callback, args
        )
        self._invoke(name, callback, args)

    def _invoke(self, name: str, callback: Callable[..., Any], args: tuple) -> None:
        try:
            result = callback(*args)
        except Exception:
            logger.exception("timer_callback_failed name=%s", name)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._on_task_done(name, t))

    def _on_task_done(self, name: str, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("timer_callback_failed name=%s error=%s", name, exc)
