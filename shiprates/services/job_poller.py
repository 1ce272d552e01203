"""Observe a background analysis until it reaches a terminal status.

The poller fetches the status record once on subscribe and then every
``interval`` seconds until the analysis is completed or failed. When a
status notifier is supplied, pushed updates are applied as they arrive and
polling remains as a fallback.

Updates can arrive out of order (a slow poll racing a push), so an update
is applied only if its ``revision`` is not lower than the one already held.
Records without revisions are ordered by ``updated_at``; failing both, the
last update observed wins.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import BaseModel, Field

from shiprates.db.models import TERMINAL_STATUSES
from shiprates.services.status_notifier import AnalysisStatusNotifier
from shiprates.services.timers import TimerManager

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0

_POLL_TIMER = "poll"

FetchStatus = Callable[[str], Awaitable[Mapping[str, Any]]]


class AnalysisJobStatus(BaseModel):
    """Status record of a background analysis."""

    id: str | None = None
    total_shipments: int = 0
    processed_shipments: int = 0
    status: str
    processing_metadata: dict[str, Any] = Field(default_factory=dict)
    total_savings: float = 0.0
    created_at: str | None = None
    updated_at: str | None = None
    revision: int | None = None

    @property
    def percentage(self) -> float:
        """Progress in percent, clamped to [0, 100]."""
        if self.total_shipments <= 0:
            return 100.0 if self.is_terminal else 0.0
        pct = self.processed_shipments / self.total_shipments * 100
        return max(0.0, min(100.0, pct))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def supersedes(self, current: "AnalysisJobStatus") -> bool:
        """True if this update may replace ``current``."""
        if self.revision is not None and current.revision is not None:
            return self.revision >= current.revision
        if self.updated_at and current.updated_at:
            # ISO8601 UTC strings order lexicographically
            return self.updated_at >= current.updated_at
        return True


class AnalysisJobPoller:
    """Tracks one analysis at a time by polling and optional push."""

    def __init__(
        self,
        fetch_status: FetchStatus,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        notifier: AnalysisStatusNotifier | None = None,
        on_update: Callable[[AnalysisJobStatus], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
        timers: TimerManager | None = None,
    ) -> None:
        self.fetch_status = fetch_status
        self.interval = interval
        self.notifier = notifier
        self._on_update = on_update
        self._on_error = on_error
        self._timers = timers or TimerManager()
        self._analysis_id: str | None = None
        self._status: AnalysisJobStatus | None = None
        self._error: str | None = None
        self._fetch_in_flight = False
        self._queue: asyncio.Queue[dict[str, Any]] | None = None
        self._push_task: asyncio.Task[None] | None = None
        self._done = asyncio.Event()
        self.polls = 0

    # -- observed state ----------------------------------------------------

    @property
    def analysis_id(self) -> str | None:
        return self._analysis_id

    @property
    def current(self) -> AnalysisJobStatus | None:
        return self._status

    @property
    def status(self) -> str | None:
        return self._status.status if self._status else None

    @property
    def processed(self) -> int:
        return self._status.processed_shipments if self._status else 0

    @property
    def total(self) -> int:
        return self._status.total_shipments if self._status else 0

    @property
    def percentage(self) -> float:
        return self._status.percentage if self._status else 0.0

    @property
    def is_terminal(self) -> bool:
        return self._status is not None and self._status.is_terminal

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def is_polling(self) -> bool:
        return self._timers.is_armed(_POLL_TIMER)

    # -- lifecycle ---------------------------------------------------------

    async def subscribe(self, analysis_id: str) -> None:
        """Start observing ``analysis_id``; returns after the first fetch."""
        self.unsubscribe()
        self._analysis_id = analysis_id
        self._status = None
        self._error = None
        # waiters from an earlier subscription follow the new analysis
        self._done.clear()

        if self.notifier is not None:
            self._queue = self.notifier.subscribe(analysis_id)
            self._push_task = asyncio.create_task(
                self._consume_pushes(analysis_id, self._queue),
                name=f"status_push:{analysis_id}",
            )

        await self._poll(analysis_id)
        if not self.is_terminal and self._analysis_id == analysis_id:
            self._timers.arm_interval(_POLL_TIMER, self.interval, self._on_tick, analysis_id)

    def unsubscribe(self) -> None:
        """Stop polling and push consumption for the current analysis."""
        self._timers.cancel(_POLL_TIMER)
        self._stop_push()
        self._analysis_id = None

    def dispose(self) -> None:
        self.unsubscribe()
        self._timers.dispose()

    async def wait_until_done(self, timeout: float | None = None) -> AnalysisJobStatus:
        """Wait for a terminal status.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        await asyncio.wait_for(self._done.wait(), timeout)
        if self._status is None:
            raise RuntimeError(f"Analysis {self._analysis_id} ended without a status record")
        return self._status

    # -- updates -----------------------------------------------------------

    def apply_update(self, raw: AnalysisJobStatus | Mapping[str, Any]) -> bool:
        """Apply a status record unless it is older than the current one.

        Returns:
            True if the update was applied.
        """
        update = raw if isinstance(raw, AnalysisJobStatus) else AnalysisJobStatus.model_validate(raw)
        if self._status is not None and not update.supersedes(self._status):
            logger.debug(
                "stale_status_ignored analysis=%s revision=%s current=%s",
                self._analysis_id,
                update.revision,
                self._status.revision,
            )
            return False

        self._status = update
        self._error = None
        if self._on_update is not None:
            self._on_update(update)
        if update.is_terminal:
            logger.info("analysis_terminal analysis=%s status=%s", self._analysis_id, update.status)
            self._timers.cancel(_POLL_TIMER)
            self._stop_push()
            self._done.set()
        return True

    def _on_tick(self, analysis_id: str) -> Awaitable[None] | None:
        if self._fetch_in_flight:
            logger.debug("poll_skipped analysis=%s reason=in_flight", analysis_id)
            return None
        return self._poll(analysis_id)

    async def _poll(self, analysis_id: str) -> None:
        self._fetch_in_flight = True
        try:
            raw = await self.fetch_status(analysis_id)
        except Exception as e:
            self._error = str(e) or type(e).__name__
            logger.warning("status_fetch_failed analysis=%s error=%s", analysis_id, e)
            if self._on_error is not None:
                self._on_error(e)
            return
        finally:
            self._fetch_in_flight = False
            self.polls += 1

        if self._analysis_id == analysis_id:
            self.apply_update(raw)

    async def _consume_pushes(self, analysis_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        while self._analysis_id == analysis_id and not self.is_terminal:
            event = await queue.get()
            if self._analysis_id != analysis_id:
                return
            self.apply_update(event["data"])

    def _stop_push(self) -> None:
        if self.notifier is not None and self._queue is not None and self._analysis_id:
            self.notifier.unsubscribe(self._analysis_id, self._queue)
        self._queue = None
        task, self._push_task = self._push_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
