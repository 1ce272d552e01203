"""Debounced partial saves of an analysis record.

``trigger_save`` coalesces rapid edits: only the last payload is written,
``debounce`` seconds after the last call. ``save_now`` writes immediately and
raises to its caller. Once disposed, nothing is written.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from shiprates.services.analysis_store import AnalysisStore
from shiprates.services.timers import TimerManager

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.5

_SAVE_TIMER = "auto_save"


class AutoSaveController:
    """Debounced writer for one analysis."""

    def __init__(
        self,
        store: AnalysisStore,
        analysis_id: str,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        on_error: Callable[[BaseException], Any] | None = None,
        on_success: Callable[[], Any] | None = None,
        timers: TimerManager | None = None,
    ) -> None:
        self.store = store
        self.analysis_id = analysis_id
        self.debounce = debounce
        self._on_error = on_error
        self._on_success = on_success
        self._owns_timers = timers is None
        self._timers = timers or TimerManager()
        self._pending_fields: dict[str, Any] | None = None
        self._active = True
        self.saves = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def has_pending(self) -> bool:
        return self._timers.is_armed(_SAVE_TIMER)

    def trigger_save(self, fields: Mapping[str, Any]) -> None:
        """Schedule a save of ``fields``, replacing any save not yet fired."""
        if not self._active:
            logger.debug("auto_save ignored analysis=%s reason=disposed", self.analysis_id)
            return
        self._pending_fields = dict(fields)
        self._timers.arm(_SAVE_TIMER, self.debounce, self._fire)

    async def _fire(self) -> None:
        fields, self._pending_fields = self._pending_fields, None
        if not self._active or fields is None:
            return
        try:
            await self._write(fields)
        except Exception as e:
            logger.error("auto_save_failed analysis=%s error=%s", self.analysis_id, e)
            if self._active and self._on_error is not None:
                self._on_error(e)
            return
        if self._on_success is not None:
            self._on_success()

    async def save_now(self, fields: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Write immediately, cancelling any debounced save.

        With no ``fields`` the pending debounced payload (if any) is written.

        Raises:
            RuntimeError: If the controller was disposed.
            Whatever the store raises.
        """
        if not self._active:
            raise RuntimeError("AutoSaveController has been disposed")
        self._timers.cancel(_SAVE_TIMER)
        payload = dict(fields) if fields is not None else (self._pending_fields or {})
        self._pending_fields = None
        status = await self._write(payload)
        if self._on_success is not None:
            self._on_success()
        return status

    async def _write(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        status = await asyncio.to_thread(self.store.update_analysis, self.analysis_id, fields)
        self.saves += 1
        logger.info("auto_save analysis=%s fields=%s", self.analysis_id, ",".join(sorted(fields)))
        return status

    def dispose(self) -> None:
        """Cancel pending saves; later triggers are ignored."""
        self._active = False
        self._pending_fields = None
        if self._owns_timers:
            self._timers.dispose()
        else:
            self._timers.cancel(_SAVE_TIMER)
