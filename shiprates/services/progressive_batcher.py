"""Progressive persistence of rated shipments.

Completed shipments accumulate in memory and are written in batches, either
as soon as ``batch_size`` is reached or after ``batch_timeout`` seconds
without a new shipment. Writes run as background tasks so rating is never
blocked on the database; a lock keeps at most one write in flight so
batches land in order and are never interleaved.

    idle -> accumulating -> flushing -> idle
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from shiprates.services.analysis_store import AnalysisStore
from shiprates.services.background import BackgroundTasks
from shiprates.services.rate_lookup import CompletedShipment, rate_amount, rate_field
from shiprates.services.timers import TimerManager

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_TIMEOUT_SECONDS = 30.0

_IDLE_TIMER = "batch_idle"


class BatcherState(str, Enum):
    idle = "idle"
    accumulating = "accumulating"
    flushing = "flushing"


def shipment_rate_rows(analysis_id: str, completed: CompletedShipment) -> list[dict[str, Any]]:
    """One ``shipment_rates`` row per quote, indexed by the upload position."""
    shipment_data = completed.record.to_dict()
    rows = []
    for rate in completed.all_rates:
        published = rate_field(rate, "published_rate", "publishedRate")
        rows.append({
            "analysis_id": analysis_id,
            "shipment_index": completed.index,
            "carrier_config_id": rate_field(rate, "carrier_config_id", "carrierId", default=""),
            "account_name": rate_field(
                rate, "account_name", "carrierName", "accountName", default="Unknown"
            ),
            "carrier_type": rate_field(rate, "carrier_type", "carrierType", default="ups"),
            "service_code": rate_field(rate, "service_code", "serviceCode", default=""),
            "service_name": rate_field(
                rate, "service_name", "serviceName", "description", default=""
            ),
            "rate_amount": rate_amount(rate) or 0.0,
            "currency": rate_field(rate, "currency", default="USD"),
            "transit_days": rate_field(rate, "transit_days", "transitTime"),
            "is_negotiated": bool(
                rate.get("is_negotiated")
                or rate.get("rateType") == "negotiated"
                or rate.get("hasNegotiatedRates")
            ),
            "published_rate": float(published) if published is not None else None,
            "shipment_data": shipment_data,
        })
    return rows


class ProgressiveBatcher:
    """Accumulates completed shipments and persists them in batches.

    Attributes:
        analysis_id: Analysis the shipments belong to.
        batch_size: Pending count that triggers an immediate flush.
        batch_timeout: Idle seconds after which pending shipments are flushed.
    """

    def __init__(
        self,
        store: AnalysisStore,
        analysis_id: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_timeout: float = DEFAULT_BATCH_TIMEOUT_SECONDS,
        timers: TimerManager | None = None,
        background: BackgroundTasks | None = None,
        on_batch_saved: Callable[[int], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> None:
        self.store = store
        self.analysis_id = analysis_id
        self.batch_size = batch_size
        self.batch_timeout = batch_timeout
        self._timers = timers or TimerManager()
        self._background = background or BackgroundTasks(name="progressive_batcher")
        self._on_batch_saved = on_batch_saved
        self._on_error = on_error
        self._pending: list[CompletedShipment] = []
        self._write_lock = asyncio.Lock()
        self._writes_in_flight = 0
        self._disposed = False
        self.batches_saved = 0
        self.shipments_saved = 0

    @property
    def state(self) -> BatcherState:
        if self._writes_in_flight:
            return BatcherState.flushing
        if self._pending:
            return BatcherState.accumulating
        return BatcherState.idle

    def pending_count(self) -> int:
        return len(self._pending)

    def add_completed_shipment(self, completed: CompletedShipment) -> None:
        """Queue a shipment; flush at ``batch_size``, else restart the idle timer.

        Raises:
            RuntimeError: If the batcher has been disposed.
        """
        if self._disposed:
            raise RuntimeError(f"Batcher for analysis {self.analysis_id} is disposed")
        self._pending.append(completed)
        if len(self._pending) >= self.batch_size:
            self.flush()
            return
        self._timers.arm(_IDLE_TIMER, self.batch_timeout, self._on_idle)

    def _on_idle(self) -> None:
        logger.debug("batch_idle_flush analysis=%s pending=%d", self.analysis_id, len(self._pending))
        self.flush()

    def flush(self) -> asyncio.Task[None] | None:
        """Hand the pending shipments to a background write.

        Returns immediately. Returns the write task, or None if nothing
        was pending.
        """
        self._timers.cancel(_IDLE_TIMER)
        if not self._pending:
            return None
        batch, self._pending = self._pending, []
        self._writes_in_flight += 1
        return self._background.spawn(
            self._save_batch(batch),
            name=f"save_batch:{self.analysis_id}",
            on_error=self._report_error,
        )

    async def finalize_batching(self) -> None:
        """Flush any remainder and wait until every write has settled."""
        self.flush()
        await self._background.join()

    def dispose(self) -> None:
        """Cancel the idle timer and refuse further shipments."""
        self._disposed = True
        self._timers.cancel(_IDLE_TIMER)

    async def _save_batch(self, batch: list[CompletedShipment]) -> None:
        try:
            async with self._write_lock:
                rows = [
                    row
                    for completed in batch
                    for row in shipment_rate_rows(self.analysis_id, completed)
                ]
                inserted = await asyncio.to_thread(self.store.insert_shipment_rates, rows)
                await asyncio.to_thread(
                    self.store.append_processed_shipments,
                    self.analysis_id,
                    [completed.to_summary() for completed in batch],
                )
                self.batches_saved += 1
                self.shipments_saved += len(batch)
                logger.info(
                    "batch_saved analysis=%s shipments=%d rates=%d",
                    self.analysis_id,
                    len(batch),
                    inserted,
                )
        finally:
            self._writes_in_flight -= 1

        if self._on_batch_saved is not None:
            self._on_batch_saved(len(batch))

    def _report_error(self, exc: BaseException) -> None:
        logger.error("batch_save_failed analysis=%s error=%s", self.analysis_id, exc)
        if self._on_error is not None:
            self._on_error(exc)
