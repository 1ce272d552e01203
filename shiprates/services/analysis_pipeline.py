"""End-to-end batch analysis: upload rows in, persisted rated shipments out.

``start_analysis`` runs in the foreground: it checks the input, creates the
analysis record and returns its id, raising on any failure. The rest runs
as a background task:

    map + validate (worker) -> rate lookup (bounded fan-out) -> markup
    -> progressive batcher -> progress record + status push
    -> finalize -> completed | failed

A failed quote for one shipment is recorded and the batch carries on, as
does a progress update that could not be saved. A carrier authentication
failure stops the batch and fails the analysis.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from shiprates.config import AppConfig
from shiprates.db.models import AnalysisStatus
from shiprates.errors import AuthenticationError, RateAnalysisError, ValidationError
from shiprates.services.analysis_store import AnalysisStore
from shiprates.services.background import BackgroundTasks
from shiprates.services.csv_worker import CsvWorker
from shiprates.services.markup import MarkupProfile
from shiprates.services.progressive_batcher import ProgressiveBatcher
from shiprates.services.rate_lookup import (
    CompletedShipment,
    RateLookupService,
    build_completed_shipment,
    rate_request_from_record,
)
from shiprates.services.shipment_mapping import ShipmentRecord, validate_mappings
from shiprates.services.status_notifier import AnalysisStatusNotifier

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """Runs rate analyses for uploaded shipment batches."""

    def __init__(
        self,
        store: AnalysisStore,
        rate_lookup: RateLookupService,
        config: AppConfig | None = None,
        worker: CsvWorker | None = None,
        notifier: AnalysisStatusNotifier | None = None,
        background: BackgroundTasks | None = None,
    ) -> None:
        self.store = store
        self.rate_lookup = rate_lookup
        self.config = config or AppConfig()
        self.worker = worker or CsvWorker(
            map_yield_every=self.config.worker.map_yield_every,
            validate_yield_every=self.config.worker.validate_yield_every,
        )
        self.notifier = notifier
        self.background = background or BackgroundTasks(name="analysis_pipeline")

    async def start_analysis(
        self,
        rows: Sequence[Mapping[str, Any]],
        mappings: Mapping[str, str | None],
        file_name: str | None = None,
        origin_zip_override: str | None = None,
        markup_profile_id: str | None = None,
        service_types: Sequence[str] | None = None,
        carrier_config_ids: Sequence[str] = (),
    ) -> str:
        """Create the analysis and schedule its processing.

        Returns:
            The new analysis id.

        Raises:
            ValidationError: Empty upload or incomplete column mapping.
            NotFoundError: If ``markup_profile_id`` does not exist.
        """
        if not rows:
            raise ValidationError(RateAnalysisError.from_code("E-2002").message)
        missing = validate_mappings(mappings, origin_zip_override)
        if missing:
            error = RateAnalysisError.from_code(
                "E-2001", reason="; ".join(missing)
            )
            raise ValidationError(error.message)

        profile = await self._resolve_profile(markup_profile_id)
        analysis_id = await asyncio.to_thread(
            self.store.create_analysis,
            total_shipments=len(rows),
            file_name=file_name,
            column_mappings=mappings,
            markup_profile_id=profile.id if profile else None,
        )

        self.background.spawn(
            self.run_analysis(
                analysis_id,
                rows,
                mappings,
                origin_zip_override=origin_zip_override,
                profile=profile,
                service_types=(
                    service_types
                    if service_types is not None
                    else self.config.pipeline.default_service_types
                ),
                carrier_config_ids=carrier_config_ids,
            ),
            name=f"analysis:{analysis_id}",
        )
        return analysis_id

    async def _resolve_profile(self, markup_profile_id: str | None) -> MarkupProfile | None:
        if markup_profile_id:
            record = await asyncio.to_thread(self.store.get_markup_profile, markup_profile_id)
        else:
            record = await asyncio.to_thread(self.store.get_default_markup_profile)
        return MarkupProfile.from_record(record) if record is not None else None

    async def run_analysis(
        self,
        analysis_id: str,
        rows: Sequence[Mapping[str, Any]],
        mappings: Mapping[str, str | None],
        origin_zip_override: str | None = None,
        profile: MarkupProfile | None = None,
        service_types: Sequence[str] = (),
        carrier_config_ids: Sequence[str] = (),
    ) -> None:
        """Process an analysis to a terminal status. Never raises."""
        try:
            await self._set_status(analysis_id, AnalysisStatus.in_progress)
            await self._process(
                analysis_id,
                rows,
                mappings,
                origin_zip_override,
                profile,
                service_types,
                carrier_config_ids,
            )
        except Exception as e:
            logger.exception("analysis_failed id=%s", analysis_id)
            reason = str(e) or type(e).__name__
            await self._fail(analysis_id, RateAnalysisError.from_code("E-4004", reason=reason))

    async def _process(
        self,
        analysis_id: str,
        rows: Sequence[Mapping[str, Any]],
        mappings: Mapping[str, str | None],
        origin_zip_override: str | None,
        profile: MarkupProfile | None,
        service_types: Sequence[str],
        carrier_config_ids: Sequence[str],
    ) -> None:
        records, results = await self.worker.process_in_chunks(
            rows,
            mappings,
            origin_zip_override=origin_zip_override,
            chunk_size=self.config.worker.chunk_size,
        )

        valid: list[tuple[int, ShipmentRecord]] = []
        invalid: list[dict[str, Any]] = []
        for index, record in enumerate(records):
            result = results[index]
            if result.is_valid:
                valid.append((index, record))
            else:
                invalid.append({"id": record.id, "shipmentIndex": index, "errors": result.errors})

        if invalid:
            await self._record_progress(
                analysis_id,
                processed_delta=len(invalid),
                metadata_updates={"invalidShipments": invalid},
            )
        if not valid:
            await self._fail(analysis_id, RateAnalysisError.from_code("E-2003", total=len(records)))
            return

        batcher = ProgressiveBatcher(
            self.store,
            analysis_id,
            batch_size=self.config.batching.batch_size,
            batch_timeout=self.config.batching.batch_timeout_seconds,
        )
        semaphore = asyncio.Semaphore(max(1, self.config.pipeline.concurrency))
        progress_lock = asyncio.Lock()
        error_shipments: list[dict[str, Any]] = []
        fatal: list[AuthenticationError] = []

        async def _rate_one(index: int, record: ShipmentRecord) -> None:
            async with semaphore:
                if fatal:
                    return
                completed = await self._rate_shipment(
                    record, index, profile, service_types, carrier_config_ids,
                    error_shipments, fatal,
                )
            if fatal:
                return
            async with progress_lock:
                if completed is not None:
                    batcher.add_completed_shipment(completed)
                await self._record_progress(
                    analysis_id,
                    processed_delta=1,
                    savings_delta=completed.savings if completed is not None else 0.0,
                )

        tasks = [asyncio.create_task(_rate_one(index, record)) for index, record in valid]
        try:
            await asyncio.gather(*tasks)
        finally:
            # no rating task may reach the batcher once it is finalized
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await batcher.finalize_batching()
            batcher.dispose()

        summary = {
            "errorShipments": error_shipments,
            "ratedShipments": batcher.shipments_saved,
            "progressiveBatchesCompleted": batcher.batches_saved,
        }
        if fatal:
            error = RateAnalysisError.from_code("E-5002", reason=str(fatal[0]))
            await self._fail(analysis_id, error, summary)
            return
        await self._set_status(analysis_id, AnalysisStatus.completed, summary)
        logger.info(
            "analysis_completed id=%s rated=%d errors=%d invalid=%d",
            analysis_id,
            batcher.shipments_saved,
            len(error_shipments),
            len(invalid),
        )

    async def _rate_shipment(
        self,
        record: ShipmentRecord,
        index: int,
        profile: MarkupProfile | None,
        service_types: Sequence[str],
        carrier_config_ids: Sequence[str],
        error_shipments: list[dict[str, Any]],
        fatal: list[AuthenticationError],
    ) -> CompletedShipment | None:
        request = rate_request_from_record(record, service_types, carrier_config_ids)
        try:
            rates = await self.rate_lookup.get_rates(request)
        except AuthenticationError as e:
            logger.error("carrier_auth_failed shipment=%s error=%s", record.id, e)
            fatal.append(e)
            return None
        except Exception as e:
            error = RateAnalysisError.from_code("E-3001", shipment_id=record.id, reason=str(e))
            logger.warning("rate_lookup_failed shipment=%s error=%s", record.id, e)
            error_shipments.append({"id": record.id, "shipmentIndex": index, "error": error.message})
            return None

        completed = build_completed_shipment(record, index, rates, profile)
        if completed.best_rate is None:
            error = RateAnalysisError.from_code("E-3002", shipment_id=record.id)
            error_shipments.append({"id": record.id, "shipmentIndex": index, "error": error.message})
            return None
        return completed

    async def _set_status(
        self,
        analysis_id: str,
        status: AnalysisStatus,
        metadata_updates: Mapping[str, Any] | None = None,
    ) -> None:
        record = await asyncio.to_thread(
            self.store.update_status, analysis_id, status, metadata_updates
        )
        await self._publish(analysis_id, record)

    async def _record_progress(self, analysis_id: str, **kwargs: Any) -> None:
        """Save and publish progress; a failure leaves it unsaved but never stops the batch."""
        try:
            record = await asyncio.to_thread(self.store.record_progress, analysis_id, **kwargs)
            await self._publish(analysis_id, record)
        except Exception as e:
            logger.warning("progress_not_saved id=%s error=%s", analysis_id, e)

    async def _fail(
        self,
        analysis_id: str,
        error: RateAnalysisError,
        metadata_updates: Mapping[str, Any] | None = None,
    ) -> None:
        logger.error("analysis_marked_failed id=%s code=%s", analysis_id, error.code)
        metadata = dict(metadata_updates or {})
        metadata["error"] = error.to_dict()
        try:
            await self._set_status(analysis_id, AnalysisStatus.failed, metadata)
        except Exception as e:
            logger.error("analysis_fail_status_not_saved id=%s error=%s", analysis_id, e)

    async def _publish(self, analysis_id: str, record: dict[str, Any]) -> None:
        if self.notifier is not None:
            await self.notifier.publish(analysis_id, record)

    async def shutdown(self) -> None:
        """Wait for every running analysis to settle."""
        await self.background.join()
