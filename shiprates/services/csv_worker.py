"""Isolated worker for CSV row mapping and validation.

Large uploads are mapped and validated off the caller's event loop: each
message runs on a worker thread with its own loop. The protocol mirrors a
message-passing worker: a request carries a task type plus data, and every
request produces exactly one terminal response (BATCH_COMPLETE,
VALIDATION_COMPLETE, or ERROR with a string reason).

Example:
    worker = CsvWorker()
    records, results = await worker.process_in_chunks(rows, mappings)
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shiprates.errors import RateAnalysisError, WorkerError
from shiprates.services.shipment_mapping import (
    MAP_YIELD_EVERY,
    ShipmentRecord,
    map_rows,
)
from shiprates.services.shipment_validation import (
    VALIDATE_YIELD_EVERY,
    ValidationResult,
    validate_rows,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500


class WorkerMessageType(str, Enum):
    """Task types accepted by the worker."""

    PROCESS_BATCH = "PROCESS_BATCH"
    VALIDATE_BATCH = "VALIDATE_BATCH"


class WorkerResponseType(str, Enum):
    """Terminal response types emitted by the worker."""

    BATCH_COMPLETE = "BATCH_COMPLETE"
    VALIDATION_COMPLETE = "VALIDATION_COMPLETE"
    ERROR = "ERROR"


class ProcessBatchData(BaseModel):
    """Payload of a PROCESS_BATCH message."""

    model_config = ConfigDict(populate_by_name=True)

    rows: list[dict[str, Any]]
    mappings: dict[str, str | None]
    start_index: int = Field(default=0, alias="startIndex", ge=0)
    origin_zip_override: str | None = Field(default=None, alias="originZipOverride")


class ValidateBatchData(BaseModel):
    """Payload of a VALIDATE_BATCH message."""

    model_config = ConfigDict(populate_by_name=True)

    # ShipmentRecord instances or plain dicts
    rows: list[Any]
    start_index: int = Field(default=0, alias="startIndex", ge=0)


class WorkerMessage(BaseModel):
    """Request sent to the worker. ``type`` is free-form so unknown types
    can be answered with an ERROR response rather than rejected up front."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class WorkerResponse(BaseModel):
    """Single terminal response for a request."""

    type: WorkerResponseType
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.type == WorkerResponseType.ERROR


class CsvWorker:
    """Maps and validates CSV rows in fixed-size chunks.

    Attributes:
        map_yield_every: Cooperative yield cadence while mapping.
        validate_yield_every: Cooperative yield cadence while validating.
    """

    def __init__(
        self,
        map_yield_every: int = MAP_YIELD_EVERY,
        validate_yield_every: int = VALIDATE_YIELD_EVERY,
    ) -> None:
        self.map_yield_every = map_yield_every
        self.validate_yield_every = validate_yield_every

    async def handle(self, message: WorkerMessage | Mapping[str, Any]) -> WorkerResponse:
        """Dispatch one message and return its terminal response.

        Never raises: failures, malformed payloads and unknown task types
        all become ERROR responses.
        """
        try:
            if not isinstance(message, WorkerMessage):
                message = WorkerMessage.model_validate(message)

            if message.type == WorkerMessageType.PROCESS_BATCH.value:
                return await self._process_batch(ProcessBatchData.model_validate(message.data))
            if message.type == WorkerMessageType.VALIDATE_BATCH.value:
                return await self._validate_batch(ValidateBatchData.model_validate(message.data))

            error = RateAnalysisError.from_code("E-4003", task_type=message.type)
            logger.error("csv_worker unknown_task type=%s", message.type)
            return WorkerResponse(type=WorkerResponseType.ERROR, data={"error": error.message})
        except Exception as e:
            logger.error("csv_worker task_failed error=%s", e)
            return WorkerResponse(
                type=WorkerResponseType.ERROR,
                data={"error": str(e) or "Unknown error"},
            )

    async def _process_batch(self, data: ProcessBatchData) -> WorkerResponse:
        shipments = await map_rows(
            data.rows,
            data.mappings,
            start_index=data.start_index,
            origin_zip_override=data.origin_zip_override,
            yield_every=self.map_yield_every,
        )
        return WorkerResponse(
            type=WorkerResponseType.BATCH_COMPLETE,
            data={"shipments": shipments, "start_index": data.start_index},
        )

    async def _validate_batch(self, data: ValidateBatchData) -> WorkerResponse:
        results = await validate_rows(
            data.rows,
            start_index=data.start_index,
            yield_every=self.validate_yield_every,
        )
        return WorkerResponse(
            type=WorkerResponseType.VALIDATION_COMPLETE,
            data={"results": results, "start_index": data.start_index},
        )

    def _run_sync(self, message: WorkerMessage | Mapping[str, Any]) -> WorkerResponse:
        return asyncio.run(self.handle(message))

    async def run_isolated(self, message: WorkerMessage | Mapping[str, Any]) -> WorkerResponse:
        """Run a message on a worker thread with its own event loop."""
        return await asyncio.to_thread(self._run_sync, message)

    async def process_in_chunks(
        self,
        rows: Sequence[Mapping[str, Any]],
        mappings: Mapping[str, str | None],
        origin_zip_override: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> tuple[list[ShipmentRecord], dict[int, ValidationResult]]:
        """Map then validate a whole upload chunk by chunk.

        Chunks run concurrently on worker threads and are reassembled by
        their start index, so ids and result keys match a sequential run.

        Returns:
            (records in upload order, validation results keyed by 0-based index)

        Raises:
            WorkerError: If any chunk produced an ERROR response.
        """
        starts = list(range(0, len(rows), chunk_size))

        mapped = await asyncio.gather(*(
            self.run_isolated(WorkerMessage(
                type=WorkerMessageType.PROCESS_BATCH.value,
                data={
                    "rows": [dict(r) for r in rows[start:start + chunk_size]],
                    "mappings": dict(mappings),
                    "start_index": start,
                    "origin_zip_override": origin_zip_override,
                },
            ))
            for start in starts
        ))
        chunks = _collect(mapped, WorkerResponseType.BATCH_COMPLETE)
        records: list[ShipmentRecord] = []
        for start in sorted(chunks):
            records.extend(chunks[start]["shipments"])

        validated = await asyncio.gather(*(
            self.run_isolated(WorkerMessage(
                type=WorkerMessageType.VALIDATE_BATCH.value,
                data={"rows": records[start:start + chunk_size], "start_index": start},
            ))
            for start in starts
        ))
        results: dict[int, ValidationResult] = {}
        for payload in _collect(validated, WorkerResponseType.VALIDATION_COMPLETE).values():
            results.update(payload["results"])

        logger.info(
            "csv_worker processed rows=%d chunks=%d invalid=%d",
            len(records),
            len(starts),
            sum(1 for r in results.values() if not r.is_valid),
        )
        return records, dict(sorted(results.items()))


def _collect(
    responses: Sequence[WorkerResponse],
    expected: WorkerResponseType,
) -> dict[int, dict[str, Any]]:
    """Index successful responses by start index; raise on the first ERROR."""
    collected: dict[int, dict[str, Any]] = {}
    for response in responses:
        if response.is_error:
            error = RateAnalysisError.from_code(
                "E-4002", reason=response.data.get("error", "Unknown error")
            )
            raise WorkerError(error.message)
        if response.type != expected:
            raise WorkerError(f"Unexpected worker response: {response.type.value}")
        collected[response.data["start_index"]] = response.data
    return collected
