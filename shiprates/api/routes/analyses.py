"""FastAPI routes for shipping analyses.

Start an analysis, read or stream its status, and save edits.
"""

import asyncio
import json
import logging
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from shiprates.api.runtime import ApiRuntime, get_runtime
from shiprates.api.schemas import (
    AnalysisCreate,
    AnalysisCreated,
    AnalysisStatusResponse,
    AnalysisUpdate,
)
from shiprates.db.models import TERMINAL_STATUSES
from shiprates.errors import InvalidStateTransition, NotFoundError, ValidationError
from shiprates.services.auto_save import AutoSaveController
from shiprates.services.job_poller import AnalysisJobStatus
from shiprates.services.status_notifier import AnalysisStatusNotifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyses", tags=["analyses"])

PING_INTERVAL_SECONDS = 15.0


def _status_response(record: dict[str, Any]) -> AnalysisStatusResponse:
    status = AnalysisJobStatus.model_validate(record)
    return AnalysisStatusResponse(
        id=record["id"],
        status=record["status"],
        total_shipments=status.total_shipments,
        processed_shipments=status.processed_shipments,
        progress_percentage=status.percentage,
        total_savings=status.total_savings,
        processing_metadata=status.processing_metadata,
        updated_at=status.updated_at,
        revision=record["revision"],
    )


@router.post("", response_model=AnalysisCreated, status_code=201)
async def start_analysis(
    body: AnalysisCreate,
    runtime: ApiRuntime = Depends(get_runtime),
) -> AnalysisCreated:
    """Start a background analysis for uploaded rows.

    Returns:
        The new analysis id; processing continues in the background.
    """
    try:
        analysis_id = await runtime.pipeline.start_analysis(
            body.rows,
            body.mappings,
            file_name=body.file_name,
            origin_zip_override=body.origin_zip_override,
            markup_profile_id=body.markup_profile_id,
            service_types=body.service_types,
            carrier_config_ids=body.carrier_config_ids,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return AnalysisCreated(analysis_id=analysis_id)


@router.get("/{analysis_id}/status", response_model=AnalysisStatusResponse)
async def get_analysis_status(
    analysis_id: str,
    runtime: ApiRuntime = Depends(get_runtime),
) -> AnalysisStatusResponse:
    """Return the status record used by pollers."""
    try:
        record = await asyncio.to_thread(runtime.store.get_status, analysis_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _status_response(record)


async def _event_generator(
    request: Request,
    notifier: AnalysisStatusNotifier,
    analysis_id: str,
    queue: asyncio.Queue,
    initial: dict[str, Any],
) -> AsyncGenerator[dict, None]:
    """Yield the current status, then pushed updates until terminal.

    The queue is subscribed before ``initial`` is read, so it may hold
    updates ``initial`` already covers; those are skipped by revision.
    Sends a ping after 15 seconds without an update so proxies keep the
    connection open.
    """
    last_revision = initial.get("revision")
    try:
        yield {"data": json.dumps({"event": "status", "data": initial})}
        if initial["status"] in TERMINAL_STATUSES:
            return
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=PING_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                yield {"data": json.dumps({"event": "ping"})}
                continue
            revision = event["data"].get("revision")
            stale = revision is not None and last_revision is not None and revision <= last_revision
            if stale:
                logger.debug(
                    "stale_status_skipped analysis=%s revision=%s sent=%s",
                    analysis_id,
                    revision,
                    last_revision,
                )
                continue
            if revision is not None:
                last_revision = revision
            yield {"data": json.dumps({"event": event["event"], "data": event["data"]})}
            if event["data"].get("status") in TERMINAL_STATUSES:
                break
    finally:
        notifier.unsubscribe(analysis_id, queue)


@router.get("/{analysis_id}/status/stream")
async def stream_analysis_status(
    request: Request,
    analysis_id: str,
    runtime: ApiRuntime = Depends(get_runtime),
) -> EventSourceResponse:
    """Stream status updates over Server-Sent Events."""
    # Subscribe before reading so no update slips between the two
    queue = runtime.notifier.subscribe(analysis_id)
    try:
        initial = await asyncio.to_thread(runtime.store.get_status, analysis_id)
    except NotFoundError as e:
        runtime.notifier.unsubscribe(analysis_id, queue)
        raise HTTPException(status_code=404, detail=str(e))
    return EventSourceResponse(
        _event_generator(request, runtime.notifier, analysis_id, queue, initial)
    )


@router.patch("/{analysis_id}", response_model=AnalysisStatusResponse)
async def save_analysis(
    analysis_id: str,
    update: AnalysisUpdate,
    runtime: ApiRuntime = Depends(get_runtime),
) -> AnalysisStatusResponse:
    """Save edits immediately (foreground save-now)."""
    fields = update.model_dump(exclude_unset=True, mode="json")
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    controller = AutoSaveController(
        runtime.store,
        analysis_id,
        debounce=runtime.config.auto_save.debounce_seconds,
    )
    try:
        record = await controller.save_now(fields)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        controller.dispose()
    return _status_response(record)
