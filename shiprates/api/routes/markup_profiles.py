"""FastAPI routes for markup profiles."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException

from shiprates.api.runtime import ApiRuntime, get_runtime
from shiprates.api.schemas import MarkupProfileCreate, MarkupProfileResponse
from shiprates.db.models import MarkupProfileRecord
from shiprates.errors import NotFoundError

router = APIRouter(prefix="/markup-profiles", tags=["markup"])


def _profile_response(record: MarkupProfileRecord) -> MarkupProfileResponse:
    return MarkupProfileResponse(
        id=record.id,
        name=record.name,
        description=record.description,
        markup_type=record.markup_type,
        markup_config=record.get_config(),
        is_default=record.is_default,
        created_at=record.created_at,
    )


@router.post("", response_model=MarkupProfileResponse, status_code=201)
async def create_markup_profile(
    body: MarkupProfileCreate,
    runtime: ApiRuntime = Depends(get_runtime),
) -> MarkupProfileResponse:
    record = await asyncio.to_thread(
        runtime.store.create_markup_profile,
        name=body.name,
        markup_type=body.markup_type.value,
        markup_config=body.markup_config,
        description=body.description,
        is_default=body.is_default,
    )
    return _profile_response(record)


@router.get("/{profile_id}", response_model=MarkupProfileResponse)
async def get_markup_profile(
    profile_id: str,
    runtime: ApiRuntime = Depends(get_runtime),
) -> MarkupProfileResponse:
    try:
        record = await asyncio.to_thread(runtime.store.get_markup_profile, profile_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _profile_response(record)
