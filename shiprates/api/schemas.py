"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the shiprates REST API:
starting analyses, reading their status and saving edits.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AnalysisStatusEnum(str, Enum):
    """Valid analysis status values for API requests."""

    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


class MarkupTypeEnum(str, Enum):
    """Markup profile kinds."""

    global_ = "global"
    per_service = "per_service"
    tiered = "tiered"


# Analysis schemas


class AnalysisCreate(BaseModel):
    """Request schema for starting an analysis from uploaded rows."""

    rows: list[dict[str, Any]] = Field(..., description="Raw CSV rows keyed by header")
    mappings: dict[str, str | None] = Field(
        ..., description="Shipment field name to CSV column header"
    )
    file_name: str | None = Field(None, max_length=255)
    origin_zip_override: str | None = Field(None, max_length=10)
    markup_profile_id: str | None = None
    service_types: list[str] | None = None
    carrier_config_ids: list[str] = Field(default_factory=list)


class AnalysisCreated(BaseModel):
    """Response schema for a started analysis."""

    analysis_id: str


class AnalysisStatusResponse(BaseModel):
    """Response schema for an analysis status record."""

    id: str
    status: AnalysisStatusEnum
    total_shipments: int
    processed_shipments: int
    progress_percentage: float
    total_savings: float
    processing_metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: str | None = None
    revision: int


class AnalysisUpdate(BaseModel):
    """Request schema for saving edits to an analysis (partial)."""

    model_config = ConfigDict(extra="forbid")

    file_name: str | None = Field(None, max_length=255)
    status: AnalysisStatusEnum | None = None
    total_savings: float | None = None
    markup_profile_id: str | None = None
    processing_metadata: dict[str, Any] | None = None
    processed_shipments_data: list[dict[str, Any]] | None = None
    column_mappings: dict[str, str | None] | None = None


# Markup profile schemas


class MarkupProfileCreate(BaseModel):
    """Request schema for creating a markup profile."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=500)
    markup_type: MarkupTypeEnum
    markup_config: dict[str, Any] = Field(default_factory=dict)
    is_default: bool = False


class MarkupProfileResponse(BaseModel):
    """Response schema for a markup profile."""

    id: str
    name: str
    description: str | None = None
    markup_type: str
    markup_config: dict[str, Any]
    is_default: bool
    created_at: str
