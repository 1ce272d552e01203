"""SQLAlchemy ORM models for the shiprates state database.

Defines shipping analyses (the persisted unit of work for one uploaded
batch), the per-shipment carrier rates written by the progressive batcher,
and markup profiles. Uses SQLAlchemy 2.0 style with Mapped and
mapped_column. JSON payloads are stored as text for SQLite compatibility.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


def _load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


class AnalysisStatus(str, Enum):
    """Lifecycle status values for a shipping analysis.

    Lifecycle: pending -> in_progress -> completed/failed
    """

    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = frozenset({AnalysisStatus.completed.value, AnalysisStatus.failed.value})


class MarkupType(str, Enum):
    """Markup profile kinds."""

    global_ = "global"
    per_service = "per_service"
    tiered = "tiered"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ShippingAnalysis(Base):
    """One uploaded batch and its progress.

    Attributes:
        id: UUID primary key
        file_name: Name of the uploaded file
        status: pending, in_progress, completed or failed
        total_shipments: Rows in the upload
        processed_shipments: Rows processed so far (valid or not)
        total_savings: Sum of savings across rated shipments
        processed_shipments_json: JSON list of per-shipment result summaries
        processing_metadata: JSON object with free-form progress metadata
        column_mappings: JSON object of field -> column mappings used
        markup_profile_id: Markup profile applied, if any
        revision: Monotonic counter bumped on every write
        created_at / updated_at / completed_at: ISO8601 timestamps
    """

    __tablename__ = "shipping_analyses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AnalysisStatus.pending.value
    )
    total_shipments: Mapped[int] = mapped_column(default=0, nullable=False)
    processed_shipments: Mapped[int] = mapped_column(default=0, nullable=False)
    total_savings: Mapped[float] = mapped_column(default=0.0, nullable=False)
    processed_shipments_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_metadata: Mapped[str | None] = mapped_column(Text, nullable=True)
    column_mappings: Mapped[str | None] = mapped_column(Text, nullable=True)
    markup_profile_id: Mapped[str | None] = mapped_column(
        ForeignKey("markup_profiles.id"), nullable=True
    )
    revision: Mapped[int] = mapped_column(default=0, nullable=False)

    created_at: Mapped[str] = mapped_column(String(50), nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(String(50), nullable=False, default=utc_now_iso)
    completed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    rates: Mapped[list["ShipmentRate"]] = relationship(
        back_populates="analysis", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_analyses_status", "status"),)

    def get_metadata(self) -> dict[str, Any]:
        """Return processing_metadata as a dict (empty when unset or malformed)."""
        data = _load_json(self.processing_metadata, {})
        return data if isinstance(data, dict) else {}

    def get_processed_shipments(self) -> list[dict[str, Any]]:
        """Return the stored per-shipment summaries."""
        data = _load_json(self.processed_shipments_json, [])
        return data if isinstance(data, list) else []

    def __repr__(self) -> str:
        return f"<ShippingAnalysis(id={self.id!r}, status={self.status!r})>"


class ShipmentRate(Base):
    """One carrier rate returned for one shipment of an analysis."""

    __tablename__ = "shipment_rates"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    analysis_id: Mapped[str] = mapped_column(
        ForeignKey("shipping_analyses.id", ondelete="CASCADE"), nullable=False
    )
    shipment_index: Mapped[int] = mapped_column(nullable=False)
    carrier_config_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    account_name: Mapped[str] = mapped_column(String(255), nullable=False, default="Unknown")
    carrier_type: Mapped[str] = mapped_column(String(20), nullable=False, default="ups")
    service_code: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    service_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    rate_amount: Mapped[float] = mapped_column(nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    transit_days: Mapped[int | None] = mapped_column(nullable=True)
    is_negotiated: Mapped[bool] = mapped_column(nullable=False, default=False)
    published_rate: Mapped[float | None] = mapped_column(nullable=True)
    shipment_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(String(50), nullable=False, default=utc_now_iso)

    analysis: Mapped["ShippingAnalysis"] = relationship(back_populates="rates")

    __table_args__ = (
        Index("idx_shipment_rates_analysis", "analysis_id", "shipment_index"),
    )

    def get_shipment_data(self) -> dict[str, Any]:
        data = _load_json(self.shipment_data, {})
        return data if isinstance(data, dict) else {}


class MarkupProfileRecord(Base):
    """Stored markup profile (global, per-service or tiered)."""

    __tablename__ = "markup_profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    markup_type: Mapped[str] = mapped_column(String(20), nullable=False)
    markup_config: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    is_default: Mapped[bool] = mapped_column(nullable=False, default=False)
    created_at: Mapped[str] = mapped_column(String(50), nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(String(50), nullable=False, default=utc_now_iso)

    def get_config(self) -> dict[str, Any]:
        data = _load_json(self.markup_config, {})
        return data if isinstance(data, dict) else {}
