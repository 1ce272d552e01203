"""Persistence collaborator for shipping analyses.

Owns every write to ``shipping_analyses``, ``shipment_rates`` and
``markup_profiles``. Methods are synchronous and open a short-lived session
per call, so async callers run them with ``asyncio.to_thread``.

Every write to an analysis stamps ``updated_at`` and bumps ``revision`` so
status observers can discard out-of-order updates.
"""

import json
import logging
import threading
from collections.abc import Generator, Iterable, Mapping
from contextlib import contextmanager
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from shiprates.db.connection import SessionFactory, session_scope
from shiprates.db.models import (
    TERMINAL_STATUSES,
    AnalysisStatus,
    MarkupProfileRecord,
    ShipmentRate,
    ShippingAnalysis,
    utc_now_iso,
)
from shiprates.errors import InvalidStateTransition, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[str, list[str]] = {
    AnalysisStatus.pending.value: [AnalysisStatus.in_progress.value, AnalysisStatus.failed.value],
    AnalysisStatus.in_progress.value: [
        AnalysisStatus.completed.value,
        AnalysisStatus.failed.value,
    ],
    AnalysisStatus.completed.value: [],  # terminal
    AnalysisStatus.failed.value: [],  # terminal
}

# Columns an auto-save may overwrite; JSON columns are serialized on write
_UPDATABLE_FIELDS = frozenset({
    "file_name",
    "status",
    "total_shipments",
    "processed_shipments",
    "total_savings",
    "markup_profile_id",
})
_JSON_FIELDS = {
    "processing_metadata": "processing_metadata",
    "processed_shipments_data": "processed_shipments_json",
    "column_mappings": "column_mappings",
}

_RATE_COLUMNS = (
    "analysis_id",
    "shipment_index",
    "carrier_config_id",
    "account_name",
    "carrier_type",
    "service_code",
    "service_name",
    "rate_amount",
    "currency",
    "transit_days",
    "is_negotiated",
    "published_rate",
    "shipment_data",
)


def status_to_dict(analysis: ShippingAnalysis) -> dict[str, Any]:
    """Status record as observed by pollers and the status API."""
    return {
        "id": analysis.id,
        "total_shipments": analysis.total_shipments,
        "processed_shipments": analysis.processed_shipments,
        "status": analysis.status,
        "processing_metadata": analysis.get_metadata(),
        "total_savings": analysis.total_savings,
        "updated_at": analysis.updated_at,
        "revision": analysis.revision,
    }


class AnalysisStore:
    """Analysis, rate and markup-profile persistence.

    Attributes:
        session_factory: Zero-argument callable returning a new Session.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory
        # SQLite has a single writer; callers arrive from worker threads
        self._lock = threading.RLock()

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        with self._lock, session_scope(self.session_factory) as db:
            yield db

    # =========================================================================
    # Analysis lifecycle
    # =========================================================================

    def create_analysis(
        self,
        total_shipments: int,
        file_name: str | None = None,
        column_mappings: Mapping[str, Any] | None = None,
        markup_profile_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        """Insert a pending analysis and return its id."""
        now = utc_now_iso()
        with self._session() as db:
            analysis = ShippingAnalysis(
                file_name=file_name,
                status=AnalysisStatus.pending.value,
                total_shipments=total_shipments,
                processed_shipments=0,
                total_savings=0.0,
                processed_shipments_json="[]",
                processing_metadata=json.dumps(dict(metadata or {})),
                column_mappings=json.dumps(dict(column_mappings or {})),
                markup_profile_id=markup_profile_id,
                revision=1,
                created_at=now,
                updated_at=now,
            )
            db.add(analysis)
            db.flush()
            analysis_id = analysis.id
        logger.info("analysis_created id=%s total=%d", analysis_id, total_shipments)
        return analysis_id

    def get_analysis(self, analysis_id: str) -> ShippingAnalysis:
        """Load an analysis (detached).

        Raises:
            NotFoundError: If no analysis has this id.
        """
        with self._session() as db:
            return self._load(db, analysis_id)

    def get_status(self, analysis_id: str) -> dict[str, Any]:
        """Return the status record for pollers.

        Raises:
            NotFoundError: If no analysis has this id.
        """
        return status_to_dict(self.get_analysis(analysis_id))

    def update_status(
        self,
        analysis_id: str,
        new_status: AnalysisStatus | str,
        metadata_updates: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Move an analysis through its lifecycle.

        Setting the current status again is a no-op apart from metadata.

        Raises:
            NotFoundError: If no analysis has this id.
            InvalidStateTransition: If the transition is not allowed.
        """
        target = AnalysisStatus(new_status).value
        with self._session() as db:
            analysis = self._load(db, analysis_id)
            self._transition(analysis, target)
            if metadata_updates:
                self._merge_metadata(analysis, metadata_updates)
            self._touch(analysis)
            status = status_to_dict(analysis)
        logger.info("analysis_status id=%s status=%s", analysis_id, target)
        return status

    def record_progress(
        self,
        analysis_id: str,
        processed_delta: int = 0,
        savings_delta: float = 0.0,
        metadata_updates: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Increment progress counters; processed is capped at the total."""
        with self._session() as db:
            analysis = self._load(db, analysis_id)
            processed = analysis.processed_shipments + processed_delta
            analysis.processed_shipments = max(0, min(processed, analysis.total_shipments))
            analysis.total_savings = (analysis.total_savings or 0.0) + savings_delta
            if metadata_updates:
                self._merge_metadata(analysis, metadata_updates)
            self._touch(analysis)
            return status_to_dict(analysis)

    def update_analysis(self, analysis_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Apply a partial update, always stamping ``updated_at``.

        Accepts plain columns (see ``_UPDATABLE_FIELDS``) plus the JSON
        payloads ``processing_metadata`` (merged), ``processed_shipments_data``
        and ``column_mappings`` (replaced).

        Raises:
            NotFoundError: If no analysis has this id.
            ValidationError: On an unknown field.
            InvalidStateTransition: If ``status`` is not a valid transition.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS - set(_JSON_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown analysis fields: {', '.join(sorted(unknown))}")

        with self._session() as db:
            analysis = self._load(db, analysis_id)
            for name, value in fields.items():
                if name == "status":
                    self._transition(analysis, AnalysisStatus(value).value)
                elif name == "processing_metadata":
                    self._merge_metadata(analysis, value or {})
                elif name in _JSON_FIELDS:
                    setattr(analysis, _JSON_FIELDS[name], json.dumps(value))
                else:
                    setattr(analysis, name, value)
            self._touch(analysis)
            return status_to_dict(analysis)

    # =========================================================================
    # Progressive batch persistence
    # =========================================================================

    def insert_shipment_rates(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """Bulk insert rate rows; ``shipment_data`` may be a dict."""
        records = []
        for row in rows:
            values = {k: row.get(k) for k in _RATE_COLUMNS if k in row}
            data = values.get("shipment_data")
            if data is not None and not isinstance(data, str):
                values["shipment_data"] = json.dumps(data, default=str)
            records.append(ShipmentRate(**values))
        if not records:
            return 0
        with self._session() as db:
            db.add_all(records)
        return len(records)

    def append_processed_shipments(
        self,
        analysis_id: str,
        shipments: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """Append per-shipment summaries and stamp batch metadata."""
        with self._session() as db:
            analysis = self._load(db, analysis_id)
            existing = analysis.get_processed_shipments()
            analysis.processed_shipments_json = json.dumps(existing + shipments, default=str)
            metadata = analysis.get_metadata()
            self._merge_metadata(analysis, {
                "lastProgressiveBatch": utc_now_iso(),
                "progressiveBatchesSaved": int(metadata.get("progressiveBatchesSaved", 0)) + 1,
            })
            self._touch(analysis)
            return status_to_dict(analysis)

    def list_shipment_rates(self, analysis_id: str) -> list[ShipmentRate]:
        with self._session() as db:
            stmt = (
                select(ShipmentRate)
                .where(ShipmentRate.analysis_id == analysis_id)
                .order_by(ShipmentRate.shipment_index, ShipmentRate.id)
            )
            return list(db.scalars(stmt))

    # =========================================================================
    # Markup profiles
    # =========================================================================

    def create_markup_profile(
        self,
        name: str,
        markup_type: str,
        markup_config: Mapping[str, Any],
        description: str | None = None,
        is_default: bool = False,
    ) -> MarkupProfileRecord:
        now = utc_now_iso()
        with self._session() as db:
            if is_default:
                for other in db.scalars(
                    select(MarkupProfileRecord).where(MarkupProfileRecord.is_default.is_(True))
                ):
                    other.is_default = False
            record = MarkupProfileRecord(
                name=name,
                description=description,
                markup_type=markup_type,
                markup_config=json.dumps(dict(markup_config)),
                is_default=is_default,
                created_at=now,
                updated_at=now,
            )
            db.add(record)
            db.flush()
            return record

    def get_markup_profile(self, profile_id: str) -> MarkupProfileRecord:
        with self._session() as db:
            record = db.get(MarkupProfileRecord, profile_id)
            if record is None:
                raise NotFoundError("Markup profile", profile_id)
            return record

    def get_default_markup_profile(self) -> MarkupProfileRecord | None:
        with self._session() as db:
            stmt = select(MarkupProfileRecord).where(MarkupProfileRecord.is_default.is_(True))
            return db.scalars(stmt).first()

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _load(db: Session, analysis_id: str) -> ShippingAnalysis:
        analysis = db.get(ShippingAnalysis, analysis_id)
        if analysis is None:
            raise NotFoundError("Analysis", analysis_id)
        return analysis

    @staticmethod
    def _transition(analysis: ShippingAnalysis, target: str) -> None:
        current = analysis.status
        if target == current:
            return
        allowed = VALID_TRANSITIONS.get(current, [])
        if target not in allowed:
            raise InvalidStateTransition(current, target, allowed)
        analysis.status = target
        if target in TERMINAL_STATUSES:
            analysis.completed_at = utc_now_iso()

    @staticmethod
    def _merge_metadata(analysis: ShippingAnalysis, updates: Mapping[str, Any]) -> None:
        metadata = analysis.get_metadata()
        metadata.update(updates)
        analysis.processing_metadata = json.dumps(metadata, default=str)

    @staticmethod
    def _touch(analysis: ShippingAnalysis) -> None:
        analysis.updated_at = utc_now_iso()
        analysis.revision = (analysis.revision or 0) + 1
