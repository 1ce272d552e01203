"""Database layer: ORM models and session management."""

from shiprates.db.connection import (
    create_db_engine,
    create_session_factory,
    get_database_url,
    init_db,
    session_scope,
)
from shiprates.db.models import (
    TERMINAL_STATUSES,
    AnalysisStatus,
    Base,
    MarkupProfileRecord,
    MarkupType,
    ShipmentRate,
    ShippingAnalysis,
)

__all__ = [
    "AnalysisStatus",
    "Base",
    "MarkupProfileRecord",
    "MarkupType",
    "ShipmentRate",
    "ShippingAnalysis",
    "TERMINAL_STATUSES",
    "create_db_engine",
    "create_session_factory",
    "get_database_url",
    "init_db",
    "session_scope",
]
