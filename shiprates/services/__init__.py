"""Service layer for shiprates.

Row mapping and validation, rate caching and lookup, markup, progressive
persistence, auto-save and background job observation.
"""

from shiprates.services.analysis_pipeline import AnalysisPipeline
from shiprates.services.analysis_store import VALID_TRANSITIONS, AnalysisStore
from shiprates.services.auto_save import AutoSaveController
from shiprates.services.background import BackgroundTasks
from shiprates.services.csv_worker import CsvWorker
from shiprates.services.job_poller import AnalysisJobPoller, AnalysisJobStatus
from shiprates.services.markup import (
    MarkupProfile,
    apply_markup,
    calculate_savings_with_markup,
)
from shiprates.services.progressive_batcher import ProgressiveBatcher
from shiprates.services.rate_cache import RateCache, RateRequest, RequestDeduplicator
from shiprates.services.rate_lookup import RateLookupService
from shiprates.services.shipment_mapping import ShipmentRecord, map_rows
from shiprates.services.shipment_validation import ValidationResult, validate_rows
from shiprates.services.status_notifier import AnalysisStatusNotifier
from shiprates.services.timers import TimerManager

__all__ = [
    "AnalysisJobPoller",
    "AnalysisJobStatus",
    "AnalysisPipeline",
    "AnalysisStatusNotifier",
    "AnalysisStore",
    "AutoSaveController",
    "BackgroundTasks",
    "CsvWorker",
    "MarkupProfile",
    "ProgressiveBatcher",
    "RateCache",
    "RateLookupService",
    "RateRequest",
    "RequestDeduplicator",
    "ShipmentRecord",
    "TimerManager",
    "VALID_TRANSITIONS",
    "ValidationResult",
    "apply_markup",
    "calculate_savings_with_markup",
    "map_rows",
    "validate_rows",
]
