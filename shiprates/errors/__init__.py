"""Error handling framework for shiprates.

This package provides:
- Error code registry with E-XXXX format codes
- RateAnalysisError and display formatting
- Typed domain exceptions mapped to HTTP status codes

Error categories:
- E-2xxx: Shipment validation errors
- E-3xxx: Rate provider errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication errors
"""

from shiprates.errors.domain import (
    AuthenticationError,
    DomainError,
    InvalidStateTransition,
    NotFoundError,
    RateProviderError,
    ValidationError,
    WorkerError,
)
from shiprates.errors.formatter import RateAnalysisError, format_error
from shiprates.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Formatter
    "RateAnalysisError",
    "format_error",
    # Domain
    "DomainError",
    "NotFoundError",
    "ValidationError",
    "AuthenticationError",
    "RateProviderError",
    "WorkerError",
    "InvalidStateTransition",
]
