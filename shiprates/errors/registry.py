"""Error code registry with E-XXXX format codes.

Errors are grouped into categories:
- E-2xxx: Shipment validation errors
- E-3xxx: Rate provider errors
- E-4xxx: System/internal errors (persistence, worker)
- E-5xxx: Authentication errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    VALIDATION = "validation"  # E-2xxx
    RATE_PROVIDER = "rate_provider"  # E-3xxx
    SYSTEM = "system"  # E-4xxx
    AUTH = "auth"  # E-5xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Validation errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.VALIDATION,
        title="Invalid Column Mapping",
        message_template="Column mapping is invalid: {reason}",
        remediation="Map every required shipment field to a column in your file.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.VALIDATION,
        title="Empty Upload",
        message_template="The uploaded batch contains no rows.",
        remediation="Upload a CSV file with at least one shipment row.",
    ),
    "E-2003": ErrorCode(
        code="E-2003",
        category=ErrorCategory.VALIDATION,
        title="No Valid Shipments",
        message_template="None of the {total} shipments passed validation.",
        remediation="Fix origin/destination ZIP codes and weights, then re-upload.",
    ),
    # Rate provider errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.RATE_PROVIDER,
        title="Rate Quote Failed",
        message_template="Rate quote failed for shipment {shipment_id}: {reason}",
        remediation="Retry the analysis; check carrier account configuration if it persists.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.RATE_PROVIDER,
        title="No Rates Returned",
        message_template="No carrier returned a rate for shipment {shipment_id}.",
        remediation="Verify the selected service types are offered for this lane.",
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Persistence Failed",
        message_template="Failed to save analysis data: {reason}",
        remediation="Results are kept locally; the next save will retry.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Worker Error",
        message_template="Background CSV worker failed: {reason}",
        remediation="Re-upload the file. Contact support if the problem persists.",
    ),
    "E-4003": ErrorCode(
        code="E-4003",
        category=ErrorCategory.SYSTEM,
        title="Unknown Worker Task",
        message_template="Unknown worker task type: {task_type}",
        remediation="Contact support.",
    ),
    "E-4004": ErrorCode(
        code="E-4004",
        category=ErrorCategory.SYSTEM,
        title="Analysis Failed",
        message_template="Analysis processing failed: {reason}",
        remediation="Start a new analysis for this batch.",
    ),
    # Auth errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.AUTH,
        title="Session Expired",
        message_template="Please log in to {action}.",
        remediation="Sign in again and retry.",
    ),
    "E-5002": ErrorCode(
        code="E-5002",
        category=ErrorCategory.AUTH,
        title="Carrier Authentication Failed",
        message_template="Carrier authentication failed: {reason}",
        remediation="Check the carrier account credentials in Settings.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category."""
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
