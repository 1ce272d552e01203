"""Application error type and display formatting."""

from dataclasses import dataclass, field

from shiprates.errors.registry import get_error


@dataclass
class RateAnalysisError(Exception):
    """Application error with code, message, and context.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action user should take to resolve.
        shipment_ids: Affected shipment ids, if any.
        is_retryable: Whether the operation can be retried without user action.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str
    shipment_ids: list[int] = field(default_factory=list)
    is_retryable: bool = False
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    @classmethod
    def from_code(cls, code: str, **kwargs: object) -> "RateAnalysisError":
        """Create error from registry code with context substitution.

        Args:
            code: Error code in E-XXXX format.
            **kwargs: Context values for message template substitution.
                The keys 'shipment_ids' and 'details' populate the
                corresponding fields instead.

        Returns:
            RateAnalysisError instance with formatted message.
        """
        shipment_ids = kwargs.get("shipment_ids", [])
        if not isinstance(shipment_ids, list):
            shipment_ids = []
        details = kwargs.get("details", {})
        if not isinstance(details, dict):
            details = {}

        error_def = get_error(code)
        if not error_def:
            return cls(
                code=code,
                message=f"Unknown error: {code}",
                remediation="Contact support.",
                shipment_ids=shipment_ids,
                details=details,
            )

        template_kwargs = {
            k: v for k, v in kwargs.items() if k not in ("shipment_ids", "details")
        }
        try:
            message = error_def.message_template.format(**template_kwargs)
        except KeyError:
            # Keep template if some placeholders are missing
            message = error_def.message_template

        return cls(
            code=error_def.code,
            message=message,
            remediation=error_def.remediation,
            shipment_ids=shipment_ids,
            is_retryable=error_def.is_retryable,
            details=details,
        )

    def to_dict(self) -> dict:
        """Serialize for API responses and processing metadata."""
        return {
            "code": self.code,
            "message": self.message,
            "remediation": self.remediation,
            "shipment_ids": list(self.shipment_ids),
            "is_retryable": self.is_retryable,
        }


def format_error(error: RateAnalysisError, include_remediation: bool = True) -> str:
    """Format error for display to user.

    Args:
        error: The RateAnalysisError to format.
        include_remediation: Whether to include remediation steps.

    Returns:
        Multi-line formatted string suitable for user display.
    """
    lines = [f"{error.code}: {error.message}"]

    if error.shipment_ids:
        if len(error.shipment_ids) == 1:
            lines.append(f"  Shipment: {error.shipment_ids[0]}")
        else:
            ids_str = ", ".join(str(i) for i in error.shipment_ids[:10])
            if len(error.shipment_ids) > 10:
                ids_str += f" (and {len(error.shipment_ids) - 10} more)"
            lines.append(f"  Affected shipments: {ids_str}")

    if include_remediation:
        lines.append(f"  Action: {error.remediation}")

    return "\n".join(lines)
