"""Typed domain exceptions for API error mapping.

Routes catch specific exception types to return appropriate HTTP status
codes instead of matching on message strings.

Usage:
    # In service layer
    raise NotFoundError("Analysis", analysis_id)

    # In route handler
    try:
        status = store.get_status(analysis_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""


class AuthenticationError(DomainError):
    """Session or carrier credentials rejected. Maps to HTTP 401.

    Fatal to the current operation and surfaced to the user.
    """


class RateProviderError(DomainError):
    """Transient failure from the upstream rate provider."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class WorkerError(DomainError):
    """The CSV worker reported an ERROR response."""


class InvalidStateTransition(DomainError):
    """Raised when attempting an invalid analysis status transition.

    Attributes:
        current_state: The current status value.
        attempted_state: The status that was attempted.
        allowed_transitions: Valid transition targets from the current status.
    """

    def __init__(
        self,
        current_state: str,
        attempted_state: str,
        allowed_transitions: list[str],
    ) -> None:
        self.current_state = current_state
        self.attempted_state = attempted_state
        self.allowed_transitions = allowed_transitions
        allowed_str = ", ".join(allowed_transitions) or "none (terminal)"
        super().__init__(
            f"Cannot transition from '{current_state}' to '{attempted_state}'. "
            f"Allowed transitions: {allowed_str}"
        )
