"""Tests for the error code registry, RateAnalysisError and domain errors."""

import pytest

from shiprates.errors import (
    ERROR_REGISTRY,
    ErrorCategory,
    InvalidStateTransition,
    NotFoundError,
    RateAnalysisError,
    RateProviderError,
    format_error,
    get_error,
    get_errors_by_category,
)


class TestRegistry:
    """Verify codes are registered under the right category."""

    def test_codes_follow_category_prefix(self):
        prefixes = {
            ErrorCategory.VALIDATION: "E-2",
            ErrorCategory.RATE_PROVIDER: "E-3",
            ErrorCategory.SYSTEM: "E-4",
            ErrorCategory.AUTH: "E-5",
        }
        for code, error in ERROR_REGISTRY.items():
            assert error.code == code
            assert code.startswith(prefixes[error.category]), code

    def test_unknown_code_returns_none(self):
        assert get_error("E-9999") is None

    def test_get_errors_by_category(self):
        auth = get_errors_by_category(ErrorCategory.AUTH)
        assert {e.code for e in auth} == {"E-5001", "E-5002"}

    def test_rate_quote_failure_is_retryable(self):
        assert get_error("E-3001").is_retryable is True
        assert get_error("E-2001").is_retryable is False


class TestRateAnalysisError:
    """Test construction from registry codes."""

    def test_from_code_substitutes_context(self):
        error = RateAnalysisError.from_code("E-3001", shipment_id=7, reason="timeout")

        assert error.code == "E-3001"
        assert error.message == "Rate quote failed for shipment 7: timeout"
        assert error.is_retryable is True
        assert str(error) == "E-3001: Rate quote failed for shipment 7: timeout"

    def test_missing_placeholder_keeps_template(self):
        error = RateAnalysisError.from_code("E-3001")
        assert "{shipment_id}" in error.message

    def test_unknown_code(self):
        error = RateAnalysisError.from_code("E-9999")
        assert error.message == "Unknown error: E-9999"

    def test_shipment_ids_and_details_populate_fields(self):
        error = RateAnalysisError.from_code(
            "E-3002", shipment_id=3, shipment_ids=[3], details={"lane": "10001-90001"}
        )
        assert error.shipment_ids == [3]
        assert error.details == {"lane": "10001-90001"}

    def test_to_dict(self):
        data = RateAnalysisError.from_code("E-2003", total=4).to_dict()
        assert data["code"] == "E-2003"
        assert data["message"] == "None of the 4 shipments passed validation."
        assert data["is_retryable"] is False

    def test_is_raisable(self):
        with pytest.raises(RateAnalysisError):
            raise RateAnalysisError.from_code("E-4001", reason="disk full")


class TestFormatError:

    def test_lists_affected_shipments_and_action(self):
        error = RateAnalysisError.from_code("E-3002", shipment_id=1, shipment_ids=list(range(1, 13)))
        text = format_error(error)

        assert text.startswith("E-3002:")
        assert "(and 2 more)" in text
        assert "Action:" in text

    def test_without_remediation(self):
        error = RateAnalysisError.from_code("E-2002")
        assert "Action:" not in format_error(error, include_remediation=False)


class TestDomainErrors:

    def test_not_found_message(self):
        error = NotFoundError("Analysis", "abc")
        assert str(error) == "Analysis 'abc' not found"
        assert error.identifier == "abc"

    def test_invalid_transition_lists_allowed(self):
        error = InvalidStateTransition("completed", "pending", [])
        assert "none (terminal)" in str(error)

    def test_rate_provider_error_retryable_default(self):
        assert RateProviderError("503").retryable is True
        assert RateProviderError("bad request", retryable=False).retryable is False
