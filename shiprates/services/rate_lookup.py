"""Rate lookup through the cache and de-duplicator, plus best-rate selection.

The provider is an external collaborator (a carrier rating API client); any
object with an async ``get_rates(request)`` returning a list of rate dicts
will do. Successful quotes are cached; failures propagate and are never
cached.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from shiprates.errors import RateProviderError
from shiprates.services.markup import (
    MarkupProfile,
    apply_markup,
    calculate_savings_with_markup,
    markup_percentage,
)
from shiprates.services.rate_cache import RateCache, RateRequest, RequestDeduplicator
from shiprates.services.shipment_mapping import ShipmentRecord
from shiprates.services.shipment_validation import parse_number, weight_in_pounds

logger = logging.getLogger(__name__)


class RateProvider(Protocol):
    """Carrier rating client."""

    async def get_rates(self, request: RateRequest) -> list[dict[str, Any]]:
        ...


class RateLookupService:
    """Cache-first, de-duplicated access to a rate provider."""

    def __init__(
        self,
        provider: RateProvider,
        cache: RateCache,
        deduplicator: RequestDeduplicator,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.deduplicator = deduplicator

    async def get_rates(self, request: RateRequest) -> list[dict[str, Any]]:
        """Return quotes for ``request``.

        Raises:
            Whatever the provider raises; nothing is cached in that case.
        """
        key = request.cache_key()
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        async def _fetch() -> list[dict[str, Any]]:
            rates = await self.provider.get_rates(request)
            self.cache.set(key, rates)
            return rates

        return await self.deduplicator.execute(key, _fetch)


def rate_request_from_record(
    record: ShipmentRecord,
    service_types: Sequence[str] = (),
    carrier_config_ids: Sequence[str] = (),
) -> RateRequest:
    """Build the rate request for a validated shipment."""
    return RateRequest(
        origin_zip=str(record.origin_zip or ""),
        dest_zip=str(record.dest_zip or ""),
        weight=weight_in_pounds(record.fields) or 0.0,
        length=parse_number(record.get("length")) or 0.0,
        width=parse_number(record.get("width")) or 0.0,
        height=parse_number(record.get("height")) or 0.0,
        service_types=tuple(service_types),
        carrier_config_ids=tuple(carrier_config_ids),
        is_residential=record.is_residential,
    )


def rate_field(rate: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-empty value among ``keys`` (providers mix snake and camel case)."""
    for key in keys:
        value = rate.get(key)
        if value not in (None, ""):
            return value
    return default


def rate_amount(rate: Mapping[str, Any]) -> float | None:
    """Charge of a provider quote: total charges, else negotiated, else plain amount."""
    for key in ("totalCharges", "negotiatedRate", "rate_amount", "amount"):
        value = parse_number(rate.get(key))
        if value is not None:
            return value
    return None


@dataclass
class CompletedShipment:
    """A rated shipment ready for progressive persistence.

    Attributes:
        record: The mapped shipment.
        index: 0-based position of the shipment in the upload.
        all_rates: Every quote returned, each with ``base_rate`` and ``final_rate``.
        best_rate: Cheapest quote after markup, or None if no quote had a price.
    """

    record: ShipmentRecord
    index: int
    current_cost: float | None
    all_rates: list[dict[str, Any]] = field(default_factory=list)
    best_rate: dict[str, Any] | None = None
    final_rate: float | None = None
    markup_percentage: float = 0.0
    savings: float = 0.0
    savings_percentage: float = 0.0

    def to_summary(self) -> dict[str, Any]:
        """Compact form stored in the analysis' processed shipments."""
        best = self.best_rate or {}
        record = self.record
        account = rate_field(best, "account_name", "accountName", "carrierName", default="Unknown")
        return {
            "id": record.id,
            "shipmentIndex": self.index,
            "trackingId": record.get("trackingId"),
            "service": record.service,
            "carrier": record.get("carrier") or "UPS",
            "originZip": record.origin_zip,
            "destZip": record.dest_zip,
            "weight": parse_number(record.get("weight")) or 0.0,
            "length": parse_number(record.get("length")) or 0.0,
            "width": parse_number(record.get("width")) or 0.0,
            "height": parse_number(record.get("height")) or 0.0,
            "currentRate": self.current_cost,
            "bestService": rate_field(best, "service_name", "serviceName", "description"),
            "baseRate": best.get("base_rate"),
            "markupPercentage": self.markup_percentage,
            "finalRate": self.final_rate,
            "savings": self.savings,
            "savingsPercent": self.savings_percentage,
            "accountName": account,
        }


def build_completed_shipment(
    record: ShipmentRecord,
    index: int,
    rates: Sequence[Mapping[str, Any]],
    profile: MarkupProfile | Mapping[str, Any] | None = None,
) -> CompletedShipment:
    """Mark up every quote and keep the cheapest as the best rate.

    Savings are measured against the shipment's ``currentRate``; they stay
    0 when the current rate is missing or no quote is priced.
    """
    current_cost = parse_number(record.get("currentRate"))
    priced: list[dict[str, Any]] = []
    for rate in rates:
        base = rate_amount(rate)
        if base is None:
            continue
        service_code = rate_field(rate, "service_code", "serviceCode")
        entry = dict(rate)
        entry["base_rate"] = base
        entry["markup_percentage"] = markup_percentage(base, profile, service_code)
        entry["final_rate"] = apply_markup(base, profile, service_code)
        priced.append(entry)

    completed = CompletedShipment(
        record=record,
        index=index,
        current_cost=current_cost,
        all_rates=priced,
    )
    if not priced:
        logger.debug("no_priced_rates shipment_id=%s", record.id)
        return completed

    best = min(priced, key=lambda r: r["final_rate"])
    completed.best_rate = best
    completed.final_rate = best["final_rate"]
    completed.markup_percentage = best["markup_percentage"]
    if current_cost is not None and current_cost > 0:
        result = calculate_savings_with_markup(
            current_cost,
            best["base_rate"],
            profile,
            rate_field(best, "service_code", "serviceCode"),
        )
        completed.savings = result.savings
        completed.savings_percentage = result.savings_percentage
    return completed


class UnconfiguredRateProvider:
    """Placeholder provider that rejects every request.

    Used by the API until a carrier client is supplied to ``create_app``.
    """

    async def get_rates(self, request: RateRequest) -> list[dict[str, Any]]:
        raise RateProviderError("No rate provider configured", retryable=False)
