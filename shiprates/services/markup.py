"""Markup engine: turn a carrier base rate into the rate shown to a client.

Profiles come in three kinds:
- global: one percentage for every rate
- per_service: percentage per service code, 0% for unlisted codes
- tiered: first tier whose [min, max] range contains the base rate
  (max of -1 means open-ended); no matching tier leaves the rate as is

Unknown profile kinds and a missing profile leave the rate unchanged.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shiprates.db.models import MarkupProfileRecord, MarkupType

UNBOUNDED = -1


class MarkupTier(BaseModel):
    """One band of a tiered profile."""

    model_config = ConfigDict(populate_by_name=True)

    min_amount: float = Field(default=0.0, alias="minAmount")
    max_amount: float = Field(default=UNBOUNDED, alias="maxAmount")
    percentage: float = 0.0

    def contains(self, base_rate: float) -> bool:
        if base_rate < self.min_amount:
            return False
        return self.max_amount == UNBOUNDED or base_rate <= self.max_amount


class MarkupProfile(BaseModel):
    """A markup profile as applied at rating time.

    ``config`` keeps the stored shape: ``global_percentage``,
    ``service_markups`` or ``tiers`` (camelCase keys are accepted too).
    """

    id: str | None = None
    name: str | None = None
    type: str
    config: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: MarkupProfileRecord) -> "MarkupProfile":
        return cls(
            id=record.id,
            name=record.name,
            type=record.markup_type,
            config=record.get_config(),
        )

    @property
    def kind(self) -> str:
        # older saved configs spell it "per-service"
        return self.type.replace("-", "_")

    @property
    def global_percentage(self) -> float:
        value = self.config.get("global_percentage", self.config.get("globalPercentage"))
        return float(value or 0)

    @property
    def service_markups(self) -> dict[str, float]:
        raw = self.config.get("service_markups", self.config.get("serviceMarkups")) or {}
        return {str(code): float(pct or 0) for code, pct in raw.items()}

    @property
    def tiers(self) -> list[MarkupTier]:
        raw = self.config.get("tiers") or []
        return [MarkupTier.model_validate(t) for t in raw]


def _coerce_profile(profile: MarkupProfile | Mapping[str, Any] | None) -> MarkupProfile | None:
    if profile is None or isinstance(profile, MarkupProfile):
        return profile
    data = dict(profile)
    if "type" not in data and "markup_type" in data:
        data["type"] = data.pop("markup_type")
    if "config" not in data and "markup_config" in data:
        data["config"] = data.pop("markup_config")
    return MarkupProfile.model_validate(data)


def markup_percentage(
    base_rate: float,
    profile: MarkupProfile | Mapping[str, Any] | None,
    service_code: str | None = None,
) -> float:
    """Percentage the profile applies to ``base_rate`` (0 when none applies)."""
    profile = _coerce_profile(profile)
    if profile is None:
        return 0.0

    kind = profile.kind
    if kind == MarkupType.global_.value:
        return profile.global_percentage
    if kind == MarkupType.per_service.value:
        if not service_code:
            return 0.0
        return profile.service_markups.get(service_code, 0.0)
    if kind == MarkupType.tiered.value:
        for tier in profile.tiers:
            if tier.contains(base_rate):
                return tier.percentage
        return 0.0
    return 0.0


def apply_markup(
    base_rate: float,
    profile: MarkupProfile | Mapping[str, Any] | None,
    service_code: str | None = None,
) -> float:
    """Return ``base_rate`` marked up by the profile.

    Examples:
        global 15% on 100 -> 115
        per_service {"GROUND": 10} on 50 for GROUND -> 55, for AIR -> 50
    """
    pct = markup_percentage(base_rate, profile, service_code)
    if pct == 0:
        return base_rate
    # base * (1 + pct/100), summed so whole-cent inputs stay exact
    return base_rate + base_rate * pct / 100


@dataclass(frozen=True)
class SavingsResult:
    """Final client rate and savings versus the current rate."""

    final_rate: float
    savings: float
    savings_percentage: float


def calculate_savings_with_markup(
    current_rate: float,
    shipping_rate: float,
    profile: MarkupProfile | Mapping[str, Any] | None = None,
    service_code: str | None = None,
) -> SavingsResult:
    """Compose markup with the client's current rate.

    ``savings_percentage`` is 0 when ``current_rate`` is 0.
    """
    final_rate = apply_markup(shipping_rate, profile, service_code) if profile else shipping_rate
    savings = current_rate - final_rate
    savings_percentage = (savings / current_rate) * 100 if current_rate > 0 else 0.0
    return SavingsResult(
        final_rate=final_rate,
        savings=savings,
        savings_percentage=savings_percentage,
    )


@dataclass(frozen=True)
class MarkupBreakdown:
    """Per-shipment markup detail used for report totals."""

    current_cost: float
    base_rate: float
    markup_percentage: float
    markup_amount: float
    final_rate: float
    savings: float


def markup_breakdown(
    current_cost: float,
    base_rate: float,
    profile: MarkupProfile | Mapping[str, Any] | None,
    service_code: str | None = None,
) -> MarkupBreakdown:
    pct = markup_percentage(base_rate, profile, service_code)
    markup_amount = base_rate * pct / 100
    final_rate = base_rate + markup_amount
    return MarkupBreakdown(
        current_cost=current_cost,
        base_rate=base_rate,
        markup_percentage=pct,
        markup_amount=markup_amount,
        final_rate=final_rate,
        savings=current_cost - final_rate,
    )


def summarize_markup(breakdowns: Iterable[MarkupBreakdown]) -> dict[str, float]:
    """Report totals: cost, base, markup, final, savings and margin."""
    items = list(breakdowns)
    total_current = sum(b.current_cost for b in items)
    total_base = sum(b.base_rate for b in items)
    total_markup = sum(b.markup_amount for b in items)
    total_final = sum(b.final_rate for b in items)
    total_savings = sum(b.savings for b in items)
    return {
        "total_current_cost": total_current,
        "total_base_rate": total_base,
        "total_markup_amount": total_markup,
        "total_final_rate": total_final,
        "total_savings": total_savings,
        "savings_percentage": (total_savings / total_current) * 100 if total_current > 0 else 0.0,
        "total_margin": total_markup,
        "margin_percentage": (total_markup / total_final) * 100 if total_final > 0 else 0.0,
    }
