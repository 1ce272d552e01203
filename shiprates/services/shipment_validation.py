"""Per-shipment validation for mapped CSV rows.

Validation failures are expected data, not exceptions: every record gets a
ValidationResult with field-keyed errors and warnings. Only errors make a
record invalid; warnings flag data that will degrade rate accuracy.
"""

import asyncio
import logging
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from shiprates.services.shipment_mapping import ShipmentRecord

logger = logging.getLogger(__name__)

VALIDATE_YIELD_EVERY = 50

MIN_ZIP_LENGTH = 5
MAX_WEIGHT_LBS = 150.0
MAX_DIMENSION_IN = 108.0

_NUMBER_PREFIX = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")

US_STATE_CODES = frozenset({
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA",
    "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD",
    "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
    "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC",
    "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
    "DC", "PR", "VI", "GU", "AS", "MP",
})


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one shipment record."""

    is_valid: bool
    errors: dict[str, list[str]] = field(default_factory=dict)
    warnings: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": {k: list(v) for k, v in self.errors.items()},
            "warnings": {k: list(v) for k, v in self.warnings.items()},
        }


def parse_number(value: Any) -> float | None:
    """Parse a spreadsheet number, tolerating a trailing unit or currency sign.

    Returns None for missing, non-numeric, or non-finite values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).replace("$", "").replace(",", "")
        match = _NUMBER_PREFIX.match(text)
        if not match:
            return None
        number = float(match.group(1))
    if not math.isfinite(number):
        return None
    return number


def weight_in_pounds(shipment: Mapping[str, Any]) -> float | None:
    """Return the shipment weight in pounds, converting ounces when flagged."""
    weight = parse_number(shipment.get("weight"))
    if weight is None:
        return None
    unit = str(shipment.get("weightUnit") or "").lower()
    raw = shipment.get("weight")
    if "oz" in unit or (isinstance(raw, str) and "oz" in raw.lower()):
        weight = weight / 16
    return weight


def _zip_ok(value: Any) -> bool:
    if value is None:
        return False
    return len(str(value).strip()) >= MIN_ZIP_LENGTH


def validate_shipment(shipment: ShipmentRecord | Mapping[str, Any]) -> ValidationResult:
    """Validate one shipment.

    Errors (record invalid):
        originZip / destZip missing or shorter than 5 characters.
        weight missing, not a finite number, or not positive.

    Warnings:
        weight over 150 lb, implausible dimensions, missing current rate,
        unknown state codes, missing city information.
    """
    data = shipment.fields if isinstance(shipment, ShipmentRecord) else shipment
    errors: dict[str, list[str]] = {}
    warnings: dict[str, list[str]] = {}

    if not _zip_ok(data.get("originZip")):
        errors["originZip"] = ["Invalid origin ZIP code"]
    if not _zip_ok(data.get("destZip")):
        errors["destZip"] = ["Invalid destination ZIP code"]

    weight = weight_in_pounds(data)
    if weight is None or weight <= 0:
        errors["weight"] = ["Invalid weight"]
    elif weight > MAX_WEIGHT_LBS:
        warnings["weight"] = [f"Weight exceeds standard package limit ({MAX_WEIGHT_LBS:g} lbs)"]

    for name in ("length", "width", "height"):
        raw = data.get(name)
        if raw is None or raw == "":
            continue
        value = parse_number(raw)
        if value is None or value <= 0:
            warnings[name] = [f"{name.capitalize()} must be a positive number"]
        elif value > MAX_DIMENSION_IN:
            warnings[name] = [f"{name.capitalize()} exceeds maximum ({MAX_DIMENSION_IN:g} inches)"]

    current_rate = data.get("currentRate")
    if current_rate is None or current_rate == "":
        warnings["currentRate"] = ["Missing cost data - cannot calculate savings"]
    elif parse_number(current_rate) is None:
        warnings["currentRate"] = ["Cost must be a valid number"]

    for name in ("shipperState", "recipientState"):
        state = data.get(name)
        if state and str(state).strip().upper() not in US_STATE_CODES:
            warnings[name] = ["Invalid state code (use 2-letter abbreviation like CA, NY, TX)"]

    if not data.get("shipperCity") and not data.get("recipientCity"):
        warnings["addresses"] = ["City information missing - may affect rate accuracy"]

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


async def validate_rows(
    shipments: Sequence[ShipmentRecord | Mapping[str, Any]],
    start_index: int = 0,
    yield_every: int = VALIDATE_YIELD_EVERY,
) -> dict[int, ValidationResult]:
    """Validate a chunk of shipments.

    Results are keyed by ``start_index + offset``. Control is handed back
    to the event loop every ``yield_every`` records.
    """
    results: dict[int, ValidationResult] = {}
    for offset, shipment in enumerate(shipments):
        results[start_index + offset] = validate_shipment(shipment)
        if offset > 0 and offset % yield_every == 0:
            await asyncio.sleep(0)

    invalid = sum(1 for r in results.values() if not r.is_valid)
    logger.debug(
        "validate_rows start_index=%d checked=%d invalid=%d",
        start_index,
        len(results),
        invalid,
    )
    return results
