"""Row mapping for uploaded CSV shipment batches.

The user picks, for each shipment field, which spreadsheet column feeds it.
Deterministic code applies that lookup table to every row.

Example:
    mapping = {"originZip": "Ship From ZIP", "weight": "Weight (lb)"}
    records = await map_rows(rows, mapping, start_index=0)
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)

# Column selector value meaning "this field is not mapped"
NO_MAPPING = "__NONE__"

MAP_YIELD_EVERY = 100

# Shipment fields the column mapper offers. Mappings may name others; they
# are carried through as arbitrary mapped fields.
SHIPMENT_FIELDS = (
    "trackingId",
    "service",
    "carrier",
    "weight",
    "weightUnit",
    "currentRate",
    "originZip",
    "destZip",
    "length",
    "width",
    "height",
    "residential",
    "shipperName",
    "shipperAddress",
    "shipperCity",
    "shipperState",
    "recipientName",
    "recipientAddress",
    "recipientCity",
    "recipientState",
    "zone",
)


def _freeze(fields: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(fields))


@dataclass(frozen=True)
class ShipmentRecord:
    """One uploaded row mapped into shipment fields.

    Attributes:
        id: 1-based sequential id, stable for the batch.
        fields: Read-only view of the mapped field values.
    """

    id: int
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.fields, MappingProxyType):
            object.__setattr__(self, "fields", _freeze(self.fields))

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    @property
    def origin_zip(self) -> str | None:
        return self.fields.get("originZip")

    @property
    def dest_zip(self) -> str | None:
        return self.fields.get("destZip")

    @property
    def service(self) -> str | None:
        return self.fields.get("service")

    @property
    def is_residential(self) -> bool:
        return parse_flag(self.fields.get("residential"))

    def to_dict(self) -> dict[str, Any]:
        """Plain dict form with ``id`` alongside the mapped fields."""
        return {"id": self.id, **self.fields}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ShipmentRecord":
        values = dict(data)
        record_id = int(values.pop("id", 0) or 0)
        return cls(id=record_id, fields=values)


def parse_flag(value: Any) -> bool:
    """Interpret spreadsheet truthiness ("Y", "yes", "true", "1", "residential")."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"y", "yes", "true", "1", "residential", "res"}


def map_row(
    row: Mapping[str, Any],
    mappings: Mapping[str, str | None],
    shipment_id: int,
    origin_zip_override: str | None = None,
) -> ShipmentRecord:
    """Map a single row.

    A field is copied only when its column is set, is not NO_MAPPING and the
    row holds a non-None value for it. String values are trimmed. A non-blank
    override replaces originZip.
    """
    fields: dict[str, Any] = {}
    for field_name, column in mappings.items():
        if not column or column == NO_MAPPING:
            continue
        if column not in row:
            continue
        value = row[column]
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
        fields[field_name] = value

    if origin_zip_override and origin_zip_override.strip():
        fields["originZip"] = origin_zip_override.strip()

    return ShipmentRecord(id=shipment_id, fields=fields)


async def map_rows(
    rows: Sequence[Mapping[str, Any]],
    mappings: Mapping[str, str | None],
    start_index: int = 0,
    origin_zip_override: str | None = None,
    yield_every: int = MAP_YIELD_EVERY,
) -> list[ShipmentRecord]:
    """Map a chunk of raw rows into shipment records.

    Record ids are ``start_index + offset + 1``. Control is handed back to
    the event loop every ``yield_every`` records.

    Args:
        rows: Raw rows keyed by column header.
        mappings: Shipment field -> source column.
        start_index: Offset of this chunk within the whole upload.
        origin_zip_override: Replaces originZip for every record when non-blank.
        yield_every: Cooperative yield cadence.

    Returns:
        One ShipmentRecord per row, in order.
    """
    records: list[ShipmentRecord] = []
    for offset, row in enumerate(rows):
        records.append(
            map_row(row, mappings, start_index + offset + 1, origin_zip_override)
        )
        if offset > 0 and offset % yield_every == 0:
            await asyncio.sleep(0)

    logger.debug(
        "map_rows start_index=%d mapped=%d override=%s",
        start_index,
        len(records),
        bool(origin_zip_override and origin_zip_override.strip()),
    )
    return records


def validate_mappings(
    mappings: Mapping[str, str | None],
    origin_zip_override: str | None = None,
) -> list[str]:
    """Return errors for mappings missing the fields rating depends on.

    originZip may be left unmapped when an override supplies it.
    """
    errors = []
    required_fields = ["destZip", "weight"]
    if not (origin_zip_override and origin_zip_override.strip()):
        required_fields.insert(0, "originZip")
    for required in required_fields:
        column = mappings.get(required)
        if not column or column == NO_MAPPING:
            errors.append(f"Missing required field mapping: '{required}'")
    return errors
