from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Row and record models for the building registry import tool.

SourceRow is the raw parsed line (ephemeral). BuildingRecord and
K7ServiceRecord are the typed, validated representations produced by the
row transform; all downstream logic works on these and never consults the
raw headers again. ExistingBuilding is a registry entity as loaded from the
store.
"""

__all__ = [
    "SourceRow",
    "BuildingRecord",
    "K7ServiceRecord",
    "ExistingBuilding",
    "BUILDING_IDENTITY_FIELDS",
    "BUILDING_FIELDS",
    "K7_SERVICE_FIELDS",
]

# 照合に使う列 (差分対象外)
BUILDING_IDENTITY_FIELDS: tuple[str, ...] = ("street", "house_number", "postal_code", "city")

BUILDING_FIELDS: tuple[str, ...] = BUILDING_IDENTITY_FIELDS + (
    "residential_units",
    "rollout_type",
    "rollout_status",
    "civil_works_done",
    "apl_set",
    "cable_tv_available",
    "building_id_v2",
    "building_id_k7",
)

K7_SERVICE_FIELDS: tuple[str, ...] = (
    "k7_building_id",
    "service_product_id",
    "service_product",
    "bandwidth_id",
    "bandwidth",
)


@dataclass(frozen=True)
class SourceRow:
    """One parsed data line. The header list lives on the owning ParsedFile."""
    line_number: int  # 1-based line in the source file (header = 1)
    cells: tuple[str, ...]

    def cell(self, index: int) -> str:
        """Return the cell at index, empty string for missing trailing cells."""
        if 0 <= index < len(self.cells):
            return self.cells[index]
        return ""

    def padded(self, width: int) -> tuple[str, ...]:
        return tuple(self.cell(i) for i in range(width))


@dataclass(frozen=True)
class BuildingRecord:
    """Canonical building row.

    ``provided`` lists the fields that carried a non-empty source value. The
    diff engine compares only those; defaults fill the rest on insert.
    """
    street: str
    house_number: str
    postal_code: str | None = None
    city: str | None = None
    residential_units: int = 1
    rollout_type: str | None = None
    rollout_status: str = "geplant"
    civil_works_done: bool = False
    apl_set: bool = False
    cable_tv_available: bool = False
    building_id_v2: str | None = None
    building_id_k7: str | None = None
    provided: frozenset[str] = field(default_factory=frozenset)
    source: SourceRow | None = field(default=None, compare=False)

    def insert_values(self) -> dict[str, Any]:
        """Column values for a new registry row."""
        return {name: getattr(self, name) for name in BUILDING_FIELDS}

    def address_fields(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in BUILDING_IDENTITY_FIELDS}


@dataclass(frozen=True)
class K7ServiceRecord:
    """Canonical K7 service row (address for matching + service identifiers)."""
    street: str
    house_number: str
    postal_code: str | None = None
    city: str | None = None
    k7_building_id: str | None = None
    service_product_id: str | None = None
    service_product: str | None = None
    bandwidth_id: str | None = None
    bandwidth: str | None = None
    source: SourceRow | None = field(default=None, compare=False)

    @property
    def has_service_data(self) -> bool:
        return bool(self.k7_building_id or self.service_product_id or self.bandwidth_id)

    def service_values(self, building_id: str) -> dict[str, Any]:
        values: dict[str, Any] = {"building_id": building_id}
        values.update({name: getattr(self, name) for name in K7_SERVICE_FIELDS})
        return values

    def address_fields(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in BUILDING_IDENTITY_FIELDS}


@dataclass
class ExistingBuilding:
    """Registry entity as loaded from the store.

    ``snapshot`` holds the full row as read (all columns); it is the pre-image
    stored in update UndoRecords.
    """
    id: str
    street: str
    house_number: str
    postal_code: str | None
    city: str | None
    has_manual_override: bool = False
    manual_override_active: bool = False
    snapshot: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ExistingBuilding:
        return cls(
            id=str(row["id"]),
            street=row.get("street") or "",
            house_number=row.get("house_number") or "",
            postal_code=row.get("postal_code"),
            city=row.get("city"),
            has_manual_override=bool(row.get("has_manual_override")),
            manual_override_active=bool(row.get("manual_override_active")),
            snapshot=dict(row),
        )

    def value(self, name: str) -> Any:
        return self.snapshot.get(name)
