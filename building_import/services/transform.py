from __future__ import annotations

from ..models.records import BuildingRecord, K7ServiceRecord, SourceRow
from .column_mapper import ResolvedMapping

"""Row transform: SourceRow + ResolvedMapping -> canonical record.

Value coercion rules:
- residential_units: integer, falls back to 1
- rollout_type: "ftth" / "fttb" when contained in the cell, otherwise unset
- rollout_status: abgeschlossen / im_ausbau / geplant
- boolean flags: 1, true, ja, yes, x -> True, anything else False

Rows without street or house number are invalid (None).
"""

__all__ = [
    "TRUE_VALUES",
    "parse_bool",
    "parse_units",
    "parse_rollout_type",
    "parse_rollout_status",
    "transform_building",
    "transform_k7_service",
]

TRUE_VALUES = frozenset({"1", "true", "ja", "yes", "x"})

_TEXT_FIELDS = ("street", "house_number", "city", "postal_code", "building_id_v2", "building_id_k7")
_BOOL_FIELDS = ("civil_works_done", "apl_set", "cable_tv_available")


def _cell(row: SourceRow, mapping: ResolvedMapping, name: str) -> str:
    index = mapping.index(name)
    if index is None:
        return ""
    return row.cell(index).replace('"', "").strip()


def parse_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_VALUES


def parse_units(value: str) -> int:
    try:
        units = int(value.strip())
    except ValueError:
        return 1
    return units or 1


def parse_rollout_type(value: str) -> str | None:
    art = value.lower()
    if "ftth" in art:
        return "ftth"
    if "fttb" in art:
        return "fttb"
    return None


def parse_rollout_status(value: str) -> str:
    status = value.strip().lower()
    if "abgeschlossen" in status or status in ("fertig", "done"):
        return "abgeschlossen"
    if "ausbau" in status or status == "in_progress":
        return "im_ausbau"
    return "geplant"


def transform_building(
    row: SourceRow, mapping: ResolvedMapping, default_city: str | None = None
) -> BuildingRecord | None:
    """Build a typed BuildingRecord; None when identity fields are empty."""
    values: dict[str, object] = {}
    provided: set[str] = set()

    for name in _TEXT_FIELDS:
        value = _cell(row, mapping, name)
        if value:
            values[name] = value
            provided.add(name)

    units = _cell(row, mapping, "residential_units")
    if units:
        values["residential_units"] = parse_units(units)
        provided.add("residential_units")

    art = _cell(row, mapping, "rollout_type")
    if art:
        parsed_art = parse_rollout_type(art)
        if parsed_art is not None:
            values["rollout_type"] = parsed_art
            provided.add("rollout_type")

    status = _cell(row, mapping, "rollout_status")
    if status:
        values["rollout_status"] = parse_rollout_status(status)
        provided.add("rollout_status")

    for name in _BOOL_FIELDS:
        flag = _cell(row, mapping, name)
        if flag:
            values[name] = parse_bool(flag)
            provided.add(name)

    if not values.get("street") or not values.get("house_number"):
        return None
    if "city" not in values and default_city:
        values["city"] = default_city

    return BuildingRecord(provided=frozenset(provided), source=row, **values)  # type: ignore[arg-type]


def transform_k7_service(row: SourceRow, mapping: ResolvedMapping) -> K7ServiceRecord | None:
    """Build a K7ServiceRecord; None when identity fields are empty."""
    street = _cell(row, mapping, "street")
    house_number = _cell(row, mapping, "house_number")
    if not street or not house_number:
        return None
    return K7ServiceRecord(
        street=street,
        house_number=house_number,
        postal_code=_cell(row, mapping, "postal_code") or None,
        city=_cell(row, mapping, "city") or None,
        k7_building_id=_cell(row, mapping, "k7_building_id") or None,
        service_product_id=_cell(row, mapping, "service_product_id") or None,
        service_product=_cell(row, mapping, "service_product") or None,
        bandwidth_id=_cell(row, mapping, "bandwidth_id") or None,
        bandwidth=_cell(row, mapping, "bandwidth") or None,
        source=row,
    )
