from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from ..models.classification import ClassifiedRow, FieldChange, ImportPlan, RowKind
from ..models.records import BuildingRecord, ExistingBuilding
from .address_key import match_keys
from .matcher import RegistryIndex

"""Field-level diff and row classification.

Only fields in DIFF_FIELDS are compared, and only those the incoming record
actually provided. Identity fields (street, house number, postal code, city)
are the match basis and never part of a diff.

classify():
    no entity                         -> new
    empty diff                        -> unchanged
    diff, override inactive           -> update
    diff, manual_override_active      -> blocked
"""

__all__ = [
    "DIFF_FIELDS",
    "compute_diff",
    "classify",
    "build_plan",
    "drop_duplicate_new",
]

DIFF_FIELDS: tuple[str, ...] = (
    "residential_units",
    "rollout_type",
    "rollout_status",
    "civil_works_done",
    "apl_set",
    "cable_tv_available",
    "building_id_v2",
    "building_id_k7",
)


def compute_diff(record: BuildingRecord, existing: ExistingBuilding) -> list[FieldChange]:
    """Ordered list of (field, old, new) for provided fields that differ."""
    changes: list[FieldChange] = []
    for name in DIFF_FIELDS:
        if name not in record.provided:
            continue
        new: Any = getattr(record, name)
        old: Any = existing.value(name)
        if new != old:
            changes.append(FieldChange(name, old, new))
    return changes


def classify(record: BuildingRecord, existing: ExistingBuilding | None) -> ClassifiedRow:
    if existing is None:
        return ClassifiedRow(record=record, kind=RowKind.NEW)
    diff = compute_diff(record, existing)
    if not diff:
        kind = RowKind.UNCHANGED
    elif existing.manual_override_active:
        kind = RowKind.BLOCKED
    else:
        kind = RowKind.UPDATE
    return ClassifiedRow(record=record, kind=kind, existing=existing, diff=diff)


def build_plan(records: Iterable[BuildingRecord], index: RegistryIndex) -> ImportPlan:
    """Classify every record against the loaded registry, keeping source order.

    Only the first row matching a given registry building is classified;
    later rows for the same building are counted in ``plan.duplicates``.
    """
    plan = ImportPlan()
    matched: set[str] = set()
    for record in records:
        existing = index.resolve(record)
        if existing is not None:
            if existing.id in matched:
                plan.duplicates += 1
                continue
            matched.add(existing.id)
        plan.add(classify(record, existing))
    return plan


def drop_duplicate_new(plan: ImportPlan) -> int:
    """Keep only the first new row per address; returns the number dropped.

    Two rows of the same file resolving to the same (not yet existing)
    building would otherwise create it twice. Dropped rows are added to
    ``plan.duplicates``.
    """
    seen: set[str] = set()
    kept: list[ClassifiedRow] = []
    for row in plan.new:
        keys = match_keys(**row.record.address_fields())
        if any(k in seen for k in keys):
            continue
        seen.update(keys)
        kept.append(row)
    dropped = len(plan.new) - len(kept)
    plan.new = kept
    plan.duplicates += dropped
    return dropped
