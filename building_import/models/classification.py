from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .records import BuildingRecord, ExistingBuilding

"""Diff and classification results produced by the diff engine."""

__all__ = [
    "RowKind",
    "FieldChange",
    "ClassifiedRow",
    "ImportPlan",
]


class RowKind(Enum):
    NEW = "new"
    UNCHANGED = "unchanged"
    UPDATE = "update"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class FieldChange:
    field: str
    old: Any
    new: Any

    def as_tuple(self) -> tuple[str, Any, Any]:
        return (self.field, self.old, self.new)


@dataclass
class ClassifiedRow:
    record: BuildingRecord
    kind: RowKind
    existing: ExistingBuilding | None = None
    diff: list[FieldChange] = field(default_factory=list)
    override_cleared: bool = False  # オペレータが保護フラグ解除を明示した

    @property
    def entity(self) -> ExistingBuilding:
        """The matched registry building; only new rows have none."""
        if self.existing is None:
            raise ValueError(f"{self.kind.value} row has no matched building")
        return self.existing

    def update_values(self) -> dict[str, Any]:
        """Column values written for an update row."""
        values = {c.field: c.new for c in self.diff}
        if self.override_cleared:
            values["has_manual_override"] = False
            values["manual_override_active"] = False
        return values


@dataclass
class ImportPlan:
    """Rows grouped by classification, in source order."""
    new: list[ClassifiedRow] = field(default_factory=list)
    unchanged: list[ClassifiedRow] = field(default_factory=list)
    update: list[ClassifiedRow] = field(default_factory=list)
    blocked: list[ClassifiedRow] = field(default_factory=list)
    duplicates: int = 0  # 同一建物に一致した後続行

    def add(self, row: ClassifiedRow) -> None:
        {
            RowKind.NEW: self.new,
            RowKind.UNCHANGED: self.unchanged,
            RowKind.UPDATE: self.update,
            RowKind.BLOCKED: self.blocked,
        }[row.kind].append(row)

    def __len__(self) -> int:
        return len(self.new) + len(self.unchanged) + len(self.update) + len(self.blocked)
