from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

"""Ledger models: ImportBatch and UndoRecord.

One ImportBatch is persisted per import run (csv_import_logs row). It is
created before committing starts, mutated as chunks complete, finalized once,
and may later be flipped to reverted exactly once.

UndoRecord JSON contract:
    {"type": "create", "id": "<entity id>"}
    {"type": "update", "id": "<entity id>", "previous": {<full pre-image>}}
"""

__all__ = [
    "ImportKind",
    "UndoType",
    "UndoRecord",
    "ImportBatch",
    "CANCELLED_MARKER",
]

CANCELLED_MARKER = "Import cancelled by operator"


class ImportKind(Enum):
    BUILDINGS = "buildings"
    K7_SERVICES = "k7_services"


class UndoType(Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class UndoRecord:
    """Minimal state needed to reverse one entity change."""
    type: UndoType
    entity_id: str
    previous: dict[str, Any] | None = None  # update のみ: 更新前の完全な行

    @staticmethod
    def create(entity_id: str) -> UndoRecord:
        return UndoRecord(type=UndoType.CREATE, entity_id=str(entity_id))

    @staticmethod
    def update(entity_id: str, previous: dict[str, Any]) -> UndoRecord:
        return UndoRecord(type=UndoType.UPDATE, entity_id=str(entity_id), previous=dict(previous))

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value, "id": self.entity_id}
        if self.type is UndoType.UPDATE:
            data["previous"] = self.previous or {}
        return data

    @staticmethod
    def from_json(data: dict[str, Any]) -> UndoRecord:
        undo_type = UndoType(data["type"])
        if undo_type is UndoType.UPDATE:
            return UndoRecord.update(data["id"], data.get("previous") or {})
        return UndoRecord.create(data["id"])


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ImportBatch:
    """One import run as recorded in the ledger.

    The persisted columns are id, kind, file_name, the four record counters,
    affected_ids, undo_records, errors, is_reverted and the timestamps. The
    remaining counters are run diagnostics reported in the summary only.
    """
    kind: ImportKind
    file_name: str
    id: str | None = None
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    affected_ids: list[str] = field(default_factory=list)
    undo_records: list[UndoRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    is_reverted: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    reverted_at: datetime | None = None
    # 以下は永続化しない実行時カウンタ
    ignored: int = 0
    invalid: int = 0
    unchanged: int = 0
    blocked: int = 0
    duplicates: int = 0
    unmatched: int = 0
    cancelled: bool = False

    @property
    def committed(self) -> int:
        """Rows written successfully (created + updated)."""
        return self.created + self.updated

    def record_create(self, entity_id: str) -> None:
        self.undo_records.append(UndoRecord.create(entity_id))
        self.affected_ids.append(str(entity_id))
        self.created += 1

    def record_update(self, entity_id: str, previous: dict[str, Any]) -> None:
        self.undo_records.append(UndoRecord.update(entity_id, previous))
        self.affected_ids.append(str(entity_id))
        self.updated += 1

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def uncovered_ids(self) -> list[str]:
        """Affected ids that have no UndoRecord (should always be empty)."""
        covered = {u.entity_id for u in self.undo_records}
        return [i for i in self.affected_ids if i not in covered]

    def to_row(self) -> dict[str, Any]:
        """Column values for the csv_import_logs table."""
        return {
            "import_type": self.kind.value,
            "file_name": self.file_name,
            "records_processed": self.processed,
            "records_created": self.created,
            "records_updated": self.updated,
            "records_skipped": self.skipped,
            "affected_ids": list(self.affected_ids),
            "undo_records": [u.to_json() for u in self.undo_records],
            "errors": list(self.errors) if self.errors else None,
            "is_reverted": self.is_reverted,
            "created_at": self.created_at,
            "reverted_at": self.reverted_at,
        }

    @staticmethod
    def from_row(row: dict[str, Any]) -> ImportBatch:
        return ImportBatch(
            id=str(row["id"]),
            kind=ImportKind(row["import_type"]),
            file_name=row.get("file_name") or "",
            processed=row.get("records_processed") or 0,
            created=row.get("records_created") or 0,
            updated=row.get("records_updated") or 0,
            skipped=row.get("records_skipped") or 0,
            affected_ids=[str(i) for i in (row.get("affected_ids") or [])],
            undo_records=[UndoRecord.from_json(u) for u in (row.get("undo_records") or [])],
            errors=list(row.get("errors") or []),
            is_reverted=bool(row.get("is_reverted")),
            created_at=row.get("created_at") or _utcnow(),
            reverted_at=row.get("reverted_at"),
        )
