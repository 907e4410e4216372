from __future__ import annotations

import copy
import uuid
from datetime import UTC, datetime
from typing import Any

from ..models.config_models import ImportSettings
from ..models.import_batch import ImportBatch, ImportKind
from .errors import StoreError
from .store import K7ServiceKey, RegistryStore

"""In-memory store.

Used when DISABLE_DB_CONNECT=1 (mock mode) and by the test suite. Rows are
plain dicts with the same columns as the PostgreSQL tables; ids are uuid4
strings and timestamps ISO strings, matching what PostgresStore hands out.
"""

__all__ = [
    "MemoryStore",
]

_BUILDING_DEFAULTS: dict[str, Any] = {
    "postal_code": None,
    "city": None,
    "residential_units": 1,
    "rollout_type": None,
    "rollout_status": "geplant",
    "civil_works_done": False,
    "apl_set": False,
    "cable_tv_available": False,
    "building_id_v2": None,
    "building_id_k7": None,
    "has_manual_override": False,
    "manual_override_active": False,
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


class MemoryStore(RegistryStore):
    def __init__(self) -> None:
        self.buildings: dict[str, dict[str, Any]] = {}
        self.k7_services: dict[str, dict[str, Any]] = {}
        self.batches: dict[str, dict[str, Any]] = {}
        self.settings = ImportSettings()
        # テスト用: n 回目の insert/update 呼び出しで失敗させる
        self.fail_on_insert: set[int] = set()
        self.fail_on_update: set[str] = set()
        self.insert_calls = 0
        self.page_calls = 0

    # --- test helpers --------------------------------------------------
    def seed_building(self, **values: Any) -> str:
        building_id = values.pop("id", None) or str(uuid.uuid4())
        row = dict(_BUILDING_DEFAULTS)
        row.update(values)
        row["id"] = building_id
        row.setdefault("created_at", _now())
        row.setdefault("updated_at", row["created_at"])
        self.buildings[building_id] = row
        return building_id

    # --- buildings -----------------------------------------------------
    async def fetch_buildings_page(self, offset: int, limit: int) -> list[dict[str, Any]]:
        self.page_calls += 1
        rows = list(self.buildings.values())[offset:offset + limit]
        return [copy.deepcopy(r) for r in rows]

    async def insert_buildings(self, rows: list[dict[str, Any]]) -> list[str]:
        self.insert_calls += 1
        if self.insert_calls in self.fail_on_insert:
            raise StoreError(f"simulated insert failure (call {self.insert_calls})")
        ids: list[str] = []
        for values in rows:
            ids.append(self.seed_building(**copy.deepcopy(values)))
        return ids

    async def update_building(self, building_id: str, values: dict[str, Any]) -> None:
        if building_id in self.fail_on_update:
            raise StoreError(f"simulated update failure ({building_id})")
        row = self.buildings.get(building_id)
        if row is None:
            raise StoreError(f"building {building_id} not found")
        row.update(copy.deepcopy(values))
        row["updated_at"] = _now()

    async def delete_buildings(self, ids: list[str]) -> int:
        removed = 0
        for building_id in ids:
            if self.buildings.pop(building_id, None) is not None:
                removed += 1
        return removed

    # --- K7 services ---------------------------------------------------
    async def fetch_k7_service_keys(self) -> set[K7ServiceKey]:
        return {
            (str(r["building_id"]), r.get("service_product_id") or "", r.get("bandwidth_id") or "")
            for r in self.k7_services.values()
        }

    async def insert_k7_services(self, rows: list[dict[str, Any]]) -> list[str]:
        self.insert_calls += 1
        if self.insert_calls in self.fail_on_insert:
            raise StoreError(f"simulated insert failure (call {self.insert_calls})")
        ids: list[str] = []
        for values in rows:
            service_id = str(uuid.uuid4())
            row = dict(values)
            row["id"] = service_id
            row["created_at"] = _now()
            self.k7_services[service_id] = row
            ids.append(service_id)
        return ids

    async def delete_k7_services(self, ids: list[str]) -> int:
        removed = 0
        for service_id in ids:
            if self.k7_services.pop(service_id, None) is not None:
                removed += 1
        return removed

    # --- ledger --------------------------------------------------------
    async def create_batch(self, batch: ImportBatch) -> str:
        batch_id = str(uuid.uuid4())
        row = batch.to_row()
        row["id"] = batch_id
        self.batches[batch_id] = copy.deepcopy(row)
        return batch_id

    async def update_batch(self, batch: ImportBatch) -> None:
        if batch.id is None or batch.id not in self.batches:
            raise StoreError(f"batch {batch.id} not found")
        row = batch.to_row()
        row["id"] = batch.id
        self.batches[batch.id] = copy.deepcopy(row)

    async def get_batch(self, batch_id: str) -> ImportBatch | None:
        row = self.batches.get(batch_id)
        return ImportBatch.from_row(copy.deepcopy(row)) if row else None

    async def latest_batch(self, kind: ImportKind, *, include_reverted: bool = False) -> ImportBatch | None:
        candidates = [
            r for r in self.batches.values()
            if r["import_type"] == kind.value and (include_reverted or not r["is_reverted"])
        ]
        if not candidates:
            return None
        # 挿入順 = 作成順。同時刻でも最後に作られたものを返す
        return ImportBatch.from_row(copy.deepcopy(candidates[-1]))

    async def mark_reverted(self, batch_id: str, reverted_at: datetime) -> bool:
        row = self.batches.get(batch_id)
        if row is None:
            raise StoreError(f"batch {batch_id} not found")
        if row["is_reverted"]:
            return False
        row["is_reverted"] = True
        row["reverted_at"] = reverted_at
        return True

    # --- settings ------------------------------------------------------
    async def load_settings(self) -> ImportSettings:
        return self.settings

    async def save_settings(self, settings: ImportSettings) -> None:
        self.settings = settings
