from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from ..models.config_models import ImportSettings
from ..models.import_batch import ImportBatch, ImportKind

"""Store interface used by the import pipeline.

Every method is awaitable: the pipeline runs as a single asyncio task and
store calls are its suspension points. Implementations raise StoreError for
failed statements. Each call is its own transaction; there is no isolation
across calls and a single import at a time is a precondition.
"""

__all__ = [
    "RegistryStore",
    "K7ServiceKey",
    "BUILDINGS_TABLE",
    "K7_SERVICES_TABLE",
    "IMPORT_LOG_TABLE",
    "SETTINGS_TABLE",
    "NON_RESTORABLE_COLUMNS",
]

BUILDINGS_TABLE = "buildings"
K7_SERVICES_TABLE = "building_k7_services"
IMPORT_LOG_TABLE = "csv_import_logs"
SETTINGS_TABLE = "import_settings"

# 取り消し時に書き戻さない列
NON_RESTORABLE_COLUMNS = frozenset({"id", "created_at", "updated_at"})

K7ServiceKey = tuple[str, str, str]  # (building_id, service_product_id, bandwidth_id)


class RegistryStore(ABC):
    """Async persistence boundary for registry, K7 services, ledger and settings."""

    # --- buildings -----------------------------------------------------
    @abstractmethod
    async def fetch_buildings_page(self, offset: int, limit: int) -> list[dict[str, Any]]:
        """Return at most ``limit`` full building rows in a stable order."""

    @abstractmethod
    async def insert_buildings(self, rows: list[dict[str, Any]]) -> list[str]:
        """Bulk insert; returns generated ids in insert order."""

    @abstractmethod
    async def update_building(self, building_id: str, values: dict[str, Any]) -> None:
        """Update one building; raises StoreError when the id does not exist."""

    @abstractmethod
    async def delete_buildings(self, ids: list[str]) -> int:
        """Delete buildings by id; returns the number of rows removed."""

    # --- K7 services ---------------------------------------------------
    @abstractmethod
    async def fetch_k7_service_keys(self) -> set[K7ServiceKey]:
        """Existing (building_id, service_product_id or '', bandwidth_id or '') keys."""

    @abstractmethod
    async def insert_k7_services(self, rows: list[dict[str, Any]]) -> list[str]:
        """Bulk insert; returns generated ids in insert order."""

    @abstractmethod
    async def delete_k7_services(self, ids: list[str]) -> int:
        ...

    # --- ledger --------------------------------------------------------
    @abstractmethod
    async def create_batch(self, batch: ImportBatch) -> str:
        """Persist a new ledger row and return its id."""

    @abstractmethod
    async def update_batch(self, batch: ImportBatch) -> None:
        ...

    @abstractmethod
    async def get_batch(self, batch_id: str) -> ImportBatch | None:
        ...

    @abstractmethod
    async def latest_batch(self, kind: ImportKind, *, include_reverted: bool = False) -> ImportBatch | None:
        ...

    @abstractmethod
    async def mark_reverted(self, batch_id: str, reverted_at: datetime) -> bool:
        """Atomically flip is_reverted; False when the batch was already reverted."""

    # --- settings ------------------------------------------------------
    @abstractmethod
    async def load_settings(self) -> ImportSettings:
        """The settings record; defaults when none has been saved yet."""

    @abstractmethod
    async def save_settings(self, settings: ImportSettings) -> None:
        ...

    async def close(self) -> None:  # pragma: no cover - default no-op
        return None

    # --- helpers shared by the ledger ----------------------------------
    async def delete_entities(self, kind: ImportKind, ids: list[str]) -> int:
        if kind is ImportKind.BUILDINGS:
            return await self.delete_buildings(ids)
        return await self.delete_k7_services(ids)

    async def restore_building(self, building_id: str, previous: dict[str, Any]) -> None:
        values = {k: v for k, v in previous.items() if k not in NON_RESTORABLE_COLUMNS}
        await self.update_building(building_id, values)
