from __future__ import annotations

import logging
from dataclasses import dataclass

from ..db.store import RegistryStore
from ..models.records import BuildingRecord, ExistingBuilding, K7ServiceRecord, SourceRow
from .address_key import match_keys
from .cancellation import CancellationToken
from .progress import ProgressReporter

"""Registry matcher.

RegistryIndex pages through the registry once per run and indexes every
entity under both match key variants. A key resolves to at most one entity:
the first one loaded wins, later collisions are logged and counted.

UnmatchedCollector keeps rows that found no entity (K7 import) for display
and export, capped and de-duplicated by their primary key variant.
"""

__all__ = [
    "LOAD_PHASE",
    "RegistryIndex",
    "UnmatchedAddress",
    "UnmatchedCollector",
]

logger = logging.getLogger(__name__)

LOAD_PHASE = "Registry laden"


class RegistryIndex:
    def __init__(self) -> None:
        self._by_key: dict[str, ExistingBuilding] = {}
        self.entities: list[ExistingBuilding] = []
        self.collisions = 0

    def add(self, entity: ExistingBuilding) -> None:
        self.entities.append(entity)
        for key in match_keys(entity.street, entity.house_number, entity.postal_code, entity.city):
            held = self._by_key.get(key)
            if held is None:
                self._by_key[key] = entity
            elif held.id != entity.id:
                self.collisions += 1
                logger.warning("match key collision %r: keeping %s, ignoring %s", key, held.id, entity.id)

    @classmethod
    async def load(
        cls,
        store: RegistryStore,
        page_size: int = 1000,
        token: CancellationToken | None = None,
        progress: ProgressReporter | None = None,
    ) -> RegistryIndex:
        """Load the full registry page by page until a short page arrives.

        Raises ImportCancelled when the token is set between pages.
        """
        index = cls()
        offset = 0
        while True:
            if token is not None:
                token.raise_if_cancelled("import cancelled while loading the registry")
            page = await store.fetch_buildings_page(offset, page_size)
            for row in page:
                index.add(ExistingBuilding.from_row(row))
            offset += len(page)
            if progress is not None:
                progress.report(LOAD_PHASE, offset, 0)
            if len(page) < page_size:
                break
        logger.debug("registry loaded: %d entities, %d keys", len(index.entities), len(index._by_key))
        return index

    def lookup(
        self,
        street: str | None,
        house_number: str | None,
        postal_code: str | None,
        city: str | None,
    ) -> ExistingBuilding | None:
        for key in match_keys(street, house_number, postal_code, city):
            found = self._by_key.get(key)
            if found is not None:
                return found
        return None

    def resolve(self, record: BuildingRecord | K7ServiceRecord) -> ExistingBuilding | None:
        """Postal code variant first (when present), then the city variant."""
        return self.lookup(**record.address_fields())

    def __len__(self) -> int:
        return len(self.entities)


@dataclass(frozen=True)
class UnmatchedAddress:
    street: str
    house_number: str
    postal_code: str | None
    city: str | None
    source: SourceRow | None = None


class UnmatchedCollector:
    def __init__(self, limit: int = 5000) -> None:
        self.limit = limit
        self.entries: list[UnmatchedAddress] = []
        self.total = 0  # 上限を超えた分も含む件数
        self._seen: set[str] = set()

    def add(self, record: BuildingRecord | K7ServiceRecord) -> None:
        self.total += 1
        key = match_keys(**record.address_fields())[0]
        if key in self._seen or len(self.entries) >= self.limit:
            return
        self._seen.add(key)
        self.entries.append(
            UnmatchedAddress(
                street=record.street,
                house_number=record.house_number,
                postal_code=record.postal_code,
                city=record.city,
                source=record.source,
            )
        )

    @property
    def truncated(self) -> bool:
        return self.total > len(self.entries) and len(self.entries) >= self.limit

    def __len__(self) -> int:
        return len(self.entries)
