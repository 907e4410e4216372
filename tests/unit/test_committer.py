from __future__ import annotations

import asyncio
from pathlib import Path

from building_import.db.memory import MemoryStore
from building_import.logging.error_log import ErrorLogBuffer
from building_import.models.classification import ImportPlan
from building_import.models.import_batch import ImportBatch, ImportKind, UndoType
from building_import.models.records import BuildingRecord, ExistingBuilding
from building_import.services.cancellation import CancellationToken
from building_import.services.committer import (
    chunked,
    commit_k7_services,
    commit_plan,
    dedupe_services,
)
from building_import.services.diff_engine import classify
from building_import.services.progress import ProgressReporter


def _new_rows(n: int):
    return [
        classify(BuildingRecord(street="Lindenweg", house_number=str(i),
                                provided=frozenset({"street", "house_number"})), None)
        for i in range(n)
    ]


def _batch(kind=ImportKind.BUILDINGS) -> ImportBatch:
    return ImportBatch(kind=kind, file_name="test.csv", id="batch-1")


def test_chunked():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []


def test_creates_in_chunks_with_undo_records(store: MemoryStore):
    batch = _batch()
    stats = asyncio.run(commit_plan(ImportPlan(new=_new_rows(5)), store, batch, CancellationToken(), chunk_size=2))
    assert stats.total_chunks == 3
    assert store.insert_calls == 3
    assert batch.created == 5
    assert len(batch.undo_records) == 5
    assert all(u.type is UndoType.CREATE for u in batch.undo_records)
    assert set(batch.affected_ids) == set(store.buildings)


def test_updates_after_creates_with_full_preimage(store: MemoryStore):
    building_id = store.seed_building(street="Lindenweg", house_number="5", rollout_type=None)
    before = dict(store.buildings[building_id])
    existing = ExistingBuilding.from_row(before)
    update = classify(
        BuildingRecord(street="Lindenweg", house_number="5", rollout_type="ftth",
                       provided=frozenset({"street", "house_number", "rollout_type"})),
        existing,
    )
    plan = ImportPlan(new=_new_rows(1), update=[update])
    batch = _batch()
    asyncio.run(commit_plan(plan, store, batch, CancellationToken()))
    assert (batch.created, batch.updated) == (1, 1)
    assert store.buildings[building_id]["rollout_type"] == "ftth"
    assert batch.undo_records[0].type is UndoType.CREATE
    assert batch.undo_records[1].type is UndoType.UPDATE
    assert batch.undo_records[1].previous == before


def test_failed_chunk_is_recorded_and_processing_continues(store: MemoryStore, tmp_path: Path):
    store.fail_on_insert = {2}
    batch = _batch()
    error_log = ErrorLogBuffer(tmp_path)
    asyncio.run(commit_plan(ImportPlan(new=_new_rows(6)), store, batch, CancellationToken(),
                            chunk_size=2, error_log=error_log))
    assert batch.created == 4
    assert len(batch.errors) == 1
    assert batch.errors[0].startswith("Chunk 2: ")
    assert error_log.records[0].chunk == 2
    assert error_log.records[0].batch_id == "batch-1"
    assert batch.uncovered_ids() == []


def test_cancellation_checked_before_each_chunk(store: MemoryStore):
    token = CancellationToken()

    def _on_progress(phase: str, current: int, total: int) -> None:
        if current >= 4:
            token.cancel()

    batch = _batch()
    progress = ProgressReporter(_on_progress, enabled=False)
    asyncio.run(commit_plan(ImportPlan(new=_new_rows(10)), store, batch, token, chunk_size=2, progress=progress))
    assert batch.created == 4
    assert batch.cancelled
    assert len(store.buildings) == 4


def test_cancellation_checked_before_each_update(store: MemoryStore):
    rows = []
    for i in range(3):
        building_id = store.seed_building(street="Lindenweg", house_number=str(i))
        existing = ExistingBuilding.from_row(dict(store.buildings[building_id]))
        rows.append(classify(BuildingRecord(street="Lindenweg", house_number=str(i), apl_set=True,
                                            provided=frozenset({"street", "house_number", "apl_set"})), existing))
    token = CancellationToken()
    original = store.update_building

    async def _update_then_cancel(building_id, values):
        await original(building_id, values)
        token.cancel()

    store.update_building = _update_then_cancel
    batch = _batch()
    asyncio.run(commit_plan(ImportPlan(update=rows), store, batch, token))
    assert batch.updated == 1
    assert batch.cancelled


def test_dedupe_services_against_table_and_file():
    existing = {("b-1", "LP1", "BW1")}
    entries = [
        {"building_id": "b-1", "service_product_id": "LP1", "bandwidth_id": "BW1"},
        {"building_id": "b-1", "service_product_id": "LP2", "bandwidth_id": None},
        {"building_id": "b-1", "service_product_id": "LP2", "bandwidth_id": "", "service_product": "anders"},
        {"building_id": "b-2", "service_product_id": None, "bandwidth_id": None},
    ]
    kept, duplicates = dedupe_services(entries, existing)
    assert duplicates == 2
    assert [(e["building_id"], e["service_product_id"]) for e in kept] == [("b-1", "LP2"), ("b-2", None)]


def test_commit_k7_services(store: MemoryStore):
    building_id = store.seed_building(street="Lindenweg", house_number="5")
    entries = [{"building_id": building_id, "k7_building_id": "K7", "service_product_id": str(i),
                "service_product": None, "bandwidth_id": None, "bandwidth": None} for i in range(3)]
    batch = _batch(ImportKind.K7_SERVICES)
    asyncio.run(commit_k7_services(entries, store, batch, CancellationToken(), chunk_size=2))
    assert batch.created == 3
    assert len(store.k7_services) == 3
    assert asyncio.run(store.fetch_k7_service_keys()) == {(building_id, str(i), "") for i in range(3)}
