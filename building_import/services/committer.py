from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Iterator, Sequence
from typing import Any, TypeVar

from ..db.errors import StoreError
from ..db.store import K7ServiceKey, RegistryStore
from ..logging.error_log import ErrorLogBuffer
from ..models.classification import ClassifiedRow, ImportPlan
from ..models.error_record import ErrorRecord
from ..models.import_batch import ImportBatch
from ..models.processing_result import BatchStatsAccumulator, ChunkStats
from .cancellation import CancellationToken
from .progress import ProgressReporter

"""Chunked commit of an import plan.

Creates are written first, then updates, in chunks of ``chunk_size`` rows.
The cancellation token is checked before every chunk and before every single
update; a set token stops the loop without rolling back what is already
committed. A failing chunk is recorded on the batch ("Chunk <n>: <message>")
and in the error log, and the next chunk is attempted.

Every successful create/update appends its UndoRecord to the batch right
away, so a cancelled or partially failed run stays revertible.
"""

__all__ = [
    "COMMIT_PHASE",
    "DEFAULT_CHUNK_SIZE",
    "chunked",
    "commit_plan",
    "commit_k7_services",
    "dedupe_services",
    "service_key",
]

logger = logging.getLogger(__name__)

COMMIT_PHASE = "Import"
DEFAULT_CHUNK_SIZE = 500
CHUNK_ERROR_TYPE = "CHUNK_FAILED"

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


class _ChunkRun:
    """Shared bookkeeping of one commit run (chunk numbering, errors, timing)."""

    def __init__(
        self,
        batch: ImportBatch,
        token: CancellationToken,
        total: int,
        chunk_size: int,
        progress: ProgressReporter | None,
        error_log: ErrorLogBuffer | None,
    ) -> None:
        self.batch = batch
        self.chunk_size = chunk_size
        self.token = token
        self.total = total
        self.progress = progress
        self.error_log = error_log
        self.stats = BatchStatsAccumulator()
        self.chunk_no = 0
        self.done = 0

    def should_stop(self) -> bool:
        if self.token.cancelled:
            if not self.batch.cancelled:
                logger.warning("cancellation requested, stopping after %d rows", self.done)
            self.batch.cancelled = True
            return True
        return False

    def chunk_failed(self, error: Exception) -> None:
        message = f"Chunk {self.chunk_no}: {error}"
        self.batch.add_error(message)
        logger.error(message)
        if self.error_log is not None:
            self.error_log.append(
                ErrorRecord.create(
                    self.batch.file_name,
                    CHUNK_ERROR_TYPE,
                    str(error),
                    batch_id=self.batch.id,
                    chunk=self.chunk_no,
                )
            )

    def advance(self, rows: int) -> None:
        self.done += rows
        if self.progress is not None:
            self.progress.report(COMMIT_PHASE, self.done, self.total)


async def _insert_chunks(run: _ChunkRun, rows: Sequence[dict[str, Any]], insert: Any) -> bool:
    """Bulk insert in chunks; returns False when stopped by cancellation."""
    for chunk in chunked(rows, run.chunk_size):
        if run.should_stop():
            return False
        run.chunk_no += 1
        started = time.perf_counter()
        try:
            ids = await insert(chunk)
        except StoreError as e:
            run.chunk_failed(e)
        else:
            for entity_id in ids:
                run.batch.record_create(entity_id)
        run.stats.add_batch_time(time.perf_counter() - started)
        run.advance(len(chunk))
    return True


async def _update_chunks(run: _ChunkRun, rows: Sequence[ClassifiedRow], store: RegistryStore) -> None:
    for chunk in chunked(rows, run.chunk_size):
        if run.should_stop():
            return
        run.chunk_no += 1
        started = time.perf_counter()
        attempted = 0
        try:
            for row in chunk:
                if run.should_stop():
                    break
                entity = row.entity
                attempted += 1
                await store.update_building(entity.id, row.update_values())
                run.batch.record_update(entity.id, entity.snapshot)
        except StoreError as e:
            run.chunk_failed(e)
        run.stats.add_batch_time(time.perf_counter() - started)
        run.advance(attempted)
        if run.batch.cancelled:
            return


async def commit_plan(
    plan: ImportPlan,
    store: RegistryStore,
    batch: ImportBatch,
    token: CancellationToken,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    progress: ProgressReporter | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> ChunkStats:
    """Commit new rows, then update rows. Blocked and unchanged rows are skipped."""
    run = _ChunkRun(batch, token, len(plan.new) + len(plan.update), chunk_size, progress, error_log)
    creates = [row.record.insert_values() for row in plan.new]
    if await _insert_chunks(run, creates, store.insert_buildings):
        await _update_chunks(run, plan.update, store)
    stats = run.stats.get_stats()
    logger.debug(
        "commit finished: created=%d updated=%d chunks=%d errors=%d",
        batch.created, batch.updated, stats.total_chunks, len(batch.errors),
    )
    return stats


def service_key(entry: dict[str, Any]) -> K7ServiceKey:
    return (
        str(entry["building_id"]),
        entry.get("service_product_id") or "",
        entry.get("bandwidth_id") or "",
    )


def dedupe_services(
    entries: Iterable[dict[str, Any]], existing_keys: set[K7ServiceKey]
) -> tuple[list[dict[str, Any]], int]:
    """Drop entries whose key already exists in the table or earlier in the file.

    Entries that differ only in their description texts count as duplicates.
    Returns (entries to insert, number of duplicates dropped).
    """
    seen = set(existing_keys)
    kept: list[dict[str, Any]] = []
    duplicates = 0
    for entry in entries:
        key = service_key(entry)
        if key in seen:
            duplicates += 1
            continue
        seen.add(key)
        kept.append(entry)
    return kept, duplicates


async def commit_k7_services(
    entries: Sequence[dict[str, Any]],
    store: RegistryStore,
    batch: ImportBatch,
    token: CancellationToken,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    progress: ProgressReporter | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> ChunkStats:
    """Bulk insert already de-duplicated service entries."""
    run = _ChunkRun(batch, token, len(entries), chunk_size, progress, error_log)
    await _insert_chunks(run, entries, store.insert_k7_services)
    return run.stats.get_stats()
