from __future__ import annotations

import logging
from datetime import UTC, datetime

from ..db.store import RegistryStore
from ..models.import_batch import CANCELLED_MARKER, ImportBatch, ImportKind, UndoType
from .committer import DEFAULT_CHUNK_SIZE, chunked
from .progress import ProgressReporter

"""Import ledger: one revertible batch record per import run.

open_batch() persists the record before anything is committed so even a run
that dies midway leaves a ledger row. finalize() writes the final counts,
undo records and errors once. revert() undoes a batch exactly once.
"""

__all__ = [
    "REVERT_PHASE",
    "LedgerError",
    "AlreadyRevertedError",
    "ImportLedger",
]

logger = logging.getLogger(__name__)

REVERT_PHASE = "Rückgängig"


class LedgerError(Exception):
    """A batch cannot be reverted (missing batch, incomplete undo records)."""


class AlreadyRevertedError(LedgerError):
    pass


class ImportLedger:
    def __init__(self, store: RegistryStore, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.store = store
        self.chunk_size = chunk_size

    async def open_batch(self, kind: ImportKind, file_name: str, processed: int = 0) -> ImportBatch:
        batch = ImportBatch(kind=kind, file_name=file_name, processed=processed)
        batch.id = await self.store.create_batch(batch)
        logger.debug("batch %s opened (%s, %s)", batch.id, kind.value, file_name)
        return batch

    async def finalize(self, batch: ImportBatch, cancelled: bool = False) -> ImportBatch:
        if cancelled:
            batch.cancelled = True
        if batch.cancelled and CANCELLED_MARKER not in batch.errors:
            batch.add_error(CANCELLED_MARKER)
        await self.store.update_batch(batch)
        return batch

    async def latest_revertible(self, kind: ImportKind) -> ImportBatch | None:
        return await self.store.latest_batch(kind)

    async def revert(self, batch_id: str, progress: ProgressReporter | None = None) -> ImportBatch:
        """Undo every change of the batch and mark it reverted.

        Creates are deleted (in chunks), updates get their full pre-image
        written back except id / created_at / updated_at.

        Raises:
            LedgerError: unknown batch, or affected ids without an undo record
            AlreadyRevertedError: the batch was (or concurrently got) reverted
        """
        batch = await self.store.get_batch(batch_id)
        if batch is None:
            raise LedgerError(f"batch {batch_id} not found")
        if batch.is_reverted:
            raise AlreadyRevertedError(f"batch {batch_id} has already been reverted")
        uncovered = batch.uncovered_ids()
        if uncovered:
            raise LedgerError(
                f"batch {batch_id} has {len(uncovered)} affected ids without undo record"
            )

        created = [u.entity_id for u in batch.undo_records if u.type is UndoType.CREATE]
        updated = [u for u in batch.undo_records if u.type is UndoType.UPDATE]
        total = len(created) + len(updated)
        done = 0

        for chunk in chunked(created, self.chunk_size):
            removed = await self.store.delete_entities(batch.kind, chunk)
            if removed != len(chunk):
                logger.warning("batch %s: %d of %d created rows were already gone", batch_id, len(chunk) - removed, len(chunk))
            done += len(chunk)
            if progress is not None:
                progress.report(REVERT_PHASE, done, total)

        for undo in updated:
            await self.store.restore_building(undo.entity_id, undo.previous or {})
            done += 1
            if progress is not None:
                progress.report(REVERT_PHASE, done, total)

        reverted_at = datetime.now(UTC)
        if not await self.store.mark_reverted(batch_id, reverted_at):
            raise AlreadyRevertedError(f"batch {batch_id} has already been reverted")
        batch.is_reverted = True
        batch.reverted_at = reverted_at
        logger.info("batch %s reverted: %d deleted, %d restored", batch_id, len(created), len(updated))
        return batch
