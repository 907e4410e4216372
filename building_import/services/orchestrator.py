from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from ..csvio.export import export_unmatched
from ..csvio.reader import ParsedFile, read_source_file
from ..db.store import RegistryStore
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import ImportConfig, ImportSettings, WorkflowMode
from ..models.error_record import ErrorRecord
from ..models.import_batch import ImportBatch, ImportKind
from ..models.processing_result import ChunkStats, ImportResult
from ..models.records import BuildingRecord, K7ServiceRecord
from .cancellation import CancellationToken
from .column_mapper import ColumnMapping, ResolvedMapping, save_mapping
from .committer import commit_k7_services, commit_plan, dedupe_services
from .conflicts import ConflictDecider, review_plan
from .diff_engine import build_plan, drop_duplicate_new
from .ledger import ImportLedger, LedgerError
from .matcher import RegistryIndex, UnmatchedCollector
from .progress import ProgressReporter
from .transform import transform_building, transform_k7_service

"""Import pipeline orchestration.

run_building_import / run_k7_import drive one import run end to end:

    read + decode + parse -> column mapping -> row transform
    -> registry load -> match / diff / classify -> conflict review
    -> ledger batch -> chunked commit -> finalize -> error log flush
    -> on_import_complete callback

Fatal problems before the first write (EmptyFileError, MappingError,
ImportCancelled during the registry load) propagate to the caller; nothing is
written and no batch exists. Once the batch is opened every run ends with a
finalized batch and an ImportResult, also when cancelled or partially failed.
"""

__all__ = [
    "ImportCompleteCallback",
    "ImportOptions",
    "InspectionReport",
    "inspect_file",
    "run_building_import",
    "run_k7_import",
    "revert_batch",
    "update_settings",
]

logger = logging.getLogger(__name__)

ImportCompleteCallback = Callable[[ImportBatch], None]

INVALID_ROW = "INVALID_ROW"


@dataclass
class ImportOptions:
    """Per-run options collected by the CLI (or another front end)."""
    saved_mapping: dict[str, str] = field(default_factory=dict)  # 存在しない列は無視
    mapping_overrides: dict[str, str] = field(default_factory=dict)
    mode: WorkflowMode | None = None  # None = settings.default_mode
    decider: ConflictDecider | None = None
    export_unmatched_to: Path | None = None
    save_mapping_to: Path | None = None


@dataclass(frozen=True)
class InspectionReport:
    """What the engine sees in a file before anything is committed."""
    file_name: str
    encoding: str
    delimiter: str
    headers: list[str]
    assignments: dict[str, str]
    missing_required: list[str]
    data_rows: int
    ignored_rows: int
    preview: list[tuple[str, ...]]


def _mapping_for(parsed: ParsedFile, kind: ImportKind, options: ImportOptions) -> ColumnMapping:
    mapping = ColumnMapping.auto(parsed.headers, kind)
    if options.saved_mapping:
        mapping.apply_overrides(options.saved_mapping, strict=False)
    if options.mapping_overrides:
        mapping.apply_overrides(options.mapping_overrides)
    return mapping


def _resolve_mapping(parsed: ParsedFile, kind: ImportKind, options: ImportOptions) -> ResolvedMapping:
    mapping = _mapping_for(parsed, kind, options)
    resolved = mapping.resolve()  # MappingError は呼び出し元へ
    if options.save_mapping_to is not None:
        save_mapping(options.save_mapping_to, mapping)
        logger.info("mapping saved to %s", options.save_mapping_to)
    logger.debug("resolved mapping: %s", resolved.columns)
    return resolved


def _invalid_row(error_log: ErrorLogBuffer, file_name: str, line_number: int) -> None:
    error_log.append(
        ErrorRecord.create(
            file_name,
            INVALID_ROW,
            "street or house number is empty",
            row=line_number,
        )
    )


def inspect_file(
    path: Path,
    kind: ImportKind,
    settings: ImportSettings,
    options: ImportOptions | None = None,
    *,
    preview_rows: int = 5,
) -> InspectionReport:
    """Parse and map a file without touching the store."""
    options = options or ImportOptions()
    parsed = read_source_file(path, settings.normalized_patterns)
    mapping = _mapping_for(parsed, kind, options)
    return InspectionReport(
        file_name=parsed.file_name,
        encoding=parsed.encoding,
        delimiter=parsed.delimiter,
        headers=parsed.headers,
        assignments=mapping.assignments,
        missing_required=mapping.missing_required(),
        data_rows=len(parsed.rows),
        ignored_rows=parsed.ignored_rows,
        preview=[row.cells for row in parsed.rows[:preview_rows]],
    )


def _finish(
    batch: ImportBatch,
    parsed: ParsedFile,
    start_time: datetime,
    stats: ChunkStats,
    error_log: ErrorLogBuffer,
    on_import_complete: ImportCompleteCallback | None,
    unmatched_export: str | None = None,
) -> ImportResult:
    log_path = error_log.flush()
    if log_path is not None:
        logger.info("error log written: %s", log_path)
    if on_import_complete is not None:
        on_import_complete(batch)
    end_time = datetime.now(UTC)
    return ImportResult(
        batch=batch,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=(end_time - start_time).total_seconds(),
        encoding=parsed.encoding,
        delimiter=parsed.delimiter,
        chunk_stats=stats,
        unmatched_export=unmatched_export,
    )


async def run_building_import(
    path: Path,
    store: RegistryStore,
    config: ImportConfig,
    settings: ImportSettings,
    options: ImportOptions | None = None,
    *,
    token: CancellationToken | None = None,
    progress: ProgressReporter | None = None,
    on_import_complete: ImportCompleteCallback | None = None,
) -> ImportResult:
    """Import a building file: create new buildings, update changed ones."""
    options = options or ImportOptions()
    token = token or CancellationToken()
    start_time = datetime.now(UTC)
    error_log = ErrorLogBuffer(config.logs_directory)

    parsed = read_source_file(path, settings.normalized_patterns)
    logger.info(
        "%s: %d data rows, %d ignored (%s, delimiter %r)",
        parsed.file_name, len(parsed.rows), parsed.ignored_rows, parsed.encoding, parsed.delimiter,
    )
    resolved = _resolve_mapping(parsed, ImportKind.BUILDINGS, options)

    records: list[BuildingRecord] = []
    invalid = 0
    for row in parsed.rows:
        record = transform_building(row, resolved, config.default_city)
        if record is None:
            invalid += 1
            _invalid_row(error_log, parsed.file_name, row.line_number)
            continue
        records.append(record)

    index = await RegistryIndex.load(store, config.page_size, token, progress)
    plan = build_plan(records, index)
    drop_duplicate_new(plan)
    duplicates = plan.duplicates
    plan = review_plan(plan, options.mode or settings.default_mode, options.decider)
    logger.info(
        "plan: new=%d update=%d unchanged=%d blocked=%d",
        len(plan.new), len(plan.update), len(plan.unchanged), len(plan.blocked),
    )

    ledger = ImportLedger(store, chunk_size=config.chunk_size)
    batch = await ledger.open_batch(ImportKind.BUILDINGS, parsed.file_name, processed=len(parsed.rows))
    batch.ignored = parsed.ignored_rows
    batch.invalid = invalid
    batch.duplicates = duplicates
    batch.unchanged = len(plan.unchanged)
    batch.blocked = len(plan.blocked)
    batch.skipped = invalid + duplicates + batch.unchanged + batch.blocked

    stats = await commit_plan(
        plan,
        store,
        batch,
        token,
        chunk_size=config.chunk_size,
        progress=progress,
        error_log=error_log,
    )
    await ledger.finalize(batch)
    return _finish(batch, parsed, start_time, stats, error_log, on_import_complete)


def _service_entries(
    records: list[K7ServiceRecord], index: RegistryIndex, unmatched: UnmatchedCollector
) -> list[dict[str, object]]:
    entries: list[dict[str, object]] = []
    for record in records:
        building = index.resolve(record)
        if building is None:
            unmatched.add(record)
            continue
        entries.append(record.service_values(building.id))
    return entries


async def run_k7_import(
    path: Path,
    store: RegistryStore,
    config: ImportConfig,
    settings: ImportSettings,
    options: ImportOptions | None = None,
    *,
    token: CancellationToken | None = None,
    progress: ProgressReporter | None = None,
    on_import_complete: ImportCompleteCallback | None = None,
) -> ImportResult:
    """Import K7 service records for buildings already in the registry."""
    options = options or ImportOptions()
    token = token or CancellationToken()
    start_time = datetime.now(UTC)
    error_log = ErrorLogBuffer(config.logs_directory)

    parsed = read_source_file(path, settings.normalized_patterns)
    logger.info(
        "%s: %d data rows, %d ignored (%s, delimiter %r)",
        parsed.file_name, len(parsed.rows), parsed.ignored_rows, parsed.encoding, parsed.delimiter,
    )
    resolved = _resolve_mapping(parsed, ImportKind.K7_SERVICES, options)

    records: list[K7ServiceRecord] = []
    invalid = 0
    no_service = 0
    for row in parsed.rows:
        record = transform_k7_service(row, resolved)
        if record is None:
            invalid += 1
            _invalid_row(error_log, parsed.file_name, row.line_number)
            continue
        if not record.has_service_data:
            no_service += 1
            continue
        records.append(record)
    if no_service:
        logger.info("%d rows without service data skipped", no_service)

    index = await RegistryIndex.load(store, config.page_size, token, progress)
    unmatched = UnmatchedCollector(config.unmatched_limit)
    entries = _service_entries(records, index, unmatched)
    existing_keys = await store.fetch_k7_service_keys()
    entries, duplicates = dedupe_services(entries, existing_keys)

    ledger = ImportLedger(store, chunk_size=config.chunk_size)
    batch = await ledger.open_batch(ImportKind.K7_SERVICES, parsed.file_name, processed=len(parsed.rows))
    batch.ignored = parsed.ignored_rows
    batch.invalid = invalid
    batch.duplicates = duplicates
    batch.unmatched = unmatched.total
    batch.skipped = invalid + no_service + unmatched.total + duplicates

    stats = await commit_k7_services(
        entries,
        store,
        batch,
        token,
        chunk_size=config.chunk_size,
        progress=progress,
        error_log=error_log,
    )
    await ledger.finalize(batch)

    export_path: str | None = None
    if unmatched.total:
        logger.warning("%d rows matched no building", unmatched.total)
        if unmatched.truncated:
            logger.warning("unmatched list truncated to %d entries", unmatched.limit)
    if options.export_unmatched_to is not None and len(unmatched):
        export_path = str(export_unmatched(options.export_unmatched_to, parsed.headers, unmatched))
        logger.info("unmatched rows exported to %s", export_path)

    return _finish(batch, parsed, start_time, stats, error_log, on_import_complete, export_path)


async def revert_batch(
    store: RegistryStore,
    batch_id: str | None = None,
    kind: ImportKind = ImportKind.BUILDINGS,
    *,
    chunk_size: int = 500,
    progress: ProgressReporter | None = None,
) -> ImportBatch:
    """Revert the given batch, or the latest revertible batch of ``kind``.

    Raises LedgerError when there is nothing to revert.
    """
    ledger = ImportLedger(store, chunk_size=chunk_size)
    if batch_id is None:
        latest = await ledger.latest_revertible(kind)
        if latest is None or latest.id is None:
            raise LedgerError(f"no revertible {kind.value} import found")
        batch_id = latest.id
    return await ledger.revert(batch_id, progress)


async def update_settings(
    store: RegistryStore,
    *,
    add_patterns: list[str] | None = None,
    remove_patterns: list[str] | None = None,
    mode: WorkflowMode | None = None,
) -> ImportSettings:
    """Edit and persist the settings record; returns the saved settings."""
    settings = await store.load_settings()
    for pattern in add_patterns or []:
        settings = settings.with_pattern_added(pattern)
    for pattern in remove_patterns or []:
        settings = settings.with_pattern_removed(pattern)
    if mode is not None:
        settings = settings.with_mode(mode)
    await store.save_settings(settings)
    return settings
