from __future__ import annotations

from ..models.import_batch import ImportBatch
from ..models.processing_result import ImportResult

"""Summary rendering.

One SUMMARY line per import run:

    SUMMARY kind=buildings file=a.csv processed=120 created=3 updated=7
    skipped=110 ignored=2 invalid=1 unchanged=104 blocked=5 duplicates=0
    unmatched=0 errors=0 chunks=1 avg_chunk_sec=0.01 p95_chunk_sec=0.01
    elapsed_sec=0.2 status=ok batch=<id>

plus the first ``error_preview`` errors and an undo hint.
"""

__all__ = [
    "format_seconds",
    "render_summary_line",
    "render_error_preview",
    "render_undo_hint",
]


def format_seconds(value: float) -> str:
    """Compact number formatting (no scientific notation, no trailing zeros)."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _status(batch: ImportBatch) -> str:
    if batch.cancelled:
        return "cancelled"
    if batch.errors:
        return "partial"
    return "ok"


def render_summary_line(result: ImportResult) -> str:
    batch = result.batch
    stats = result.chunk_stats
    return (
        f"SUMMARY kind={batch.kind.value} "
        f"file={batch.file_name} "
        f"processed={batch.processed} "
        f"created={batch.created} "
        f"updated={batch.updated} "
        f"skipped={batch.skipped} "
        f"ignored={batch.ignored} "
        f"invalid={batch.invalid} "
        f"unchanged={batch.unchanged} "
        f"blocked={batch.blocked} "
        f"duplicates={batch.duplicates} "
        f"unmatched={batch.unmatched} "
        f"errors={len(batch.errors)} "
        f"chunks={stats.total_chunks} "
        f"avg_chunk_sec={format_seconds(stats.avg_chunk_seconds)} "
        f"p95_chunk_sec={format_seconds(stats.p95_chunk_seconds)} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)} "
        f"status={_status(batch)} "
        f"batch={batch.id or '-'}"
    )


def render_error_preview(batch: ImportBatch, limit: int = 10) -> list[str]:
    """First ``limit`` batch errors, plus a count line for the rest."""
    lines = list(batch.errors[:limit])
    rest = len(batch.errors) - len(lines)
    if rest > 0:
        lines.append(f"... and {rest} more")
    return lines


def render_undo_hint(batch: ImportBatch) -> str | None:
    if batch.id is None or not batch.undo_records:
        return None
    kind = "k7" if batch.kind.value == "k7_services" else batch.kind.value
    return f"undo with: python -m building_import undo {batch.id} --kind {kind}"
