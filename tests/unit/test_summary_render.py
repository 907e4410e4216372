from __future__ import annotations

import re
from datetime import UTC, datetime

from building_import.models.import_batch import ImportBatch, ImportKind
from building_import.models.processing_result import ChunkStats, ImportResult
from building_import.services.summary import (
    format_seconds,
    render_error_preview,
    render_summary_line,
    render_undo_hint,
)

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY kind=(buildings|k7_services) file=(\S+) processed=(\d+) created=(\d+) "
    r"updated=(\d+) skipped=(\d+) ignored=(\d+) invalid=(\d+) unchanged=(\d+) "
    r"blocked=(\d+) duplicates=(\d+) unmatched=(\d+) errors=(\d+) chunks=(\d+) "
    r"avg_chunk_sec=([0-9.]+) p95_chunk_sec=([0-9.]+) elapsed_sec=([0-9.]+) "
    r"status=(ok|partial|cancelled) batch=(\S+)$"
)


def _result(batch: ImportBatch, elapsed: float = 2.0, stats: ChunkStats = ChunkStats()) -> ImportResult:
    start = datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC)
    return ImportResult(batch=batch, start_time=start, end_time=start, elapsed_seconds=elapsed,
                        encoding="utf-8", delimiter=";", chunk_stats=stats)


def test_render_summary_line_success():
    batch = ImportBatch(kind=ImportKind.BUILDINGS, file_name="gebaeude.csv", id="b-1",
                        processed=120, created=3, updated=7, skipped=110, unchanged=104, blocked=5, invalid=1)
    line = render_summary_line(_result(batch, 0.84, ChunkStats(1, 0.01, 0.01)))
    m = SUMMARY_PATTERN.match(line)
    assert m, line
    assert m.group(3) == "120"
    assert m.group(4) == "3"
    assert m.group(5) == "7"
    assert m.group(17) == "0.84"
    assert m.group(18) == "ok"
    assert m.group(19) == "b-1"


def test_render_summary_line_partial_and_cancelled():
    batch = ImportBatch(kind=ImportKind.K7_SERVICES, file_name="k7.csv", id="b-2")
    batch.add_error("Chunk 2: duplicate key")
    assert "status=partial" in render_summary_line(_result(batch))
    assert "errors=1" in render_summary_line(_result(batch))
    batch.cancelled = True
    assert "status=cancelled" in render_summary_line(_result(batch))


def test_render_summary_line_without_batch_id():
    batch = ImportBatch(kind=ImportKind.BUILDINGS, file_name="a.csv")
    assert render_summary_line(_result(batch)).endswith("batch=-")


def test_format_seconds():
    assert format_seconds(0) == "0"
    assert format_seconds(3.0) == "3"
    assert format_seconds(0.84) == "0.84"
    assert format_seconds(1.23456) == "1.235"
    assert format_seconds(0.000123) == "0.000123"


def test_render_error_preview_truncates():
    batch = ImportBatch(kind=ImportKind.BUILDINGS, file_name="a.csv")
    for i in range(1, 6):
        batch.add_error(f"Chunk {i}: boom")
    assert render_error_preview(batch, 2) == ["Chunk 1: boom", "Chunk 2: boom", "... and 3 more"]
    assert len(render_error_preview(batch, 10)) == 5


def test_render_undo_hint():
    batch = ImportBatch(kind=ImportKind.K7_SERVICES, file_name="a.csv", id="b-3")
    assert render_undo_hint(batch) is None
    batch.record_create("s-1")
    assert render_undo_hint(batch) == "undo with: python -m building_import undo b-3 --kind k7"
