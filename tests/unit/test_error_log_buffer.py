from __future__ import annotations
import json
from pathlib import Path
from building_import.logging.error_log import ErrorRecord, ErrorLogBuffer

KEYS = {"timestamp", "file", "batch_id", "chunk", "row", "error_type", "message"}


def test_error_log_buffer_flush(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    buf.append(ErrorRecord.create("a.csv", "CHUNK_FAILED", "duplicate key", batch_id="b1", chunk=2))
    buf.append(ErrorRecord.create("a.csv", "INVALID_ROW", "street or house number is empty", row=7))
    path = buf.flush()
    assert path is not None and path.exists()
    assert path.parent == tmp_path / "logs"
    assert path.name.startswith("errors-") and path.name.endswith(".log")
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 2
    for raw in lines:
        assert set(json.loads(raw).keys()) == KEYS
    # flush 後バッファクリア
    assert len(buf) == 0


def test_error_log_buffer_empty_flush_creates_nothing(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    assert buf.flush() is None
    assert not (tmp_path / "logs").exists()


def test_error_log_buffer_multiple_flushes_append(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)
    buf.append(ErrorRecord.create("a.csv", "CHUNK_FAILED", "dup"))
    path = buf.flush()
    size1 = path.stat().st_size
    buf.append(ErrorRecord.create("a.csv", "CHUNK_FAILED", "dup2"))
    path2 = buf.flush()
    assert path == path2
    assert path2.stat().st_size > size1


def test_error_log_buffer_default_directory(temp_workdir: Path):
    buf = ErrorLogBuffer()
    buf.append(ErrorRecord.create("a.csv", "CHUNK_FAILED", "dup"))
    path = buf.flush()
    assert path.resolve().parent == (temp_workdir / "logs").resolve()


def test_records_returns_copy(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)
    buf.append(ErrorRecord.create("a.csv", "CHUNK_FAILED", "dup"))
    buf.records.clear()
    assert len(buf.records) == 1
