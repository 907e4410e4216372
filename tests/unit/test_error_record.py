from __future__ import annotations

import json

from building_import.models.error_record import ErrorRecord


def test_error_record_creation_and_json_line():
    rec = ErrorRecord.create("gebaeude.csv", "CHUNK_FAILED", "duplicate key", batch_id="b-1", chunk=3)
    data = json.loads(rec.to_json_line())
    assert data["file"] == "gebaeude.csv"
    assert data["batch_id"] == "b-1"
    assert data["chunk"] == 3
    assert data["row"] == -1
    assert data["error_type"] == "CHUNK_FAILED"
    assert data["message"] == "duplicate key"
    assert data["timestamp"].endswith("Z")


def test_error_record_defaults_for_run_level_errors():
    rec = ErrorRecord.create("a.csv", "INVALID_ROW", "street or house number is empty", row=12)
    assert rec.batch_id == ""
    assert rec.chunk == -1
    assert rec.row == 12


def test_error_record_keeps_non_ascii():
    rec = ErrorRecord.create("straße.csv", "CHUNK_FAILED", "Schlüssel doppelt")
    line = rec.to_json_line()
    assert "straße.csv" in line
    assert "Schlüssel" in line
