from __future__ import annotations

from pathlib import Path

import pytest

import building_import.cli.__main__ as cli
from building_import.cli.__main__ import main as cli_main
from building_import.services.cancellation import ImportCancelled

HEADER = "Straße;Hausnummer;PLZ;Stadt;Wohneinheiten"


@pytest.fixture()
def mock_db(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


def _write(temp_workdir: Path, name: str, lines: list[str]) -> Path:
    path = temp_workdir / "data" / name
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_cli_buildings_import_success(write_config, temp_workdir: Path, mock_db, capsys):
    src = _write(temp_workdir, "gebaeude.csv", [HEADER, "Lindenweg;5;85049;Ingolstadt;4", "Ahornweg;7;;;2"])
    code = cli_main(["buildings", str(src), "--mode", "automatic"])
    out = capsys.readouterr().out
    assert code == 0
    assert "SUMMARY kind=buildings file=gebaeude.csv processed=2 created=2" in out
    assert "status=ok" in out
    assert "undo with: python -m building_import undo" in out


def test_cli_missing_file(write_config, temp_workdir: Path, mock_db, capsys):
    code = cli_main(["buildings", str(temp_workdir / "data" / "nope.csv"), "--mode", "automatic"])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR buildings:" in out


def test_cli_empty_file(write_config, temp_workdir: Path, mock_db, capsys):
    src = _write(temp_workdir, "leer.csv", [HEADER])
    code = cli_main(["buildings", str(src), "--mode", "automatic"])
    assert code == 1
    assert "at least one data line" in capsys.readouterr().out


def test_cli_mapping_error(write_config, temp_workdir: Path, mock_db, capsys):
    src = _write(temp_workdir, "ohne_strasse.csv", ["Hausnummer;PLZ", "5;85049"])
    code = cli_main(["buildings", str(src), "--mode", "automatic"])
    assert code == 1
    assert "ERROR buildings:" in capsys.readouterr().out


def test_cli_invalid_config(write_config, temp_workdir: Path, mock_db, capsys):
    write_config.write_text("chunk_size: -1\n", encoding="utf-8")
    src = _write(temp_workdir, "gebaeude.csv", [HEADER, "Lindenweg;5;;;1"])
    code = cli_main(["buildings", str(src), "--mode", "automatic"])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_cli_cancel_returns_partial(write_config, temp_workdir: Path, mock_db, monkeypatch, capsys):
    async def _cancelled(*args, **kwargs):
        raise ImportCancelled("cancelled while loading the registry")

    monkeypatch.setattr(cli, "run_building_import", _cancelled)
    src = _write(temp_workdir, "gebaeude.csv", [HEADER, "Lindenweg;5;;;1"])
    code = cli_main(["buildings", str(src), "--mode", "automatic"])
    assert code == 2
    assert "WARN cancelled while loading the registry" in capsys.readouterr().out


def test_cli_inspect_data(write_config, temp_workdir: Path, mock_db, capsys):
    src = _write(temp_workdir, "gebaeude.csv", [HEADER, "Lindenweg;5;85049;Ingolstadt;4"])
    code = cli_main(["buildings", str(src), "--inspect-data"])
    out = capsys.readouterr().out
    assert code == 0
    assert "encoding=UTF-8" in out
    assert "'Straße' -> street" in out
    assert "SUMMARY" not in out


def test_cli_map_option_overrides(write_config, temp_workdir: Path, mock_db, capsys):
    src = _write(temp_workdir, "custom.csv", ["Weg;Nr", "Lindenweg;5"])
    code = cli_main(["buildings", str(src), "--map", "Weg=street", "--map", "Nr=house_number",
                     "--mode", "automatic"])
    assert code == 0
    assert "created=1" in capsys.readouterr().out


def test_cli_undo_without_batches(write_config, temp_workdir: Path, mock_db, capsys):
    code = cli_main(["undo", "--kind", "k7"])
    assert code == 1
    assert "no revertible k7_services import found" in capsys.readouterr().out


def test_cli_settings_edit(write_config, temp_workdir: Path, mock_db, capsys):
    code = cli_main(["settings", "--add-ignore", "Testgebäude", "--mode", "automatic"])
    out = capsys.readouterr().out
    assert code == 0
    assert "default_mode: automatic" in out
    assert "  - Testgebäude" in out


def test_cli_debug_flag(write_config, temp_workdir: Path, mock_db, capsys):
    src = _write(temp_workdir, "gebaeude.csv", [HEADER, "Lindenweg;5;;;1"])
    code = cli_main(["--debug", "buildings", str(src), "--mode", "automatic"])
    assert code == 0
    assert "DEBUG debug mode enabled" in capsys.readouterr().out
