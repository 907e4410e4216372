from __future__ import annotations

from pathlib import Path

import pytest

import building_import.cli.__main__ as cli
import building_import.db.connection as connection
from building_import.cli.__main__ import main as cli_main
from building_import.db.memory import MemoryStore
from building_import.services.cancellation import ImportCancelled

"""Exit code contract: 0 success, 2 partial / cancelled, 1 fatal."""

HEADER = "Straße;Hausnummer;PLZ"


@pytest.fixture(autouse=True)
def mock_db(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


def _csv(temp_workdir: Path, rows: int) -> Path:
    path = temp_workdir / "data" / "gebaeude.csv"
    lines = [HEADER] + [f"Lindenweg;{i};85053" for i in range(1, rows + 1)]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    code = cli_main(["--config", "config/missing.yml", "settings"])
    assert code == cli.EXIT_FATAL == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_all_success(temp_workdir: Path, write_config, capsys):
    code = cli_main(["buildings", str(_csv(temp_workdir, 3)), "--mode", "automatic"])
    out = capsys.readouterr().out
    assert code == cli.EXIT_SUCCESS_ALL == 0
    assert "status=ok" in out


def test_exit_code_partial_failure(temp_workdir: Path, write_config, monkeypatch, capsys):
    def failing_store() -> MemoryStore:
        store = MemoryStore()
        store.fail_on_insert = {1}
        return store

    monkeypatch.setattr(connection, "MemoryStore", failing_store)
    code = cli_main(["buildings", str(_csv(temp_workdir, 3)), "--mode", "automatic"])
    out = capsys.readouterr().out
    assert code == cli.EXIT_PARTIAL_FAILURE == 2
    assert "status=partial" in out
    assert "ERROR Chunk 1: simulated insert failure" in out


def test_exit_code_cancelled(temp_workdir: Path, write_config, monkeypatch):
    async def cancelled(*args, **kwargs):
        raise ImportCancelled("import cancelled while loading the registry")

    monkeypatch.setattr(cli, "run_k7_import", cancelled)
    code = cli_main(["k7", str(_csv(temp_workdir, 1)), "--mode", "automatic"])
    assert code == 2


def test_exit_code_empty_file(temp_workdir: Path, write_config):
    path = temp_workdir / "data" / "leer.csv"
    path.write_text("\n\n", encoding="utf-8")
    assert cli_main(["buildings", str(path), "--mode", "automatic"]) == 1
