# Shared pytest fixtures
from __future__ import annotations
import tempfile
from collections.abc import Callable
from pathlib import Path
import pytest

from building_import.db.memory import MemoryStore
from building_import.logging.init import reset_logging
from building_import.models.config_models import DatabaseConfig, ImportConfig


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
chunk_size: 500
page_size: 1000
unmatched_limit: 5000
default_city: Ingolstadt
error_preview: 10
logs_directory: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def import_config(tmp_path: Path) -> ImportConfig:
    return ImportConfig(database=DatabaseConfig(), logs_directory=str(tmp_path / "logs"))


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    """Write lines to a source file (default UTF-8, ';' separated)."""
    def _write(name: str, lines: list[str], encoding: str = "utf-8") -> Path:
        path = tmp_path / name
        path.write_bytes(("\n".join(lines) + "\n").encode(encoding))
        return path
    return _write


@pytest.fixture(autouse=True)
def _reset_app_logger():
    yield
    reset_logging()
