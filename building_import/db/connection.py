from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg2

from ..models.config_models import DatabaseConfig, ImportConfig
from .errors import StoreError
from .memory import MemoryStore
from .postgres import PostgresStore
from .store import RegistryStore

"""Connection resolution.

接続情報の解決優先順位:
    1. `.env` で読み込まれた環境変数 (CLI 起動時に上書きモードで読込済み)
       - DATABASE_URL / PGDSN があれば DSN 全体をそのまま使用
       - 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    2. config/import.yml の database セクション (不足分のフォールバック)

DISABLE_DB_CONNECT=1 skips PostgreSQL entirely and yields a MemoryStore
(mock mode).
"""

__all__ = [
    "mock_mode_enabled",
    "resolve_dsn",
    "open_store",
]


def mock_mode_enabled() -> bool:
    return os.getenv("DISABLE_DB_CONNECT") == "1"


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def open_store(cfg: ImportConfig) -> Iterator[RegistryStore]:  # pragma: no cover (thin wrapper)
    """Yield a store for one CLI session; the connection is closed on exit."""
    if mock_mode_enabled():
        yield MemoryStore()
        return
    try:
        conn = psycopg2.connect(resolve_dsn(cfg.database))
    except psycopg2.Error as e:
        raise StoreError(f"database connection failed: {str(e).strip()}") from e
    conn.autocommit = False  # PostgresStore が呼び出し毎に COMMIT / ROLLBACK
    try:
        yield PostgresStore(conn, page_size=cfg.page_size)
    finally:
        if not conn.closed:
            conn.close()
