from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime

import psycopg2
import pytest

from building_import.db.errors import StoreError
from building_import.db.postgres import PostgresStore
from building_import.models.config_models import ImportSettings, WorkflowMode
from building_import.models.import_batch import ImportBatch, ImportKind


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self.conn = conn
        self.rowcount = conn.rowcount

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        if self.conn.fail_with is not None:
            raise self.conn.fail_with
        self.conn.executed.append((query, params))

    def fetchall(self):
        return self.conn.results.pop(0)

    def fetchone(self):
        rows = self.conn.results.pop(0)
        return rows[0] if rows else None


class FakeConnection:
    def __init__(self) -> None:
        self.executed: list = []
        self.results: list = []
        self.factories: list = []
        self.commits = 0
        self.rollbacks = 0
        self.rowcount = 1
        self.fail_with: Exception | None = None
        self.closed = False

    def cursor(self, cursor_factory=None):
        self.factories.append(cursor_factory)
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True


def test_fetch_page_returns_plain_values():
    conn = FakeConnection()
    building_id = uuid.uuid4()
    stamp = datetime(2024, 5, 1, tzinfo=UTC)
    conn.results.append([{"id": building_id, "street": "Lindenweg", "created_at": stamp}])
    rows = asyncio.run(PostgresStore(conn).fetch_buildings_page(0, 10))
    assert rows == [{"id": str(building_id), "street": "Lindenweg", "created_at": stamp.isoformat()}]
    assert conn.factories[0] is not None  # RealDictCursor
    assert conn.commits == 1


def test_failed_statement_rolls_back_and_raises_store_error():
    conn = FakeConnection()
    conn.fail_with = psycopg2.Error("connection lost")
    with pytest.raises(StoreError, match="connection lost"):
        asyncio.run(PostgresStore(conn).update_building("b-1", {"apl_set": True}))
    assert conn.rollbacks == 1
    assert conn.commits == 0


def test_update_of_missing_building():
    conn = FakeConnection()
    conn.rowcount = 0
    with pytest.raises(StoreError, match="not found"):
        asyncio.run(PostgresStore(conn).update_building("b-1", {"apl_set": True}))
    assert conn.rollbacks == 1
    assert conn.commits == 0


def test_insert_uses_batch_insert_returning(monkeypatch):
    import building_import.db.batch_insert as bi

    monkeypatch.setattr(bi, "execute_values", lambda cur, q, rows, page_size=1000, fetch=False: [("a",), ("b",)])
    conn = FakeConnection()
    ids = asyncio.run(PostgresStore(conn).insert_buildings([{"street": "x"}, {"street": "y"}]))
    assert ids == ["a", "b"]
    assert conn.factories == [None]  # RETURNING の r[0] 取得のため通常カーソル


def test_failed_insert_chunk_rolls_back(monkeypatch):
    import building_import.db.batch_insert as bi

    def _fail(cur, q, rows, page_size=1000, fetch=False):
        raise psycopg2.Error("duplicate key value violates unique constraint")

    monkeypatch.setattr(bi, "execute_values", _fail)
    conn = FakeConnection()
    store = PostgresStore(conn)
    with pytest.raises(StoreError, match="duplicate key"):
        asyncio.run(store.insert_buildings([{"street": "x"}]))
    assert conn.rollbacks == 1
    assert conn.commits == 0

    # 次のチャンクは同じ接続で続行できる
    monkeypatch.setattr(bi, "execute_values", lambda cur, q, rows, page_size=1000, fetch=False: [("c",)])
    assert asyncio.run(store.insert_buildings([{"street": "y"}])) == ["c"]
    assert conn.commits == 1


def test_mark_reverted_is_conditional():
    conn = FakeConnection()
    store = PostgresStore(conn)
    conn.results.append([("batch-1",)])
    assert asyncio.run(store.mark_reverted("batch-1", datetime.now(UTC))) is True
    conn.results.append([])
    assert asyncio.run(store.mark_reverted("batch-1", datetime.now(UTC))) is False


def test_create_batch_returns_id():
    conn = FakeConnection()
    conn.results.append([("batch-1",)])
    batch = ImportBatch(kind=ImportKind.BUILDINGS, file_name="a.csv")
    assert asyncio.run(PostgresStore(conn).create_batch(batch)) == "batch-1"
    params = conn.executed[0][1]
    assert params[0] == "buildings"
    assert params[1] == "a.csv"


def test_update_batch_requires_id():
    with pytest.raises(StoreError):
        asyncio.run(PostgresStore(FakeConnection()).update_batch(ImportBatch(kind=ImportKind.BUILDINGS, file_name="a")))


def test_settings_load_defaults_and_values():
    conn = FakeConnection()
    store = PostgresStore(conn)
    conn.results.append([])
    assert asyncio.run(store.load_settings()) == ImportSettings()
    conn.results.append([{"ignore_patterns": ["test"], "default_mode": "automatic"}])
    assert asyncio.run(store.load_settings()) == ImportSettings(("test",), WorkflowMode.AUTOMATIC)
