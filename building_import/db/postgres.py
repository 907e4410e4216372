from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from ..models.config_models import ImportSettings, WorkflowMode
from ..models.import_batch import ImportBatch, ImportKind
from .batch_insert import batch_insert
from .errors import StoreError
from .store import (
    BUILDINGS_TABLE,
    IMPORT_LOG_TABLE,
    K7_SERVICES_TABLE,
    SETTINGS_TABLE,
    K7ServiceKey,
    RegistryStore,
)

"""PostgreSQL store (psycopg2).

psycopg2 is blocking, so every call runs in a worker thread via
asyncio.to_thread. The connection is used by one task at a time. Each call
is its own transaction: COMMIT on success, ROLLBACK + StoreError on failure.

Rows handed to the pipeline are converted to JSON-friendly values (UUID ->
str, timestamps -> ISO strings) so they can be stored as undo pre-images.
"""

__all__ = [
    "PostgresStore",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BATCH_COLUMNS = (
    "import_type",
    "file_name",
    "records_processed",
    "records_created",
    "records_updated",
    "records_skipped",
    "affected_ids",
    "undo_records",
    "errors",
    "is_reverted",
    "created_at",
    "reverted_at",
)


def _plain(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


def _plain_row(row: dict[str, Any]) -> dict[str, Any]:
    return {k: _plain(v) for k, v in row.items()}


def _batch_values(batch: ImportBatch) -> list[Any]:
    row = batch.to_row()
    values: list[Any] = []
    for col in _BATCH_COLUMNS:
        value = row[col]
        if col in ("undo_records", "errors") and value is not None:
            value = Json(value)
        values.append(value)
    return values


class PostgresStore(RegistryStore):
    def __init__(self, conn: Any, *, page_size: int = 1000) -> None:
        self._conn = conn
        self._page_size = page_size

    # --- plumbing ------------------------------------------------------
    def _execute(self, fn: Callable[..., T], *args: Any, dict_rows: bool = False) -> T:
        factory = RealDictCursor if dict_rows else None
        try:
            with self._conn.cursor(cursor_factory=factory) as cur:
                result = fn(cur, *args)
            self._conn.commit()
            return result
        except StoreError:
            self._rollback()
            raise
        except psycopg2.Error as e:
            self._rollback()
            raise StoreError(str(e).strip()) from e

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except psycopg2.Error:  # pragma: no cover - connection already gone
            logger.debug("rollback failed", exc_info=True)

    async def _run(self, fn: Callable[..., T], *args: Any, dict_rows: bool = False) -> T:
        return await asyncio.to_thread(self._execute, fn, *args, dict_rows=dict_rows)

    # --- buildings -----------------------------------------------------
    async def fetch_buildings_page(self, offset: int, limit: int) -> list[dict[str, Any]]:
        def _fetch(cur: Any) -> list[dict[str, Any]]:
            cur.execute(
                sql.SQL("SELECT * FROM {t} ORDER BY created_at, id LIMIT %s OFFSET %s").format(
                    t=sql.Identifier(BUILDINGS_TABLE)
                ),
                (limit, offset),
            )
            return [_plain_row(dict(r)) for r in cur.fetchall()]

        return await self._run(_fetch, dict_rows=True)

    async def insert_buildings(self, rows: list[dict[str, Any]]) -> list[str]:
        return await self._insert_returning(BUILDINGS_TABLE, rows)

    async def _insert_returning(self, table: str, rows: list[dict[str, Any]]) -> list[str]:
        if not rows:
            return []
        columns = list(rows[0].keys())

        def _insert(cur: Any) -> list[str]:
            result = batch_insert(
                cur,
                table,
                columns,
                [[r.get(c) for c in columns] for r in rows],
                returning="id",
                page_size=self._page_size,
            )
            return [str(v) for v in (result.returned_values or [])]

        return await self._run(_insert)

    async def update_building(self, building_id: str, values: dict[str, Any]) -> None:
        if not values:
            return

        def _update(cur: Any) -> None:
            assignments = sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(k)) for k in values
            )
            cur.execute(
                sql.SQL("UPDATE {t} SET {a}, updated_at = now() WHERE id = %s").format(
                    t=sql.Identifier(BUILDINGS_TABLE), a=assignments
                ),
                [Json(v) if isinstance(v, dict) else v for v in values.values()] + [building_id],
            )
            if cur.rowcount == 0:
                raise StoreError(f"building {building_id} not found")

        await self._run(_update)

    async def _delete(self, table: str, ids: list[str]) -> int:
        if not ids:
            return 0

        def _del(cur: Any) -> int:
            cur.execute(
                sql.SQL("DELETE FROM {t} WHERE id::text = ANY(%s)").format(t=sql.Identifier(table)),
                (list(ids),),
            )
            return cur.rowcount

        return await self._run(_del)

    async def delete_buildings(self, ids: list[str]) -> int:
        return await self._delete(BUILDINGS_TABLE, ids)

    # --- K7 services ---------------------------------------------------
    async def fetch_k7_service_keys(self) -> set[K7ServiceKey]:
        def _fetch(cur: Any) -> set[K7ServiceKey]:
            cur.execute(
                sql.SQL(
                    "SELECT building_id::text, coalesce(service_product_id, ''), "
                    "coalesce(bandwidth_id, '') FROM {t}"
                ).format(t=sql.Identifier(K7_SERVICES_TABLE))
            )
            return {(r[0], r[1], r[2]) for r in cur.fetchall()}

        return await self._run(_fetch)

    async def insert_k7_services(self, rows: list[dict[str, Any]]) -> list[str]:
        return await self._insert_returning(K7_SERVICES_TABLE, rows)

    async def delete_k7_services(self, ids: list[str]) -> int:
        return await self._delete(K7_SERVICES_TABLE, ids)

    # --- ledger --------------------------------------------------------
    async def create_batch(self, batch: ImportBatch) -> str:
        def _create(cur: Any) -> str:
            cur.execute(
                sql.SQL("INSERT INTO {t} ({cols}) VALUES ({vals}) RETURNING id::text").format(
                    t=sql.Identifier(IMPORT_LOG_TABLE),
                    cols=sql.SQL(",").join(sql.Identifier(c) for c in _BATCH_COLUMNS),
                    vals=sql.SQL(",").join(sql.Placeholder() for _ in _BATCH_COLUMNS),
                ),
                _batch_values(batch),
            )
            return cur.fetchone()[0]

        return await self._run(_create)

    async def update_batch(self, batch: ImportBatch) -> None:
        if batch.id is None:
            raise StoreError("batch has not been persisted yet")

        def _update(cur: Any) -> None:
            cur.execute(
                sql.SQL("UPDATE {t} SET {a} WHERE id::text = %s").format(
                    t=sql.Identifier(IMPORT_LOG_TABLE),
                    a=sql.SQL(", ").join(
                        sql.SQL("{} = %s").format(sql.Identifier(c)) for c in _BATCH_COLUMNS
                    ),
                ),
                _batch_values(batch) + [batch.id],
            )

        await self._run(_update)

    def _select_batches(self, cur: Any, where: sql.Composable, params: tuple[Any, ...]) -> list[ImportBatch]:
        cur.execute(
            sql.SQL("SELECT id::text AS id, {cols} FROM {t} WHERE {w} ORDER BY created_at DESC LIMIT 1").format(
                cols=sql.SQL(",").join(sql.Identifier(c) for c in _BATCH_COLUMNS),
                t=sql.Identifier(IMPORT_LOG_TABLE),
                w=where,
            ),
            params,
        )
        return [ImportBatch.from_row(dict(r)) for r in cur.fetchall()]

    async def get_batch(self, batch_id: str) -> ImportBatch | None:
        def _get(cur: Any) -> ImportBatch | None:
            found = self._select_batches(cur, sql.SQL("id::text = %s"), (batch_id,))
            return found[0] if found else None

        return await self._run(_get, dict_rows=True)

    async def latest_batch(self, kind: ImportKind, *, include_reverted: bool = False) -> ImportBatch | None:
        def _latest(cur: Any) -> ImportBatch | None:
            if include_reverted:
                where = sql.SQL("import_type = %s")
                params: tuple[Any, ...] = (kind.value,)
            else:
                where = sql.SQL("import_type = %s AND is_reverted = false")
                params = (kind.value,)
            found = self._select_batches(cur, where, params)
            return found[0] if found else None

        return await self._run(_latest, dict_rows=True)

    async def mark_reverted(self, batch_id: str, reverted_at: datetime) -> bool:
        def _mark(cur: Any) -> bool:
            cur.execute(
                sql.SQL(
                    "UPDATE {t} SET is_reverted = true, reverted_at = %s "
                    "WHERE id::text = %s AND is_reverted = false RETURNING id"
                ).format(t=sql.Identifier(IMPORT_LOG_TABLE)),
                (reverted_at, batch_id),
            )
            return cur.fetchone() is not None

        return await self._run(_mark)

    # --- settings ------------------------------------------------------
    async def load_settings(self) -> ImportSettings:
        def _load(cur: Any) -> ImportSettings:
            cur.execute(
                sql.SQL("SELECT ignore_patterns, default_mode FROM {t} WHERE id = 1").format(
                    t=sql.Identifier(SETTINGS_TABLE)
                )
            )
            row = cur.fetchone()
            if row is None:
                return ImportSettings()
            return ImportSettings(
                ignore_patterns=tuple(row["ignore_patterns"] or ()),
                default_mode=WorkflowMode(row["default_mode"] or WorkflowMode.MANUAL_REVIEW.value),
            )

        return await self._run(_load, dict_rows=True)

    async def save_settings(self, settings: ImportSettings) -> None:
        def _save(cur: Any) -> None:
            cur.execute(
                sql.SQL(
                    "INSERT INTO {t} (id, ignore_patterns, default_mode) VALUES (1, %s, %s) "
                    "ON CONFLICT (id) DO UPDATE SET ignore_patterns = EXCLUDED.ignore_patterns, "
                    "default_mode = EXCLUDED.default_mode"
                ).format(t=sql.Identifier(SETTINGS_TABLE)),
                (list(settings.ignore_patterns), settings.default_mode.value),
            )

        await self._run(_save)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)
