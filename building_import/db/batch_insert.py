from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2 import sql
from psycopg2.extras import Json, execute_values

from .errors import BatchInsertError

"""DB batch insert.

Bulk INSERT of one commit chunk with psycopg2.extras.execute_values. When a
returning column is requested the generated values are fetched across all
execute_values pages (fetch=True), in insert order.

dict / list 値は Json アダプタで jsonb 列に渡す。
"""

__all__ = [
    "InsertResult",
    "batch_insert",
]


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[Any] | None = None


def _adapt(value: Any) -> Any:
    if isinstance(value, dict):
        return Json(value)
    return value


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: str | None = None,
    page_size: int = 1000,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: 対象テーブル名
    columns: 挿入列
    rows: 行シーケンス (columns と同順)
    returning: 取得する列名 (例: "id")。None なら RETURNING なし
    page_size: execute_values の page_size (性能調整)
    """
    rows_list = [[_adapt(v) for v in row] for row in rows]
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    query = sql.SQL("INSERT INTO {table} ({cols}) VALUES %s").format(
        table=sql.Identifier(table),
        cols=sql.SQL(",").join(sql.Identifier(c) for c in columns),
    )
    if returning:
        query = query + sql.SQL(" RETURNING {col}::text").format(col=sql.Identifier(returning))

    try:
        fetched = execute_values(
            cursor, query, rows_list, page_size=page_size, fetch=bool(returning)
        )
    except Exception as e:
        raise BatchInsertError(str(e)) from e

    returned = None
    if returning:
        returned = [r[0] for r in (fetched or [])]
        if len(returned) != len(rows_list):
            raise BatchInsertError(
                f"RETURNING yielded {len(returned)} values for {len(rows_list)} rows"
            )

    return InsertResult(inserted_rows=len(rows_list), returned_values=returned)
