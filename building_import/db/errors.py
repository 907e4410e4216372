from __future__ import annotations

"""Store error types shared by the PostgreSQL and in-memory adapters."""

__all__ = [
    "StoreError",
    "BatchInsertError",
]


class StoreError(Exception):
    """A store statement failed (constraint violation, connection problem, ...)."""


class BatchInsertError(StoreError):
    pass
