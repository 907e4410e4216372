from __future__ import annotations

"""Cooperative cancellation.

The token is passed explicitly into the registry load and the committer and
checked at every suspension point. Setting it never interrupts a statement
already in flight; the current chunk finishes (or fails) and the loop stops.
"""

__all__ = [
    "CancellationToken",
    "ImportCancelled",
]


class ImportCancelled(Exception):
    """Raised when cancellation happens before anything has been written."""


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, message: str = "import cancelled") -> None:
        if self._cancelled:
            raise ImportCancelled(message)
