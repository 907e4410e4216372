from __future__ import annotations

import sys
from collections.abc import Callable
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress reporting with tqdm (TTY only).

Progress is reported as (phase label, current, total). One tqdm bar is shown
per phase ("Registry laden", "Import", "Rückgängig"); in non-TTY
environments (CI, cron) the bar is disabled to avoid ANSI control sequence
spam. An optional callback receives every update so a UI front end can
render its own indicator.
"""

__all__ = [
    "ProgressCallback",
    "ProgressReporter",
    "is_tty_enabled",
]

ProgressCallback = Callable[[str, int, int], None]


def is_tty_enabled() -> bool:
    """True if stdout is a TTY and progress bars should be displayed."""
    return sys.stdout.isatty()


class ProgressReporter:
    """Phase-based progress reporter.

    ``report(phase, current, total)`` may be called with a new phase label at
    any time; the previous bar is closed and a new one opened. ``total`` may be
    0 when unknown (paginated registry load).
    """

    def __init__(
        self,
        callback: ProgressCallback | None = None,
        *,
        enabled: bool | None = None,
    ) -> None:
        self.callback = callback
        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.phase: str | None = None
        self.current = 0
        self.total = 0
        self.pbar: TqdmType[Any] | None = None

    def report(self, phase: str, current: int, total: int) -> None:
        if phase != self.phase:
            self._close_bar()
            self.phase = phase
            if self.enabled:
                self.pbar = tqdm(
                    total=total or None,
                    desc=phase,
                    unit="row",
                    leave=True,
                    ncols=80,
                    ascii=True,
                )
        self.current = current
        self.total = total
        if self.pbar is not None:
            if total and self.pbar.total != total:
                self.pbar.total = total
            self.pbar.n = current
            self.pbar.refresh()
        if self.callback is not None:
            self.callback(phase, current, total)

    def _close_bar(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def close(self) -> None:
        self._close_bar()
        self.phase = None

    def __enter__(self) -> ProgressReporter:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
