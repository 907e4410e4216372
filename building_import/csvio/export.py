from __future__ import annotations

from pathlib import Path

import pandas as pd

from ..services.matcher import UnmatchedCollector

"""Unmatched address export.

Writes the retained unmatched rows with every original source column as a
semicolon-delimited file, UTF-8 with a leading BOM so spreadsheet tools pick
up the encoding.
"""

__all__ = [
    "EXPORT_SEPARATOR",
    "EXPORT_ENCODING",
    "unmatched_frame",
    "export_unmatched",
]

EXPORT_SEPARATOR = ";"
EXPORT_ENCODING = "utf-8-sig"  # BOM 付き


def unmatched_frame(headers: list[str], collector: UnmatchedCollector) -> pd.DataFrame:
    """Build a DataFrame of unmatched source rows (original column order)."""
    rows = [u.source.padded(len(headers)) for u in collector.entries if u.source is not None]
    return pd.DataFrame(rows, columns=headers, dtype=str)


def export_unmatched(path: Path, headers: list[str], collector: UnmatchedCollector) -> Path:
    """Write the unmatched rows and return the written path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = unmatched_frame(headers, collector)
    frame.to_csv(path, sep=EXPORT_SEPARATOR, index=False, encoding=EXPORT_ENCODING)
    return path
