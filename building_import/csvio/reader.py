from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from ..models.records import SourceRow
from .decoding import decode_source

"""Delimited text reader.

- First non-blank line is the header, following lines are data rows.
- Cells are split by a small quote-aware state machine (quotes toggle the
  "inside quotes" state and are dropped, the delimiter only splits outside
  quotes).
- Rows matching one of the configured ignore patterns (case-insensitive
  substring of the whole row text) are dropped and counted as ignored.
"""

__all__ = [
    "EmptyFileError",
    "ParsedFile",
    "parse_line",
    "parse_rows",
    "read_source_file",
]


class EmptyFileError(Exception):
    """Raised when the file has no data row (fewer than two non-blank lines)."""


@dataclass
class ParsedFile:
    file_name: str
    headers: list[str]
    rows: list[SourceRow]
    delimiter: str
    encoding: str
    ignored_rows: int = 0

    @property
    def width(self) -> int:
        return len(self.headers)


def parse_line(line: str, delimiter: str) -> list[str]:
    """Split one line into cells honoring double quotes."""
    cells: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            cells.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    cells.append("".join(current).strip())
    return cells


def _is_ignored(cells: Iterable[str], patterns: tuple[str, ...]) -> bool:
    if not patterns:
        return False
    row_text = " ".join(cells).lower()
    return any(p in row_text for p in patterns)


def parse_rows(
    text: str,
    delimiter: str,
    *,
    file_name: str = "",
    encoding: str = "",
    ignore_patterns: tuple[str, ...] = (),
) -> ParsedFile:
    """Parse normalized text into header + rows.

    Parameters
    ----------
    text: 正規化済みテキスト
    delimiter: 区切り文字
    ignore_patterns: lower-cased substrings; matching rows are dropped
    """
    numbered = [
        (number, line)
        for number, line in enumerate(text.splitlines(), start=1)
        if line.strip()
    ]
    if len(numbered) < 2:
        raise EmptyFileError(
            f"file '{file_name}' needs a header line and at least one data line"
        )

    header_cells = parse_line(numbered[0][1], delimiter)
    headers = [h.strip() for h in header_cells]

    rows: list[SourceRow] = []
    ignored = 0
    for number, line in numbered[1:]:
        cells = parse_line(line, delimiter)
        if _is_ignored(cells, ignore_patterns):
            ignored += 1
            continue
        # 末尾の欠損セルは空文字で補完、余剰セルは切り捨て
        padded = tuple(cells[i] if i < len(cells) else "" for i in range(len(headers)))
        rows.append(SourceRow(line_number=number, cells=padded))

    return ParsedFile(
        file_name=file_name,
        headers=headers,
        rows=rows,
        delimiter=delimiter,
        encoding=encoding,
        ignored_rows=ignored,
    )


def read_source_file(path: Path, ignore_patterns: tuple[str, ...] = ()) -> ParsedFile:
    """Read, decode and parse a delimited source file."""
    decoded = decode_source(path.read_bytes())
    return parse_rows(
        decoded.text,
        decoded.delimiter,
        file_name=path.name,
        encoding=decoded.encoding,
        ignore_patterns=ignore_patterns,
    )
