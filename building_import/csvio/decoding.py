from __future__ import annotations

from dataclasses import dataclass

"""Encoding & delimiter detection for source extracts.

Extracts arrive either as UTF-8 or as a legacy Windows-1252 export, and are
sometimes double-encoded (UTF-8 bytes decoded as Windows-1252 somewhere
upstream, e.g. "StraÃŸe"). Both decodings are scored by their corruption
markers and the cleaner one wins; known mojibake sequences are then repaired
in the chosen text.
"""

__all__ = [
    "DecodedText",
    "MOJIBAKE_REPAIRS",
    "decode_source",
    "detect_delimiter",
    "repair_mojibake",
    "corruption_score",
]

UTF8_LABEL = "UTF-8"
LEGACY_LABEL = "Windows-1252"
LEGACY_CODEC = "cp1252"
REPLACEMENT_CHAR = "�"

_REPAIRABLE_CHARS = "äöüÄÖÜßéèàáâêôûç"


def _build_repairs() -> dict[str, str]:
    # UTF-8 のバイト列を cp1252 として読んだ結果 -> 正しい文字
    repairs: dict[str, str] = {}
    for ch in _REPAIRABLE_CHARS:
        broken = ch.encode("utf-8").decode(LEGACY_CODEC, errors="replace")
        if REPLACEMENT_CHAR not in broken:
            repairs[broken] = ch
    return repairs


MOJIBAKE_REPAIRS: dict[str, str] = _build_repairs()

# "Â" = 壊れた NBSP / 記号, "Ãƒ" / "Ã‚" = 二重エンコード
_MARKERS: tuple[str, ...] = tuple(MOJIBAKE_REPAIRS) + ("Â", "Ãƒ", "Ã‚")


@dataclass(frozen=True)
class DecodedText:
    text: str
    delimiter: str
    encoding: str  # human-readable label for diagnostics


def corruption_score(text: str) -> int:
    """Count replacement characters plus known mis-encoding marker sequences."""
    score = text.count(REPLACEMENT_CHAR)
    for marker in _MARKERS:
        score += text.count(marker)
    return score


def repair_mojibake(text: str) -> str:
    """Rewrite known corrupted multi-byte sequences back to the intended character."""
    if "Ã" not in text and "Â" not in text:
        return text
    for broken, fixed in MOJIBAKE_REPAIRS.items():
        text = text.replace(broken, fixed)
    return text


def detect_delimiter(text: str) -> str:
    """Inspect the first line: tab, then semicolon, default comma."""
    first_line = text.split("\n", 1)[0]
    if "\t" in first_line:
        return "\t"
    if ";" in first_line:
        return ";"
    return ","


def decode_source(raw: bytes) -> DecodedText:
    """Decode raw file bytes choosing the less corrupted decoding.

    Ties go to UTF-8.
    """
    if raw.startswith(b"\xef\xbb\xbf"):
        raw = raw[3:]
    utf8_text = raw.decode("utf-8", errors="replace")
    legacy_text = raw.decode(LEGACY_CODEC, errors="replace")

    if corruption_score(legacy_text) < corruption_score(utf8_text):
        text, label = legacy_text, LEGACY_LABEL
    else:
        text, label = utf8_text, UTF8_LABEL

    text = repair_mojibake(text)
    return DecodedText(text=text, delimiter=detect_delimiter(text), encoding=label)
