from __future__ import annotations

import re

from ..csvio.decoding import MOJIBAKE_REPAIRS

"""Address normalization and match key construction.

normalize_text() applies, in order:
1. lower-case
2. collapse whitespace
3. repair known mis-encoding sequences
4. lone replacement character / "?" between two letters -> "ß"
5. street variants (straße, strasse, strase, str., str) -> "strasse"
6. transliterate umlauts and ß to ASCII digraphs
7. strip remaining punctuation
8. collapse whitespace again

Match keys are "street|house_number|postal_code" and
"street|house_number|city"; the postal code is only trimmed.
"""

__all__ = [
    "KEY_SEPARATOR",
    "normalize_text",
    "normalize_house_number",
    "postal_key",
    "city_key",
    "match_keys",
]

KEY_SEPARATOR = "|"

_WHITESPACE = re.compile(r"\s+")
# 小文字化後に照合するため、修復表も小文字化しておく
_LOWER_REPAIRS: dict[str, str] = {k.lower(): v.lower() for k, v in MOJIBAKE_REPAIRS.items()}
_LONE_SHARP_S = re.compile(r"(?<=[a-zäöü])[?�](?=[a-zäöü])")
_STREET_VARIANTS = re.compile(r"stra(?:ß|ss|s)e\b|str\.|str\b")
_TRANSLITERATION = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})
_PUNCTUATION = re.compile(r"[^\w\s]|_")


def _collapse(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def normalize_text(value: str | None) -> str:
    """Tolerant, encoding- and spelling-insensitive form of an address string."""
    if not value:
        return ""
    text = _collapse(value.lower())
    if "ã" in text or "â" in text:
        for broken, fixed in _LOWER_REPAIRS.items():
            text = text.replace(broken, fixed)
    text = _LONE_SHARP_S.sub("ß", text)
    text = _STREET_VARIANTS.sub("strasse", text)
    text = text.translate(_TRANSLITERATION)
    text = _PUNCTUATION.sub("", text)
    return _collapse(text)


def normalize_house_number(value: str | None) -> str:
    """House numbers: lower-case, no whitespace ("5 A" -> "5a")."""
    if not value:
        return ""
    return _WHITESPACE.sub("", value.lower())


def postal_key(street: str | None, house_number: str | None, postal_code: str | None) -> str | None:
    plz = (postal_code or "").strip()
    if not plz:
        return None
    return KEY_SEPARATOR.join((normalize_text(street), normalize_house_number(house_number), plz))


def city_key(street: str | None, house_number: str | None, city: str | None) -> str:
    return KEY_SEPARATOR.join(
        (normalize_text(street), normalize_house_number(house_number), normalize_text(city))
    )


def match_keys(
    street: str | None,
    house_number: str | None,
    postal_code: str | None,
    city: str | None,
) -> list[str]:
    """Both lookup variants, postal code variant first when present."""
    keys: list[str] = []
    by_plz = postal_key(street, house_number, postal_code)
    if by_plz is not None:
        keys.append(by_plz)
    keys.append(city_key(street, house_number, city))
    return keys
