# src/extraction/offsets.py — v1
"""Offset arithmetic and quote verification against immutable evidence text.

Index system: all stored offsets are UTF-16 code units, the unit used by
most extraction services and browser tooling. Python strings index by code
point, so every slice goes through utf16_slice(); the two agree only for
text without astral-plane characters (emoji, some CJK, math symbols).

verify_quote() accepts three readings of the offsets an extractor claims
(UTF-16 units, code points, UTF-8 bytes) and always re-anchors the result
to UTF-16. It never searches for the quote elsewhere in the document.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Callable

from regtruth.core.models import MatchType

_QUOTE_VARIANTS = [
    0x201C, 0x201D, 0x201E, 0x201F, 0x00AB, 0x00BB,
    0x2039, 0x203A, 0x275D, 0x275E, 0x276E, 0x276F, 0xFF02,
]
_APOSTROPHE_VARIANTS = [0x2018, 0x2019, 0x201A, 0x201B, 0x2032, 0xFF07]
_NBSP = 0x00A0
_SOFT_HYPHEN = 0x00AD
_TRANSLATE: dict[int, str | None] = {
    **{c: '"' for c in _QUOTE_VARIANTS},
    **{c: "'" for c in _APOSTROPHE_VARIANTS},
    _NBSP: " ",
    _SOFT_HYPHEN: None,
}
_WS = re.compile(r"\s+")


# === Index conversion ===


def utf16_len(text: str) -> int:
    """Length of text in UTF-16 code units."""
    return len(text.encode("utf-16-le")) // 2


def utf16_slice(text: str, start: int, end: int) -> str | None:
    """Substring between UTF-16 offsets, or None if the range is invalid.

    A range that starts or ends inside a surrogate pair is invalid.
    """
    if start < 0 or end < start:
        return None
    encoded = text.encode("utf-16-le")
    if end * 2 > len(encoded):
        return None
    try:
        return encoded[start * 2:end * 2].decode("utf-16-le")
    except UnicodeDecodeError:
        return None


def codepoint_to_utf16(text: str, index: int) -> int:
    """Convert a code-point index into a UTF-16 offset."""
    return utf16_len(text[:index])


def utf8_to_utf16(text: str, byte_offset: int) -> int | None:
    """Convert a UTF-8 byte offset into a UTF-16 offset (None mid-character)."""
    encoded = text.encode("utf-8")
    if byte_offset < 0 or byte_offset > len(encoded):
        return None
    try:
        return utf16_len(encoded[:byte_offset].decode("utf-8"))
    except UnicodeDecodeError:
        return None


# === Normalisation ===


def normalize_for_match(text: str) -> str:
    """Canonical form for tolerant quote comparison.

    NFKC, NBSP to space, soft hyphen removed, typographic quotes and
    apostrophes folded to ASCII, whitespace runs collapsed, ends trimmed.
    """
    out = unicodedata.normalize("NFKC", text).translate(_TRANSLATE)
    return _WS.sub(" ", out).strip()


# === Verification ===


@dataclass(frozen=True)
class QuoteMatch:
    """Result of checking a claimed quote against the evidence text."""

    match_type: MatchType
    start: int
    end: int
    quote: str
    index_system: str = "utf16"

    @property
    def verified(self) -> bool:
        return self.match_type in ("EXACT", "NORMALIZED")


def _read_utf16(text: str, start: int, end: int) -> tuple[int, int, str] | None:
    sliced = utf16_slice(text, start, end)
    return None if sliced is None else (start, end, sliced)


def _read_codepoint(text: str, start: int, end: int) -> tuple[int, int, str] | None:
    if start < 0 or end < start or end > len(text):
        return None
    return codepoint_to_utf16(text, start), codepoint_to_utf16(text, end), text[start:end]


def _read_utf8(text: str, start: int, end: int) -> tuple[int, int, str] | None:
    s16, e16 = utf8_to_utf16(text, start), utf8_to_utf16(text, end)
    if s16 is None or e16 is None or e16 < s16:
        return None
    return _read_utf16(text, s16, e16)


_READERS: list[tuple[str, Callable[[str, int, int], tuple[int, int, str] | None]]] = [
    ("utf16", _read_utf16),
    ("codepoint", _read_codepoint),
    ("utf8", _read_utf8),
]


def verify_quote(text: str, start: int, end: int, quote: str) -> QuoteMatch:
    """Check that quote sits at [start, end) of text.

    Order of preference: exact under any index reading, then normalised
    equality under any reading. On a normalised match the returned quote is
    the real slice, so utf16_slice(text, m.start, m.end) == m.quote holds
    for every verified result.
    """
    readings = []
    for name, reader in _READERS:
        got = reader(text, start, end)
        if got is not None:
            readings.append((name, got))

    for name, (s16, e16, sliced) in readings:
        if sliced == quote and quote:
            return QuoteMatch("EXACT", s16, e16, sliced, name)

    target = normalize_for_match(quote)
    if target:
        for name, (s16, e16, sliced) in readings:
            if normalize_for_match(sliced) == target:
                return QuoteMatch("NORMALIZED", s16, e16, sliced, name)

    return QuoteMatch("NOT_FOUND", start, end, quote)


def holds_invariant(text: str, start: int, end: int, quote: str) -> bool:
    """The hard provenance invariant: the stored quote is the stored slice."""
    return bool(quote) and utf16_slice(text, start, end) == quote
