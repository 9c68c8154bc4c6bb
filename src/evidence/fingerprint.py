# src/evidence/fingerprint.py — v1
"""Content addressing, decoding and coarse classification of fetched documents.

Evidence identity is (source_url, sha256(raw bytes)). The evidence id is a
pure function of that pair, so retries of the same ingestion compute the
same id before touching the store.
"""

from __future__ import annotations

import codecs
import hashlib
import re

from regtruth.core.models import ContentClass

_TABULAR_HINTS = ("text/csv", "tab-separated", "spreadsheet", "excel")
_SCANNED_HINTS = ("image/",)
_DELIMITED_LINE = re.compile(r"^[^\n]*([;\t|])[^\n]*\1[^\n]*$")


def content_digest(raw_bytes: bytes) -> str:
    """SHA-256 hex digest of the exact bytes received."""
    return hashlib.sha256(raw_bytes).hexdigest()


def text_digest(raw_content: str) -> str:
    """SHA-256 of the UTF-8 encoding of already-decoded text."""
    return content_digest(raw_content.encode("utf-8"))


def make_evidence_id(source_url: str, content_hash: str) -> str:
    """Deterministic id for the (url, digest) natural key."""
    key = f"{source_url}\x00{content_hash}".encode("utf-8")
    return f"ev_{hashlib.sha256(key).hexdigest()[:16]}"


def decode_content(raw_bytes: bytes) -> str:
    """Decode bytes to text, honouring a BOM, else UTF-8, else Latin-1.

    Latin-1 never fails, so decoding is total; callers that need to know
    the content was binary should classify it first.
    """
    if raw_bytes.startswith(codecs.BOM_UTF8):
        return raw_bytes[len(codecs.BOM_UTF8):].decode("utf-8", errors="replace")
    if raw_bytes.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return raw_bytes.decode("utf-16", errors="replace")
    try:
        return raw_bytes.decode("utf-8")
    except UnicodeDecodeError:
        return raw_bytes.decode("latin-1")


def classify_content(raw_bytes: bytes, text: str, content_type_hint: str | None) -> ContentClass:
    """Coarse content class used to route documents (OCR and parsing are external)."""
    hint = (content_type_hint or "").lower()

    if raw_bytes.startswith(b"%PDF"):
        return "pdf"
    if any(h in hint for h in _SCANNED_HINTS):
        return "scanned"
    if any(h in hint for h in _TABULAR_HINTS):
        return "tabular"
    if "html" in hint or text.lstrip()[:15].lower().startswith(("<!doctype html", "<html")):
        return "html"
    if not text.strip():
        return "unknown"
    if _looks_tabular(text):
        return "tabular"
    return "text"


def _looks_tabular(text: str) -> bool:
    """Most non-empty lines carry the same delimiter at least twice."""
    lines = [ln for ln in text.splitlines() if ln.strip()][:50]
    if len(lines) < 3:
        return False
    delimited = sum(1 for ln in lines if _DELIMITED_LINE.match(ln))
    return delimited / len(lines) >= 0.8
