from __future__ import annotations

import re

_WS = re.compile(r"\s+")


def normalize(text: str | None) -> str:
    """Comparison key: whitespace runs collapsed, trimmed, upper-cased."""
    return _WS.sub(" ", text or "").strip().upper()


def normalize_strict(text: str | None) -> str:
    """Barcode comparison key: alphanumerics only, upper-cased.

    "abc-123", "ABC 123" and "ABC123" share the key "ABC123", so a printed
    code and its barcode payload match despite formatting.
    """
    return "".join(ch for ch in (text or "") if ch.isalnum()).upper()
