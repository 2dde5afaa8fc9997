"""Plausibility filter for raw recognized lines.

Recognizers reliably emit label text ("Serial Number:", "No.") next to the
value it labels. Dropping those lines keeps the candidate list to things a
user would actually want to collect. It is a heuristic: a real value may be
dropped and label text may survive; editing a candidate is the escape hatch.
"""

from __future__ import annotations

from typing import Iterable

from fieldcapture.core.config import (
    LABEL_MARKER_NORMALIZED,
    LABEL_MARKER_RAW,
    MIN_CANDIDATE_LENGTH,
    NOISE_TOKENS,
    NOISE_TRAILING_PUNCTUATION,
)
from fieldcapture.processors.normalizer import normalize


def is_plausible(line: str | None) -> bool:
    """Return True if the recognized line looks like a data value."""
    trimmed = (line or "").strip()
    if not trimmed:
        return False

    key = normalize(trimmed)
    if len(key) < MIN_CANDIDATE_LENGTH:
        return False
    if key.rstrip(NOISE_TRAILING_PUNCTUATION) in NOISE_TOKENS:
        return False
    if LABEL_MARKER_NORMALIZED in key or LABEL_MARKER_RAW in trimmed.lower():
        return False
    return True


def filter_plausible(lines: Iterable[str]) -> list[str]:
    """Keep plausible lines, preserving recognizer order."""
    return [line for line in lines if is_plausible(line)]
