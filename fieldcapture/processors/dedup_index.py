"""Multi-key duplicate detection across recognition modalities.

Every item carries one or more identifying keys: its own normalized text and,
for a corroborated barcode, the normalized corroborating OCR line. Two items
are the same thing when their key sets intersect. This lets a barcode and a
plain OCR line for the same printed code collapse into one entry even when
their primary keys differ.

Pairs involving a barcode are compared strictly (alphanumerics only, on both
sides) because a barcode payload and the human-readable print of the same
code routinely differ in punctuation. Text-to-text pairs use the whitespace
and case normalized key only.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence, TypeVar

from fieldcapture.core.config import MIN_CORROBORATION_LENGTH
from fieldcapture.models.dto import Candidate
from fieldcapture.processors.normalizer import normalize, normalize_strict

T = TypeVar("T")

KeyExtractor = Callable[[T], set[str]]


def text_keys(text: str | None) -> set[str]:
    key = normalize(text)
    return {key} if key else set()


def barcode_keys(text: str | None) -> set[str]:
    keys = {normalize(text), normalize_strict(text)}
    keys.discard("")
    return keys


def keys_for(text: str | None, strict: bool) -> set[str]:
    return barcode_keys(text) if strict else text_keys(text)


def candidate_keys(candidate: Candidate, strict: bool = False) -> set[str]:
    """Identifying keys of a candidate: its text plus corroborating text."""
    keys = keys_for(candidate.raw_text, strict)
    if candidate.secondary_text:
        keys |= keys_for(candidate.secondary_text, strict)
    return keys


def item_keys(item: Candidate | str, strict: bool = False) -> set[str]:
    """Keys for either a detected candidate or an accepted plain value."""
    if isinstance(item, Candidate):
        return candidate_keys(item, strict)
    return keys_for(item, strict)


def is_duplicate(
    candidate_keys: set[str],
    existing: Iterable[T],
    extract_keys: KeyExtractor,
    exclude: Optional[object] = None,
) -> bool:
    """Return True iff candidate_keys intersects the keys of any other item.

    Args:
        candidate_keys: Identifying keys of the new item
        existing: Accepted values and/or detected candidates
        extract_keys: Returns the key set of one existing item
        exclude: The new item itself when it is already part of ``existing``;
            compared by identity and skipped

    Returns:
        True if the new item matches any existing item
    """
    if not candidate_keys:
        return False
    for item in existing:
        if exclude is not None and item is exclude:
            continue
        if candidate_keys & extract_keys(item):
            return True
    return False


def matches_any(
    item: Candidate | str,
    existing: Sequence[Candidate | str],
    strict_plain_values: bool = False,
    exclude: Optional[object] = None,
) -> bool:
    """Pairwise-mode duplicate check of one item against mixed existing items.

    A pair is compared strictly when either side is a barcode candidate. Plain
    string values (accepted values) carry no modality, so
    ``strict_plain_values`` decides for them; barcode-capable sessions set it
    so that a payload and its printed form can never both be accepted.
    """
    item_is_barcode = isinstance(item, Candidate) and item.is_barcode

    def pair_strict(other: Candidate | str) -> bool:
        if item_is_barcode:
            return True
        if isinstance(other, Candidate):
            return other.is_barcode
        return strict_plain_values

    strict_pool = [other for other in existing if pair_strict(other)]
    plain_pool = [other for other in existing if not pair_strict(other)]

    if plain_pool and is_duplicate(
        item_keys(item, strict=False),
        plain_pool,
        lambda other: item_keys(other, strict=False),
        exclude,
    ):
        return True
    return bool(strict_pool) and is_duplicate(
        item_keys(item, strict=True),
        strict_pool,
        lambda other: item_keys(other, strict=True),
        exclude,
    )


def dedupe_values(values: Iterable[str]) -> list[str]:
    """Drop values whose normalized key was already seen; first one wins."""
    seen: set[str] = set()
    unique: list[str] = []
    for value in values:
        key = normalize(value)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(value)
    return unique


def pick_corroborating_line(payload: str, lines: Iterable[str]) -> str | None:
    """First OCR line that is not the barcode's own value and is long enough.

    Known to be weak: it can pick an unrelated nearby line. Kept as the
    product behaviour until there is a better signal than proximity.
    """
    own_keys = barcode_keys(payload)
    for line in lines:
        trimmed = (line or "").strip()
        if len(normalize(trimmed)) < MIN_CORROBORATION_LENGTH:
            continue
        if barcode_keys(trimmed) & own_keys:
            continue
        return trimmed
    return None
