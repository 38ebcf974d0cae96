"""Case-insensitive normalized edit-distance similarity."""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein


def _normalize(value: str | None) -> str:
    return (value or "").strip().casefold()


def string_similarity(a: str | None, b: str | None) -> float:
    """Return ``1 - levenshtein(a, b) / max(len(a), len(b))``.

    Two blank values are vacuously equal (1.0); exactly one blank value
    scores 0.0.
    """
    a = _normalize(a)
    b = _normalize(b)

    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0

    return 1.0 - Levenshtein.distance(a, b) / max(len(a), len(b))
