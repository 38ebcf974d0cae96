"""Numeric proximity scorers for price, mileage and model year."""

from __future__ import annotations

from listing_dedup.errors import InvalidArgumentError


def numeric_similarity(x: float, y: float, tolerance: float) -> float:
    """Score two numbers: 1.0 within ``tolerance``, ``tolerance / |x - y|`` beyond.

    The decay is asymptotic and never reaches 0.  A non-positive
    tolerance raises ``InvalidArgumentError``.
    """
    if tolerance <= 0:
        raise InvalidArgumentError(f"tolerance must be positive, got {tolerance}")

    diff = abs(x - y)
    if diff <= tolerance:
        return 1.0
    return tolerance / diff


def year_similarity(y1: int, y2: int) -> float:
    """Lose 0.2 per year of difference, clamped at 0."""
    return max(0.0, 1.0 - 0.2 * abs(y1 - y2))
