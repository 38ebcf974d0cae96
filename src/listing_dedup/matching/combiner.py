"""Field scoring, confidence combiner and decision maker.

Scores the attribute signals of two listing dicts, combines them into a
0-100 confidence and applies threshold-based decision logic.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass

from listing_dedup.matching.config import FieldWeights, ThresholdConfig, ToleranceConfig
from listing_dedup.matching.scorers import (
    geo_similarity,
    image_similarity,
    numeric_similarity,
    string_similarity,
    year_similarity,
)


@dataclass(frozen=True)
class FieldScores:
    """Per-field similarities, each in [0, 1]."""

    make_model: float
    year: float
    mileage: float
    price: float
    location: float
    image: float

    def as_dict(self) -> dict[str, float]:
        return {name: round(value, 4) for name, value in asdict(self).items()}


def _both(a: dict, b: dict, key: str) -> bool:
    return a.get(key) is not None and b.get(key) is not None


def make_model_similarity(a: dict, b: dict) -> float:
    """Mean of the make and model string similarities."""
    return (
        string_similarity(a.get("make"), b.get("make"))
        + string_similarity(a.get("model"), b.get("model"))
    ) / 2


def score_fields(
    a: dict,
    b: dict,
    tolerances: ToleranceConfig | None = None,
    missing_score: float = 0.5,
) -> FieldScores:
    """Compute every field similarity between two listing dicts.

    Optional fields that are absent on either side score ``missing_score``
    instead of the primitive's result.
    """
    if tolerances is None:
        tolerances = ToleranceConfig()

    year = (
        year_similarity(a["year"], b["year"]) if _both(a, b, "year") else missing_score
    )
    mileage = (
        numeric_similarity(a["mileage"], b["mileage"], tolerances.mileage)
        if _both(a, b, "mileage")
        else missing_score
    )
    price = (
        numeric_similarity(a["price"], b["price"], tolerances.price)
        if _both(a, b, "price")
        else missing_score
    )
    if _both(a, b, "latitude") and _both(a, b, "longitude"):
        location = geo_similarity(
            a["latitude"], a["longitude"], b["latitude"], b["longitude"],
            tolerances.location_miles,
        )
    else:
        location = missing_score
    image = (
        image_similarity(a["image_hash"], b["image_hash"])
        if a.get("image_hash") and b.get("image_hash")
        else missing_score
    )

    return FieldScores(
        make_model=make_model_similarity(a, b),
        year=year,
        mileage=mileage,
        price=price,
        location=location,
        image=image,
    )


def weighted_confidence(pairs: Iterable[tuple[float, float]]) -> float:
    """Combine ``(weight, similarity)`` pairs into a 0-100 confidence.

    The weights are normalised by their total, so they need not sum to
    1.0.  A zero total yields 0.0.
    """
    total_weight = 0.0
    weighted = 0.0
    for weight, similarity in pairs:
        total_weight += weight
        weighted += weight * similarity

    if total_weight == 0:
        return 0.0

    return round(100.0 * weighted / total_weight, 2)


def combined_confidence(
    scores: FieldScores, weights: FieldWeights | None = None
) -> float:
    """Weighted combination of the six field scores, rounded to 2 decimals."""
    if weights is None:
        weights = FieldWeights()

    return weighted_confidence(
        [
            (weights.make_model, scores.make_model),
            (weights.year, scores.year),
            (weights.mileage, scores.mileage),
            (weights.price, scores.price),
            (weights.location, scores.location),
            (weights.image, scores.image),
        ]
    )


def decide(
    confidence: float, thresholds: ThresholdConfig | None = None
) -> str:
    """Apply threshold-based decision logic.

    Returns:
        ``"match"`` if confidence >= auto-match threshold,
        ``"review"`` if review threshold <= confidence < auto-match,
        ``"no_match"`` otherwise.
    """
    if thresholds is None:
        thresholds = ThresholdConfig()

    if confidence >= thresholds.auto_match:
        return "match"
    if confidence >= thresholds.review:
        return "review"
    return "no_match"
