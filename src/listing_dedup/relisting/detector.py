"""Relisting match detection.  PURE -- no database access.

A relisting is the reappearance of a vehicle whose earlier listing went
off market.  Candidates are deactivated listings that went off market
before the current listing appeared and have stayed off long enough;
the matchers run over them in priority order (VIN, external id,
same-dealer fuzzy) and the first hit wins.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable
from dataclasses import dataclass

from listing_dedup.matching.combiner import make_model_similarity, weighted_confidence
from listing_dedup.matching.config import RelistingConfig
from listing_dedup.matching.scorers import numeric_similarity, string_similarity, year_similarity
from listing_dedup.models.enums import RelistingType

# Labels stored in ``RelistingPattern.match_method``
METHOD_LABELS = {
    RelistingType.VIN_MATCH: "vin",
    RelistingType.EXTERNAL_ID_MATCH: "external_id",
    RelistingType.FUZZY_MATCH: "fuzzy",
    RelistingType.COMBINED_MATCH: "manual",
}


@dataclass(frozen=True)
class RelistingMatch:
    candidate: dict
    type: RelistingType
    confidence: float

    @property
    def method(self) -> str:
        return METHOD_LABELS[self.type]


def inactive_since(listing: dict) -> dt.datetime | None:
    """When the listing went off market, falling back to when it was last seen."""
    return listing.get("deactivated_at") or listing.get("last_seen_at")


def days_off_market(listing: dict, now: dt.datetime) -> float | None:
    since = inactive_since(listing)
    if since is None:
        return None
    return (now - since).total_seconds() / 86400


def relisting_confidence(current: dict, candidate: dict, config: RelistingConfig) -> float:
    """Weighted attribute confidence (0-100) between two listings of one dealer.

    Absent mileage, price, year or colour scores a neutral 0.5.
    """
    neutral = 0.5
    w = config.weights

    def both(key: str) -> bool:
        return current.get(key) is not None and candidate.get(key) is not None

    year = year_similarity(current["year"], candidate["year"]) if both("year") else neutral
    mileage = (
        numeric_similarity(current["mileage"], candidate["mileage"], config.mileage_tolerance)
        if both("mileage")
        else neutral
    )
    price = (
        numeric_similarity(current["price"], candidate["price"], config.price_tolerance)
        if both("price")
        else neutral
    )
    color = (
        string_similarity(current["exterior_color"], candidate["exterior_color"])
        if current.get("exterior_color") and candidate.get("exterior_color")
        else neutral
    )

    return weighted_confidence(
        [
            (w.make_model, make_model_similarity(current, candidate)),
            (w.year, year),
            (w.mileage, mileage),
            (w.price, price),
            (w.color, color),
        ]
    )


# ---------------------------------------------------------------------------
# Matchers: return a confidence on a hit, ``None`` otherwise
# ---------------------------------------------------------------------------


def _vin_match(current: dict, candidate: dict, config: RelistingConfig) -> float | None:
    vin = (current.get("vin") or "").strip().casefold()
    if vin and (candidate.get("vin") or "").strip().casefold() == vin:
        return config.vin_confidence
    return None


def _external_id_match(current: dict, candidate: dict, config: RelistingConfig) -> float | None:
    if (
        current.get("external_id")
        and current.get("external_id") == candidate.get("external_id")
        and current.get("source_site") == candidate.get("source_site")
    ):
        return config.external_id_confidence
    return None


def _fuzzy_match(current: dict, candidate: dict, config: RelistingConfig) -> float | None:
    dealer_id = current.get("dealer_id")
    if not dealer_id or candidate.get("dealer_id") != dealer_id:
        return None
    confidence = relisting_confidence(current, candidate, config)
    if confidence >= config.fuzzy_min_confidence:
        return confidence
    return None


RelistingMatcher = Callable[[dict, dict, RelistingConfig], float | None]

RELISTING_MATCHERS: dict[RelistingType, RelistingMatcher] = {
    RelistingType.VIN_MATCH: _vin_match,
    RelistingType.EXTERNAL_ID_MATCH: _external_id_match,
    RelistingType.FUZZY_MATCH: _fuzzy_match,
}


def _by_recency(candidates: list[dict]) -> list[dict]:
    return sorted(candidates, key=inactive_since, reverse=True)


def eligible_candidates(
    current: dict,
    candidates: list[dict],
    config: RelistingConfig,
    now: dt.datetime,
) -> list[dict]:
    """Candidates that can have been relisted as ``current``, most recent first.

    A candidate qualifies when it is inactive, is not ``current`` itself,
    went off market no later than ``current`` was first seen, and has
    been off market for at least ``min_days_off_market``.
    """
    own_id = current.get("id")
    listed_at = current.get("first_seen_at")
    pool = []
    for candidate in candidates:
        if candidate.get("is_active", False):
            continue
        if own_id is not None and candidate.get("id") == own_id:
            continue
        since = inactive_since(candidate)
        if since is None:
            continue
        # Both were live at the same time
        if listed_at is not None and since > listed_at:
            continue
        if days_off_market(candidate, now) < config.min_days_off_market:
            continue
        pool.append(candidate)
    return _by_recency(pool)


def find_relisting_match(
    current: dict,
    candidates: list[dict],
    config: RelistingConfig | None = None,
    now: dt.datetime | None = None,
) -> RelistingMatch | None:
    """Find the earlier listing ``current`` relists, if any.

    Args:
        current: Listing-shaped dict of the newly (re)activated listing;
            its ``first_seen_at``, when present, excludes candidates that
            were still live after it appeared.
        candidates: Listing dicts, filtered by ``eligible_candidates``.
        config: Relisting parameters.
        now: Reference time for the off-market gate.

    Returns:
        The first hit in priority order among eligible candidates, or
        ``None``.
    """
    if config is None:
        config = RelistingConfig()
    if now is None:
        now = dt.datetime.now(dt.UTC).replace(tzinfo=None)

    pool = eligible_candidates(current, candidates, config, now)
    for relisting_type, matcher in RELISTING_MATCHERS.items():
        for candidate in pool:
            confidence = matcher(current, candidate, config)
            if confidence is not None:
                return RelistingMatch(
                    candidate=candidate, type=relisting_type, confidence=confidence
                )

    return None
