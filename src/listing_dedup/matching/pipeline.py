"""Matching pipeline for a single scraped record.

Runs the identifier matchers and fuzzy attribute scoring in strict
priority order against the tenant's active listings and applies the
threshold decision.  All functions are PURE -- no database access.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from listing_dedup.errors import InvalidArgumentError
from listing_dedup.matching.combiner import combined_confidence, decide, score_fields
from listing_dedup.matching.config import FieldWeights, MatchingConfig
from listing_dedup.models.enums import MatchMethod
from listing_dedup.schemas import ScrapedRecord

VIN_LENGTH = 17


@dataclass
class MatchResult:
    """Outcome of matching one record.

    Attributes:
        matched_listing: The matched listing dict, ``None`` for no match.
        confidence: 0-100.
        method: Technique that produced the match.
        field_scores: Per-field similarity breakdown.
        decision: ``"match"``, ``"review"`` or ``"no_match"``.
        rule_id: Dealer rule that parameterized the call, if any.
        review_item_id: Review item enqueued for this result, if any.
    """

    matched_listing: dict | None
    confidence: float
    method: MatchMethod
    field_scores: dict[str, float] = field(default_factory=dict)
    decision: str = "no_match"
    rule_id: str | None = None
    review_item_id: int | None = None

    @property
    def matched_listing_id(self) -> str | None:
        return self.matched_listing["id"] if self.matched_listing else None

    @property
    def is_match(self) -> bool:
        return self.decision == "match"

    @property
    def needs_review(self) -> bool:
        return self.decision == "review"


def no_match() -> MatchResult:
    return MatchResult(matched_listing=None, confidence=0.0, method=MatchMethod.NONE)


def normalize_vin(vin: str | None) -> str:
    return (vin or "").strip().upper()


# ---------------------------------------------------------------------------
# Identifier matchers
# ---------------------------------------------------------------------------


def exact_vin_matches(record: dict, candidate: dict, config: MatchingConfig) -> bool:
    vin = normalize_vin(record.get("vin"))
    return len(vin) == VIN_LENGTH and normalize_vin(candidate.get("vin")) == vin


def partial_vin_matches(record: dict, candidate: dict, config: MatchingConfig) -> bool:
    """Compare only the trailing serial characters, tolerating prefix noise."""
    n = config.partial_vin_length
    vin = normalize_vin(record.get("vin"))
    other = normalize_vin(candidate.get("vin"))
    return len(vin) >= n and len(other) >= n and vin[-n:] == other[-n:]


def external_id_matches(record: dict, candidate: dict, config: MatchingConfig) -> bool:
    return (
        bool(record.get("external_id"))
        and record.get("external_id") == candidate.get("external_id")
        and record.get("source_site") == candidate.get("source_site")
    )


IdentifierMatcher = Callable[[dict, dict, MatchingConfig], bool]

IDENTIFIER_MATCHERS: dict[MatchMethod, IdentifierMatcher] = {
    MatchMethod.EXACT_VIN: exact_vin_matches,
    MatchMethod.PARTIAL_VIN: partial_vin_matches,
    MatchMethod.EXTERNAL_ID: external_id_matches,
}


def method_confidence(method: MatchMethod, config: MatchingConfig) -> float:
    """Configured confidence of an identifier method."""
    return getattr(config.method_confidence, method.value)


def enabled_identifier_methods(config: MatchingConfig) -> list[MatchMethod]:
    """Identifier methods to try, in priority order."""
    if config.features.strict_mode:
        return [MatchMethod.EXACT_VIN]

    methods = []
    if config.features.vin_matching:
        methods += [MatchMethod.EXACT_VIN, MatchMethod.PARTIAL_VIN]
    methods.append(MatchMethod.EXTERNAL_ID)
    return methods


# ---------------------------------------------------------------------------
# Fuzzy matching
# ---------------------------------------------------------------------------


def effective_weights(config: MatchingConfig) -> FieldWeights:
    if config.features.image_matching:
        return config.weights
    return config.weights.model_copy(update={"image": 0.0})


def fuzzy_candidates(
    record: dict, candidates: list[dict], config: MatchingConfig
) -> list[dict]:
    """Narrow candidates by model-year window and, optionally, dealer."""
    year = record.get("year")
    dealer_id = record.get("dealer_id")
    narrowed = []
    for cand in candidates:
        if year is not None and cand.get("year") is not None:
            if abs(cand["year"] - year) > config.fuzzy.year_window:
                continue
        if config.fuzzy.same_dealer_only and dealer_id:
            if cand.get("dealer_id") != dealer_id:
                continue
        narrowed.append(cand)
    return narrowed


def best_fuzzy_match(
    record: dict, candidates: list[dict], config: MatchingConfig
) -> tuple[dict | None, float, dict[str, float]]:
    """Return the highest-scoring candidate, its confidence and field scores.

    Ties keep the earlier candidate.
    """
    weights = effective_weights(config)
    best: dict | None = None
    best_confidence = -1.0
    best_scores: dict[str, float] = {}

    for cand in fuzzy_candidates(record, candidates, config):
        scores = score_fields(record, cand, config.tolerances, config.missing_field_score)
        confidence = combined_confidence(scores, weights)
        if confidence > best_confidence:
            best, best_confidence, best_scores = cand, confidence, scores.as_dict()

    if best is None:
        return None, 0.0, {}
    return best, best_confidence, best_scores


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _active_pool(record: dict, candidates: list[dict]) -> list[dict]:
    own_id = record.get("id")
    tenant_id = record.get("tenant_id")
    return [
        c for c in candidates
        if c.get("is_active", True)
        and (own_id is None or c.get("id") != own_id)
        and (tenant_id is None or c.get("tenant_id", tenant_id) == tenant_id)
    ]


def find_best_match(
    record: ScrapedRecord | dict | None,
    candidates: list[dict],
    config: MatchingConfig | None = None,
) -> MatchResult:
    """Match one record against active listings.  PURE FUNCTION -- no DB access.

    1. Exact VIN, partial VIN and external id, in that order; the first
       identifier hit wins.
    2. Otherwise the highest fuzzy attribute confidence.
    3. The confidence is classified against the thresholds; below the
       review threshold the result is an empty no-match.

    Args:
        record: The scraped record (model or listing-shaped dict).
        candidates: Listing dicts; inactive ones are ignored.
        config: Effective configuration for this call.
    """
    if record is None:
        raise InvalidArgumentError("record must not be None")
    if config is None:
        config = MatchingConfig()
    if isinstance(record, ScrapedRecord):
        record = record.to_dict()

    pool = _active_pool(record, candidates)
    matched: dict | None = None
    confidence = 0.0
    method = MatchMethod.NONE
    field_scores: dict[str, float] = {}

    for candidate_method in enabled_identifier_methods(config):
        matcher = IDENTIFIER_MATCHERS[candidate_method]
        hit = next((c for c in pool if matcher(record, c, config)), None)
        if hit is not None:
            matched = hit
            method = candidate_method
            confidence = method_confidence(candidate_method, config)
            field_scores = score_fields(
                record, hit, config.tolerances, config.missing_field_score
            ).as_dict()
            break

    if matched is None and config.features.fuzzy_matching and not config.features.strict_mode:
        matched, confidence, field_scores = best_fuzzy_match(record, pool, config)
        if matched is not None:
            method = MatchMethod.FUZZY_ATTRIBUTES

    if matched is None:
        return no_match()

    decision = decide(confidence, config.thresholds)
    if decision == "no_match":
        return no_match()

    return MatchResult(
        matched_listing=matched,
        confidence=confidence,
        method=method,
        field_scores=field_scores,
        decision=decision,
    )
