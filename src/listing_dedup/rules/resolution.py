"""Rule applicability and effective-configuration resolution.  PURE."""

from __future__ import annotations

from pydantic import ValidationError

from listing_dedup.errors import InvalidArgumentError
from listing_dedup.matching.config import MatchingConfig, ThresholdConfig
from listing_dedup.models.dealer_rule import DealerDeduplicationRule

_WEIGHT_COLUMNS = {
    "make_model": "make_model_weight",
    "year": "year_weight",
    "mileage": "mileage_weight",
    "price": "price_weight",
    "location": "location_weight",
    "image": "image_weight",
}

_FEATURE_COLUMNS = {
    "vin_matching": "enable_vin_matching",
    "fuzzy_matching": "enable_fuzzy_matching",
    "image_matching": "enable_image_matching",
    "strict_mode": "require_exact_vin_match",
}


def _same_text(bound: str | None, value: str | None) -> bool:
    if not bound or not value:
        return True
    return bound.strip().casefold() == value.strip().casefold()


def rule_applies(rule: DealerDeduplicationRule, listing: dict) -> bool:
    """Check whether ``listing`` falls inside the rule's bounds.

    Unbounded dimensions always match, and so does a listing that has
    no value for a bounded dimension.
    """
    price = listing.get("price")
    if price is not None:
        if rule.min_price is not None and price < rule.min_price:
            return False
        if rule.max_price is not None and price > rule.max_price:
            return False

    year = listing.get("year")
    if year is not None:
        if rule.min_year is not None and year < rule.min_year:
            return False
        if rule.max_year is not None and year > rule.max_year:
            return False

    return _same_text(rule.make_filter, listing.get("make")) and _same_text(
        rule.model_filter, listing.get("model")
    )


def weight_overrides(rule: DealerDeduplicationRule) -> dict[str, float]:
    return {
        name: getattr(rule, column)
        for name, column in _WEIGHT_COLUMNS.items()
        if getattr(rule, column) is not None
    }


def resolve_thresholds(
    defaults: ThresholdConfig, rule: DealerDeduplicationRule
) -> ThresholdConfig:
    """Merge the rule's threshold overrides over ``defaults``.

    Raises:
        InvalidArgumentError: The merged thresholds leave no review band,
            e.g. a review override above the default auto-match threshold.
    """
    overrides = {
        key: value
        for key, value in (
            ("auto_match", rule.auto_match_threshold),
            ("review", rule.review_threshold),
        )
        if value is not None
    }
    try:
        return ThresholdConfig(**{**defaults.model_dump(), **overrides})
    except ValidationError as exc:
        raise InvalidArgumentError(
            f"rule {rule.rule_name!r} thresholds are inconsistent: {exc.errors()[0]['msg']}"
        ) from exc


def apply_rule(
    config: MatchingConfig, rule: DealerDeduplicationRule | None
) -> MatchingConfig:
    """Resolve the effective configuration for one matching call.

    Non-null rule columns replace the corresponding defaults; the input
    ``config`` is not modified.  Weight sums are checked when the rule is
    saved, not here.
    """
    if rule is None:
        return config

    weights = config.weights.model_copy(update=weight_overrides(rule))
    thresholds = resolve_thresholds(config.thresholds, rule)
    tolerances = config.tolerances.model_copy(
        update={
            key: value
            for key, value in (
                ("mileage", rule.mileage_tolerance),
                ("price", rule.price_tolerance),
            )
            if value is not None
        }
    )
    features = config.features.model_copy(
        update={
            name: getattr(rule, column)
            for name, column in _FEATURE_COLUMNS.items()
            if getattr(rule, column) is not None
        }
    )
    fuzzy = config.fuzzy
    if rule.year_tolerance is not None:
        fuzzy = fuzzy.model_copy(update={"year_window": rule.year_tolerance})

    return config.model_copy(
        update={
            "weights": weights,
            "thresholds": thresholds,
            "tolerances": tolerances,
            "features": features,
            "fuzzy": fuzzy,
        }
    )
