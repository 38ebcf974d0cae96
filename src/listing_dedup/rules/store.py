"""Dealer rule store: CRUD, resolution queries, presets and usage tracking.

Every function takes an ``AsyncSession`` and flushes; the caller owns the
transaction (see ``listing_dedup.db.session.session_scope``).
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from listing_dedup.errors import InvalidArgumentError, NotFoundError
from listing_dedup.matching.config import FieldWeights, load_default_config
from listing_dedup.models.base import utcnow
from listing_dedup.models.dealer_rule import DealerDeduplicationRule
from listing_dedup.rules.resolution import resolve_thresholds, rule_applies, weight_overrides

logger = structlog.get_logger()

# Keyword settings accepted by ``create_rule`` besides its named arguments
RULE_SETTINGS = frozenset(
    {
        "auto_match_threshold",
        "review_threshold",
        "make_model_weight",
        "year_weight",
        "mileage_weight",
        "price_weight",
        "location_weight",
        "image_weight",
        "mileage_tolerance",
        "price_tolerance",
        "year_tolerance",
        "enable_vin_matching",
        "enable_fuzzy_matching",
        "enable_image_matching",
        "require_exact_vin_match",
        "min_price",
        "max_price",
        "min_year",
        "max_year",
        "make_filter",
        "model_filter",
    }
)


@dataclass
class RuleStatistics:
    """Usage of one rule."""

    rule_id: str
    rule_name: str
    dealer_id: str
    is_active: bool
    priority: int
    times_applied: int
    last_applied_at: dt.datetime | None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_thresholds(auto_match: float | None, review: float | None) -> None:
    for name, value in (("auto_match_threshold", auto_match), ("review_threshold", review)):
        if value is not None and not 0 <= value <= 100:
            raise InvalidArgumentError(f"{name} must be within 0-100, got {value}")
    if auto_match is not None and review is not None and review > auto_match:
        raise InvalidArgumentError(
            f"review_threshold {review} exceeds auto_match_threshold {auto_match}"
        )


def _check_non_negative(**values: float | None) -> None:
    for name, value in values.items():
        if value is not None and value < 0:
            raise InvalidArgumentError(f"{name} must not be negative, got {value}")


def _check_positive(**values: float | None) -> None:
    for name, value in values.items():
        if value is not None and value <= 0:
            raise InvalidArgumentError(f"{name} must be positive, got {value}")


def _check_range(name: str, low: float | None, high: float | None) -> None:
    if low is not None and high is not None and low > high:
        raise InvalidArgumentError(f"min_{name} {low} exceeds max_{name} {high}")


def _validate(rule: DealerDeduplicationRule) -> None:
    """Check the rule on its own and merged over the default configuration.

    A single threshold override must still leave a review band against
    the default of the other.  Unnormalized effective weights are logged
    once per save.
    """
    defaults = load_default_config()
    _check_thresholds(rule.auto_match_threshold, rule.review_threshold)
    resolve_thresholds(defaults.thresholds, rule)
    _check_non_negative(
        make_model_weight=rule.make_model_weight,
        year_weight=rule.year_weight,
        mileage_weight=rule.mileage_weight,
        price_weight=rule.price_weight,
        location_weight=rule.location_weight,
        image_weight=rule.image_weight,
        year_tolerance=rule.year_tolerance,
    )
    overrides = weight_overrides(rule)
    if overrides:
        FieldWeights(**{**defaults.weights.model_dump(), **overrides})
    _check_positive(
        mileage_tolerance=rule.mileage_tolerance,
        price_tolerance=rule.price_tolerance,
    )
    _check_range("price", rule.min_price, rule.max_price)
    _check_range("year", rule.min_year, rule.max_year)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def create_rule(
    session: AsyncSession,
    tenant_id: str,
    dealer_id: str,
    rule_name: str,
    *,
    description: str | None = None,
    priority: int = 0,
    is_active: bool = True,
    created_by: str | None = None,
    **settings,
) -> DealerDeduplicationRule:
    """Create a rule.  ``settings`` are nullable override columns."""
    unknown = set(settings) - RULE_SETTINGS
    if unknown:
        raise InvalidArgumentError(f"unknown rule settings: {sorted(unknown)}")

    rule = DealerDeduplicationRule(
        tenant_id=tenant_id,
        dealer_id=dealer_id,
        rule_name=rule_name,
        description=description,
        priority=priority,
        is_active=is_active,
        created_by=created_by,
        **settings,
    )
    _validate(rule)
    session.add(rule)
    await session.flush()

    logger.info(
        "dealer_rule_created",
        rule_id=rule.id,
        tenant_id=tenant_id,
        dealer_id=dealer_id,
        rule_name=rule_name,
        priority=priority,
    )
    return rule


async def get_rule(
    session: AsyncSession, rule_id: str
) -> DealerDeduplicationRule | None:
    return await session.get(DealerDeduplicationRule, rule_id)


async def _require_rule(session: AsyncSession, rule_id: str) -> DealerDeduplicationRule:
    rule = await get_rule(session, rule_id)
    if rule is None:
        raise NotFoundError(f"dealer rule {rule_id} not found")
    return rule


def _ordered(stmt: sa.Select) -> sa.Select:
    return stmt.order_by(
        DealerDeduplicationRule.priority.desc(),
        DealerDeduplicationRule.created_at.asc(),
    )


async def get_dealer_rules(
    session: AsyncSession,
    tenant_id: str,
    dealer_id: str,
    active_only: bool = True,
) -> list[DealerDeduplicationRule]:
    """Rules of one dealer, highest priority first, oldest first on ties."""
    stmt = sa.select(DealerDeduplicationRule).where(
        DealerDeduplicationRule.tenant_id == tenant_id,
        DealerDeduplicationRule.dealer_id == dealer_id,
    )
    if active_only:
        stmt = stmt.where(DealerDeduplicationRule.is_active.is_(True))
    result = await session.execute(_ordered(stmt))
    return list(result.scalars().all())


async def get_all_rules(
    session: AsyncSession, tenant_id: str, active_only: bool = False
) -> list[DealerDeduplicationRule]:
    stmt = sa.select(DealerDeduplicationRule).where(
        DealerDeduplicationRule.tenant_id == tenant_id
    )
    if active_only:
        stmt = stmt.where(DealerDeduplicationRule.is_active.is_(True))
    result = await session.execute(_ordered(stmt))
    return list(result.scalars().all())


async def get_applicable_rule(
    session: AsyncSession,
    tenant_id: str,
    dealer_id: str | None,
    listing: dict,
) -> DealerDeduplicationRule | None:
    """Return the highest-priority active rule whose bounds contain ``listing``."""
    if not dealer_id:
        return None
    for rule in await get_dealer_rules(session, tenant_id, dealer_id, active_only=True):
        if rule_applies(rule, listing):
            return rule
    return None


async def _touch(
    rule: DealerDeduplicationRule,
    session: AsyncSession,
    updated_by: str | None,
    event: str,
    **context,
) -> None:
    _validate(rule)
    rule.updated_at = utcnow()
    rule.updated_by = updated_by
    await session.flush()
    logger.info(event, rule_id=rule.id, updated_by=updated_by, **context)


async def update_rule_thresholds(
    session: AsyncSession,
    rule_id: str,
    auto_match_threshold: float | None = None,
    review_threshold: float | None = None,
    updated_by: str | None = None,
) -> DealerDeduplicationRule:
    """Set threshold overrides; ``None`` leaves a value unchanged."""
    rule = await _require_rule(session, rule_id)
    if auto_match_threshold is not None:
        rule.auto_match_threshold = auto_match_threshold
    if review_threshold is not None:
        rule.review_threshold = review_threshold
    await _touch(
        rule, session, updated_by, "dealer_rule_thresholds_updated",
        auto_match_threshold=rule.auto_match_threshold,
        review_threshold=rule.review_threshold,
    )
    return rule


async def update_rule_weights(
    session: AsyncSession,
    rule_id: str,
    make_model: float | None = None,
    year: float | None = None,
    mileage: float | None = None,
    price: float | None = None,
    location: float | None = None,
    image: float | None = None,
    updated_by: str | None = None,
) -> DealerDeduplicationRule:
    rule = await _require_rule(session, rule_id)
    for column, value in (
        ("make_model_weight", make_model),
        ("year_weight", year),
        ("mileage_weight", mileage),
        ("price_weight", price),
        ("location_weight", location),
        ("image_weight", image),
    ):
        if value is not None:
            setattr(rule, column, value)
    await _touch(rule, session, updated_by, "dealer_rule_weights_updated")
    return rule


async def update_rule_tolerances(
    session: AsyncSession,
    rule_id: str,
    mileage: float | None = None,
    price: float | None = None,
    year: int | None = None,
    updated_by: str | None = None,
) -> DealerDeduplicationRule:
    rule = await _require_rule(session, rule_id)
    if mileage is not None:
        rule.mileage_tolerance = mileage
    if price is not None:
        rule.price_tolerance = price
    if year is not None:
        rule.year_tolerance = year
    await _touch(rule, session, updated_by, "dealer_rule_tolerances_updated")
    return rule


async def update_rule_features(
    session: AsyncSession,
    rule_id: str,
    vin_matching: bool | None = None,
    fuzzy_matching: bool | None = None,
    image_matching: bool | None = None,
    strict_mode: bool | None = None,
    updated_by: str | None = None,
) -> DealerDeduplicationRule:
    rule = await _require_rule(session, rule_id)
    for column, value in (
        ("enable_vin_matching", vin_matching),
        ("enable_fuzzy_matching", fuzzy_matching),
        ("enable_image_matching", image_matching),
        ("require_exact_vin_match", strict_mode),
    ):
        if value is not None:
            setattr(rule, column, value)
    await _touch(rule, session, updated_by, "dealer_rule_features_updated")
    return rule


async def update_rule_bounds(
    session: AsyncSession,
    rule_id: str,
    min_price: float | None = None,
    max_price: float | None = None,
    min_year: int | None = None,
    max_year: int | None = None,
    make_filter: str | None = None,
    model_filter: str | None = None,
    updated_by: str | None = None,
) -> DealerDeduplicationRule:
    """Replace the applicability bounds; ``None`` leaves a dimension unbounded."""
    rule = await _require_rule(session, rule_id)
    rule.min_price = min_price
    rule.max_price = max_price
    rule.min_year = min_year
    rule.max_year = max_year
    rule.make_filter = make_filter
    rule.model_filter = model_filter
    await _touch(rule, session, updated_by, "dealer_rule_bounds_updated")
    return rule


async def set_rule_priority(
    session: AsyncSession, rule_id: str, priority: int, updated_by: str | None = None
) -> DealerDeduplicationRule:
    rule = await _require_rule(session, rule_id)
    rule.priority = priority
    await _touch(rule, session, updated_by, "dealer_rule_priority_set", priority=priority)
    return rule


async def activate_rule(
    session: AsyncSession, rule_id: str, updated_by: str | None = None
) -> DealerDeduplicationRule:
    rule = await _require_rule(session, rule_id)
    rule.is_active = True
    await _touch(rule, session, updated_by, "dealer_rule_activated")
    return rule


async def deactivate_rule(
    session: AsyncSession, rule_id: str, updated_by: str | None = None
) -> DealerDeduplicationRule:
    rule = await _require_rule(session, rule_id)
    rule.is_active = False
    await _touch(rule, session, updated_by, "dealer_rule_deactivated")
    return rule


async def delete_rule(session: AsyncSession, rule_id: str) -> None:
    rule = await _require_rule(session, rule_id)
    await session.delete(rule)
    await session.flush()
    logger.info("dealer_rule_deleted", rule_id=rule_id)


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


async def record_rule_application(
    session: AsyncSession, rule_id: str, at: dt.datetime | None = None
) -> None:
    """Increment the usage counter of a rule."""
    rule = await _require_rule(session, rule_id)
    rule.times_applied = (rule.times_applied or 0) + 1
    rule.last_applied_at = at or utcnow()
    await session.flush()


async def get_rule_statistics(
    session: AsyncSession, tenant_id: str, dealer_id: str | None = None
) -> list[RuleStatistics]:
    """Usage of the tenant's rules, most applied first."""
    stmt = sa.select(DealerDeduplicationRule).where(
        DealerDeduplicationRule.tenant_id == tenant_id
    )
    if dealer_id is not None:
        stmt = stmt.where(DealerDeduplicationRule.dealer_id == dealer_id)
    stmt = stmt.order_by(
        DealerDeduplicationRule.times_applied.desc(),
        DealerDeduplicationRule.priority.desc(),
    )
    result = await session.execute(stmt)
    return [
        RuleStatistics(
            rule_id=rule.id,
            rule_name=rule.rule_name,
            dealer_id=rule.dealer_id,
            is_active=rule.is_active,
            priority=rule.priority,
            times_applied=rule.times_applied,
            last_applied_at=rule.last_applied_at,
        )
        for rule in result.scalars().all()
    ]


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


async def create_strict_vin_only_rule(
    session: AsyncSession,
    tenant_id: str,
    dealer_id: str,
    created_by: str | None = None,
) -> DealerDeduplicationRule:
    """Accept exact VIN matches only."""
    return await create_rule(
        session,
        tenant_id,
        dealer_id,
        "Strict VIN Only",
        description="Only exact VIN matches are accepted",
        priority=100,
        created_by=created_by,
        require_exact_vin_match=True,
        enable_vin_matching=True,
        enable_fuzzy_matching=False,
        enable_image_matching=False,
    )


async def create_relaxed_rule(
    session: AsyncSession,
    tenant_id: str,
    dealer_id: str,
    created_by: str | None = None,
) -> DealerDeduplicationRule:
    """Lower thresholds and wider numeric tolerances."""
    return await create_rule(
        session,
        tenant_id,
        dealer_id,
        "Relaxed Matching",
        description="Lower thresholds and wider tolerances for sparse listings",
        priority=50,
        created_by=created_by,
        auto_match_threshold=75.0,
        review_threshold=50.0,
        mileage_tolerance=1000.0,
        price_tolerance=1000.0,
    )


async def create_high_value_rule(
    session: AsyncSession,
    tenant_id: str,
    dealer_id: str,
    min_price: float,
    created_by: str | None = None,
) -> DealerDeduplicationRule:
    """Tighter confidence requirements for listings priced at ``min_price`` or more."""
    return await create_rule(
        session,
        tenant_id,
        dealer_id,
        "High Value Vehicles",
        description=f"Stricter matching for vehicles priced at {min_price:,.0f} or more",
        priority=75,
        created_by=created_by,
        min_price=min_price,
        auto_match_threshold=95.0,
        review_threshold=80.0,
        mileage_tolerance=100.0,
        price_tolerance=100.0,
        enable_image_matching=True,
        image_weight=0.30,
    )
