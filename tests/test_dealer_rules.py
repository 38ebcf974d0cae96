"""Tests for dealer rule storage, applicability and config resolution."""

import datetime as dt

import pytest
from structlog.testing import capture_logs

from listing_dedup.errors import InvalidArgumentError, NotFoundError
from listing_dedup.matching.config import MatchingConfig
from listing_dedup.models.dealer_rule import DealerDeduplicationRule
from listing_dedup.rules import apply_rule, rule_applies
from listing_dedup.rules.store import (
    activate_rule,
    create_high_value_rule,
    create_relaxed_rule,
    create_rule,
    create_strict_vin_only_rule,
    deactivate_rule,
    delete_rule,
    get_all_rules,
    get_applicable_rule,
    get_dealer_rules,
    get_rule,
    get_rule_statistics,
    record_rule_application,
    set_rule_priority,
    update_rule_bounds,
    update_rule_features,
    update_rule_thresholds,
    update_rule_tolerances,
    update_rule_weights,
)

from conftest import NOW, TENANT, listing_dict


def _rule(**columns) -> DealerDeduplicationRule:
    return DealerDeduplicationRule(tenant_id=TENANT, dealer_id="D1", rule_name="r", **columns)


class TestRuleApplies:
    def test_unbounded_rule_applies(self) -> None:
        assert rule_applies(_rule(), listing_dict())

    def test_price_bounds(self) -> None:
        rule = _rule(min_price=20000.0, max_price=50000.0)
        assert not rule_applies(rule, listing_dict(price=18000.0))
        assert rule_applies(rule, listing_dict(price=20000.0))
        assert not rule_applies(rule, listing_dict(price=60000.0))

    def test_year_bounds(self) -> None:
        rule = _rule(min_year=2021)
        assert not rule_applies(rule, listing_dict(year=2020))
        assert rule_applies(rule, listing_dict(year=2022))

    def test_missing_value_matches_bounded_dimension(self) -> None:
        rule = _rule(min_price=20000.0, min_year=2021)
        assert rule_applies(rule, listing_dict(price=None, year=None))

    def test_make_model_filters_ignore_case(self) -> None:
        rule = _rule(make_filter="honda", model_filter=" CIVIC")
        assert rule_applies(rule, listing_dict())
        assert not rule_applies(rule, listing_dict(model="Accord"))


class TestApplyRule:
    def test_no_rule_returns_defaults(self) -> None:
        config = MatchingConfig()
        assert apply_rule(config, None) is config

    def test_overrides_are_applied(self) -> None:
        config = MatchingConfig()
        rule = _rule(
            auto_match_threshold=90.0,
            mileage_tolerance=2000.0,
            year_tolerance=1,
            enable_fuzzy_matching=False,
            price_weight=0.10,
        )

        effective = apply_rule(config, rule)

        assert effective.thresholds.auto_match == 90.0
        assert effective.thresholds.review == 70.0
        assert effective.tolerances.mileage == 2000.0
        assert effective.tolerances.price == 500.0
        assert effective.fuzzy.year_window == 1
        assert effective.features.fuzzy_matching is False
        assert effective.features.vin_matching is True
        assert effective.weights.price == 0.10
        assert effective.weights.make_model == 0.35
        # Input untouched
        assert config.thresholds.auto_match == 85.0
        assert config.weights.price == 0.20

    def test_matching_does_not_rewarn_about_weights(self) -> None:
        with capture_logs() as logs:
            effective = apply_rule(MatchingConfig(), _rule(image_weight=0.30))
        assert effective.weights.image == 0.30
        assert not any(log["event"] == "weights_sum_mismatch" for log in logs)

    def test_single_threshold_override_keeps_other_default(self) -> None:
        effective = apply_rule(MatchingConfig(), _rule(review_threshold=80.0))
        assert (effective.thresholds.auto_match, effective.thresholds.review) == (85.0, 80.0)

    def test_single_threshold_override_must_leave_review_band(self) -> None:
        with pytest.raises(InvalidArgumentError):
            apply_rule(MatchingConfig(), _rule(review_threshold=90.0))
        with pytest.raises(InvalidArgumentError):
            apply_rule(MatchingConfig(), _rule(auto_match_threshold=60.0))

    def test_strict_mode_maps_to_feature(self) -> None:
        effective = apply_rule(MatchingConfig(), _rule(require_exact_vin_match=True))
        assert effective.features.strict_mode is True


class TestCrud:
    async def test_create_and_get(self, session) -> None:
        rule = await create_rule(
            session, TENANT, "D1", "Custom", description="d", priority=5,
            created_by="ops", auto_match_threshold=90.0,
        )
        fetched = await get_rule(session, rule.id)
        assert fetched.rule_name == "Custom"
        assert fetched.priority == 5
        assert fetched.auto_match_threshold == 90.0
        assert fetched.review_threshold is None
        assert fetched.times_applied == 0
        assert fetched.created_by == "ops"

    async def test_get_missing(self, session) -> None:
        assert await get_rule(session, "nope") is None

    async def test_unknown_setting_rejected(self, session) -> None:
        with pytest.raises(InvalidArgumentError):
            await create_rule(session, TENANT, "D1", "Bad", color_weight=0.1)

    @pytest.mark.parametrize(
        "settings",
        [
            {"auto_match_threshold": 101.0},
            {"auto_match_threshold": 60.0, "review_threshold": 70.0},
            {"price_weight": -0.1},
            {"mileage_tolerance": 0.0},
            {"min_price": 5000.0, "max_price": 1000.0},
            {"min_year": 2022, "max_year": 2020},
        ],
    )
    async def test_invalid_settings_rejected(self, session, settings) -> None:
        with pytest.raises(InvalidArgumentError):
            await create_rule(session, TENANT, "D1", "Bad", **settings)

    async def test_single_threshold_checked_against_defaults(self, session) -> None:
        with pytest.raises(InvalidArgumentError):
            await create_rule(session, TENANT, "D1", "Bad", review_threshold=90.0)
        with pytest.raises(InvalidArgumentError):
            await create_rule(session, TENANT, "D1", "Bad", auto_match_threshold=60.0)

        rule = await create_rule(session, TENANT, "D1", "r")
        with pytest.raises(InvalidArgumentError):
            await update_rule_thresholds(session, rule.id, review_threshold=90.0)

    async def test_unnormalized_weights_logged_on_save(self, session) -> None:
        with capture_logs() as logs:
            await create_high_value_rule(session, TENANT, "D1", min_price=50000.0)
        assert [log["total"] for log in logs if log["event"] == "weights_sum_mismatch"] == [1.3]

    async def test_ordering(self, session) -> None:
        low = await create_rule(session, TENANT, "D1", "low", priority=1)
        high = await create_rule(session, TENANT, "D1", "high", priority=10)
        low_later = await create_rule(session, TENANT, "D1", "low later", priority=1)
        inactive = await create_rule(session, TENANT, "D1", "off", priority=99, is_active=False)
        await create_rule(session, TENANT, "D2", "other dealer", priority=50)

        active = await get_dealer_rules(session, TENANT, "D1")
        assert [r.id for r in active] == [high.id, low.id, low_later.id]

        everything = await get_dealer_rules(session, TENANT, "D1", active_only=False)
        assert everything[0].id == inactive.id

        assert len(await get_all_rules(session, TENANT)) == 5
        assert len(await get_all_rules(session, TENANT, active_only=True)) == 4

    async def test_updates(self, session) -> None:
        rule = await create_rule(session, TENANT, "D1", "r", auto_match_threshold=90.0)

        await update_rule_thresholds(session, rule.id, review_threshold=60.0, updated_by="ops")
        assert rule.auto_match_threshold == 90.0
        assert rule.review_threshold == 60.0
        assert rule.updated_by == "ops"
        assert rule.updated_at is not None

        await update_rule_weights(session, rule.id, price=0.25, image=0.05)
        assert (rule.price_weight, rule.image_weight, rule.year_weight) == (0.25, 0.05, None)

        await update_rule_tolerances(session, rule.id, mileage=800.0, year=1)
        assert (rule.mileage_tolerance, rule.price_tolerance, rule.year_tolerance) == (800.0, None, 1)

        await update_rule_features(session, rule.id, fuzzy_matching=False, strict_mode=True)
        assert rule.enable_fuzzy_matching is False
        assert rule.require_exact_vin_match is True
        assert rule.enable_vin_matching is None

        await update_rule_bounds(session, rule.id, min_price=1000.0, make_filter="Honda")
        await update_rule_bounds(session, rule.id, max_year=2024)
        assert rule.min_price is None
        assert rule.make_filter is None
        assert rule.max_year == 2024

        await set_rule_priority(session, rule.id, 7)
        assert rule.priority == 7

    async def test_invalid_update_rejected(self, session) -> None:
        rule = await create_rule(session, TENANT, "D1", "r", auto_match_threshold=80.0)
        with pytest.raises(InvalidArgumentError):
            await update_rule_thresholds(session, rule.id, review_threshold=90.0)

    async def test_activation_and_delete(self, session) -> None:
        rule = await create_rule(session, TENANT, "D1", "r")
        await deactivate_rule(session, rule.id)
        assert await get_dealer_rules(session, TENANT, "D1") == []
        await activate_rule(session, rule.id)
        assert len(await get_dealer_rules(session, TENANT, "D1")) == 1

        await delete_rule(session, rule.id)
        assert await get_rule(session, rule.id) is None

    @pytest.mark.parametrize(
        "operation",
        [
            lambda s: update_rule_thresholds(s, "nope", auto_match_threshold=90.0),
            lambda s: update_rule_weights(s, "nope", price=0.2),
            lambda s: update_rule_tolerances(s, "nope", price=100.0),
            lambda s: update_rule_features(s, "nope", vin_matching=False),
            lambda s: update_rule_bounds(s, "nope"),
            lambda s: set_rule_priority(s, "nope", 1),
            lambda s: activate_rule(s, "nope"),
            lambda s: deactivate_rule(s, "nope"),
            lambda s: delete_rule(s, "nope"),
            lambda s: record_rule_application(s, "nope"),
        ],
    )
    async def test_missing_rule(self, session, operation) -> None:
        with pytest.raises(NotFoundError):
            await operation(session)


class TestApplicableRule:
    async def test_highest_priority_in_bounds(self, session) -> None:
        high_value = await create_high_value_rule(session, TENANT, "D1", min_price=50000.0)
        relaxed = await create_relaxed_rule(session, TENANT, "D1")

        cheap = await get_applicable_rule(session, TENANT, "D1", listing_dict(price=18000.0))
        assert cheap.id == relaxed.id

        pricey = await get_applicable_rule(session, TENANT, "D1", listing_dict(price=80000.0))
        assert pricey.id == high_value.id

    async def test_no_dealer_no_rule(self, session) -> None:
        await create_relaxed_rule(session, TENANT, "D1")
        assert await get_applicable_rule(session, TENANT, None, listing_dict()) is None
        assert await get_applicable_rule(session, TENANT, "D2", listing_dict()) is None

    async def test_inactive_rules_skipped(self, session) -> None:
        rule = await create_relaxed_rule(session, TENANT, "D1")
        await deactivate_rule(session, rule.id)
        assert await get_applicable_rule(session, TENANT, "D1", listing_dict()) is None


class TestPresets:
    async def test_strict_vin_only(self, session) -> None:
        rule = await create_strict_vin_only_rule(session, TENANT, "D1")
        assert rule.rule_name == "Strict VIN Only"
        assert rule.priority == 100
        effective = apply_rule(MatchingConfig(), rule)
        assert effective.features.strict_mode is True
        assert effective.features.fuzzy_matching is False

    async def test_relaxed(self, session) -> None:
        rule = await create_relaxed_rule(session, TENANT, "D1")
        effective = apply_rule(MatchingConfig(), rule)
        assert rule.priority == 50
        assert (effective.thresholds.auto_match, effective.thresholds.review) == (75.0, 50.0)
        assert effective.tolerances.mileage == 1000.0

    async def test_high_value(self, session) -> None:
        rule = await create_high_value_rule(session, TENANT, "D1", min_price=50000.0)
        effective = apply_rule(MatchingConfig(), rule)
        assert rule.priority == 75
        assert rule.min_price == 50000.0
        assert (effective.thresholds.auto_match, effective.thresholds.review) == (95.0, 80.0)
        assert effective.features.image_matching is True
        assert effective.weights.image == 0.30


class TestStatistics:
    async def test_usage_tracking(self, session) -> None:
        used = await create_rule(session, TENANT, "D1", "used")
        unused = await create_rule(session, TENANT, "D2", "unused", priority=10)

        await record_rule_application(session, used.id, at=NOW)
        await record_rule_application(session, used.id, at=NOW + dt.timedelta(hours=1))

        stats = await get_rule_statistics(session, TENANT)
        assert [s.rule_id for s in stats] == [used.id, unused.id]
        assert stats[0].times_applied == 2
        assert stats[0].last_applied_at == NOW + dt.timedelta(hours=1)
        assert stats[1].times_applied == 0

        only_d2 = await get_rule_statistics(session, TENANT, dealer_id="D2")
        assert [s.rule_name for s in only_d2] == ["unused"]
