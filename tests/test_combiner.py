"""Tests for field scoring, the confidence combiner and decision logic."""

import pytest
from structlog.testing import capture_logs

from listing_dedup.matching.combiner import (
    FieldScores,
    combined_confidence,
    decide,
    score_fields,
    weighted_confidence,
)
from listing_dedup.matching.config import FieldWeights, ThresholdConfig, ToleranceConfig

from conftest import listing_dict


def _scores(value: float) -> FieldScores:
    return FieldScores(
        make_model=value, year=value, mileage=value, price=value, location=value, image=value
    )


class TestScoreFields:
    def test_identical_listings(self) -> None:
        a = listing_dict("A")
        scores = score_fields(a, listing_dict("B"))
        assert scores.make_model == 1.0
        assert scores.year == 1.0
        assert scores.mileage == 1.0
        assert scores.price == 1.0
        assert scores.location == 1.0

    def test_missing_optional_fields_are_neutral(self) -> None:
        a = listing_dict("A", mileage=None, price=None, year=None, latitude=None)
        scores = score_fields(a, listing_dict("B"))
        assert scores.mileage == 0.5
        assert scores.price == 0.5
        assert scores.year == 0.5
        assert scores.location == 0.5
        assert scores.image == 0.5

    def test_custom_missing_score(self) -> None:
        scores = score_fields(listing_dict("A", mileage=None), listing_dict("B"), missing_score=0.3)
        assert scores.mileage == 0.3

    def test_make_model_is_mean(self) -> None:
        scores = score_fields(listing_dict("A"), listing_dict("B", model="Zzzzz"))
        assert scores.make_model == pytest.approx((1.0 + 0.0) / 2)

    def test_uses_tolerances(self) -> None:
        a = listing_dict("A", price=10000.0)
        b = listing_dict("B", price=12000.0)
        assert score_fields(a, b).price == pytest.approx(0.25)
        wide = ToleranceConfig(price=2000)
        assert score_fields(a, b, wide).price == 1.0

    def test_image_hashes(self) -> None:
        a = listing_dict("A", image_hash="abcd")
        b = listing_dict("B", image_hash="abcd")
        assert score_fields(a, b).image == 1.0

    def test_as_dict(self) -> None:
        assert set(_scores(1.0).as_dict()) == {
            "make_model", "year", "mileage", "price", "location", "image",
        }


class TestCombinedConfidence:
    def test_all_ones(self) -> None:
        assert combined_confidence(_scores(1.0)) == pytest.approx(100.0)

    def test_all_zeros(self) -> None:
        assert combined_confidence(_scores(0.0)) == pytest.approx(0.0)

    def test_default_weights(self) -> None:
        """make_model 0.35, year 0.15, mileage 0.15, price 0.20, location 0.15."""
        scores = FieldScores(
            make_model=1.0, year=0.0, mileage=1.0, price=0.0, location=1.0, image=0.0
        )
        assert combined_confidence(scores) == pytest.approx(65.0)

    def test_weight_normalization(self) -> None:
        weights = FieldWeights(
            make_model=1.0, year=1.0, mileage=1.0, price=1.0, location=0.0, image=0.0
        )
        scores = FieldScores(
            make_model=0.8, year=0.6, mileage=0.4, price=0.2, location=0.0, image=0.0
        )
        assert combined_confidence(scores, weights) == pytest.approx(50.0)

    def test_zero_weights(self) -> None:
        weights = FieldWeights(
            make_model=0, year=0, mileage=0, price=0, location=0, image=0
        )
        assert combined_confidence(_scores(1.0), weights) == 0.0

    def test_rounded_to_two_decimals(self) -> None:
        assert weighted_confidence([(1.0, 1 / 3)]) == 33.33

    def test_unnormalized_weights_warn(self) -> None:
        with capture_logs() as logs:
            FieldWeights(make_model=1.0)
        assert any(entry["event"] == "weights_sum_mismatch" for entry in logs)


class TestDecide:
    def test_match(self) -> None:
        assert decide(90) == "match"

    def test_review(self) -> None:
        assert decide(75) == "review"

    def test_no_match(self) -> None:
        assert decide(50) == "no_match"

    def test_exact_auto_threshold(self) -> None:
        assert decide(85) == "match"

    def test_exact_review_threshold(self) -> None:
        assert decide(70) == "review"

    def test_custom_thresholds(self) -> None:
        thresholds = ThresholdConfig(auto_match=95, review=80)
        assert decide(90, thresholds) == "review"
        assert decide(79.99, thresholds) == "no_match"
