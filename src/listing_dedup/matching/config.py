"""Matching and relisting configuration with sensible defaults.

All parameters can be overridden via ``config/matching.yaml``.
If the file does not exist, defaults are used.  Dealer rules layer
per-call overrides on top of this tree (see ``listing_dedup.rules.apply_rule``).
"""

from __future__ import annotations

from pathlib import Path

import structlog
import yaml
from pydantic import BaseModel, Field, model_validator

from listing_dedup.config.settings import get_settings


def _warn_if_unnormalized(name: str, total: float) -> None:
    if abs(total - 1.0) > 0.01:
        structlog.get_logger().warning(
            "weights_sum_mismatch",
            weights=name,
            total=round(total, 4),
            expected=1.0,
        )


class FieldWeights(BaseModel):
    """Relative weights of the six attribute signals used by fuzzy matching."""

    make_model: float = Field(default=0.35, ge=0.0)
    year: float = Field(default=0.15, ge=0.0)
    mileage: float = Field(default=0.15, ge=0.0)
    price: float = Field(default=0.20, ge=0.0)
    location: float = Field(default=0.15, ge=0.0)
    image: float = Field(default=0.0, ge=0.0)

    @model_validator(mode="after")
    def warn_if_weights_dont_sum(self) -> "FieldWeights":
        """Log a warning if weights do not sum to approximately 1.0."""
        _warn_if_unnormalized("field", self.total())
        return self

    def total(self) -> float:
        return (
            self.make_model + self.year + self.mileage
            + self.price + self.location + self.image
        )


class ThresholdConfig(BaseModel):
    """Confidence thresholds (0-100) for match/review decisions."""

    auto_match: float = Field(default=85.0, ge=0.0, le=100.0)
    review: float = Field(default=70.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def check_ordering(self) -> "ThresholdConfig":
        if self.review > self.auto_match:
            raise ValueError(
                f"review threshold {self.review} exceeds auto-match threshold {self.auto_match}"
            )
        return self


class ToleranceConfig(BaseModel):
    """Absolute differences treated as a full match."""

    price: float = Field(default=500.0, gt=0.0)
    mileage: float = Field(default=500.0, gt=0.0)
    location_miles: float = Field(default=10.0, gt=0.0)


class MethodConfidence(BaseModel):
    """Confidence reported by each identifier matcher."""

    exact_vin: float = 100.0
    partial_vin: float = 95.0
    external_id: float = 100.0


class FeatureFlags(BaseModel):
    """Switches for individual matching steps."""

    vin_matching: bool = True
    fuzzy_matching: bool = True
    image_matching: bool = False
    # Only exact VIN matches are accepted
    strict_mode: bool = False


class FuzzyConfig(BaseModel):
    """Candidate narrowing for fuzzy attribute matching."""

    year_window: int = Field(default=2, ge=0)
    same_dealer_only: bool = False


class RelistingWeights(BaseModel):
    """Weights for same-dealer relisting fuzzy matching."""

    make_model: float = Field(default=0.30, ge=0.0)
    year: float = Field(default=0.20, ge=0.0)
    mileage: float = Field(default=0.20, ge=0.0)
    price: float = Field(default=0.15, ge=0.0)
    color: float = Field(default=0.15, ge=0.0)

    @model_validator(mode="after")
    def warn_if_weights_dont_sum(self) -> "RelistingWeights":
        _warn_if_unnormalized("relisting", self.total())
        return self

    def total(self) -> float:
        return self.make_model + self.year + self.mileage + self.price + self.color


class SuspiciousConfig(BaseModel):
    """Thresholds of the default suspicious-relisting rule set."""

    quick_flip_days: float = 3.0
    large_price_change_percent: float = 20.0
    stale_days_on_market: int = 60
    stale_relist_days: float = 7.0
    fast_vin_relist_days: float = 14.0


class RelistingConfig(BaseModel):
    """Parameters for relisting detection and dealer aggregation."""

    vin_confidence: float = 100.0
    external_id_confidence: float = 95.0
    fuzzy_min_confidence: float = 70.0
    min_days_off_market: float = Field(default=1.0, ge=0.0)
    lookback_days: int = 90
    scan_lookback_days: int = 30
    progress_interval: int = Field(default=50, gt=0)
    mileage_tolerance: float = Field(default=1000.0, gt=0.0)
    price_tolerance: float = Field(default=2000.0, gt=0.0)
    weights: RelistingWeights = RelistingWeights()
    frequent_relister_rate: float = 0.20
    frequent_relister_min_relistings: int = 5
    suspicious: SuspiciousConfig = SuspiciousConfig()


class MatchingConfig(BaseModel):
    """Top-level configuration combining all sub-configs."""

    weights: FieldWeights = FieldWeights()
    thresholds: ThresholdConfig = ThresholdConfig()
    tolerances: ToleranceConfig = ToleranceConfig()
    method_confidence: MethodConfidence = MethodConfidence()
    features: FeatureFlags = FeatureFlags()
    fuzzy: FuzzyConfig = FuzzyConfig()
    missing_field_score: float = Field(default=0.5, ge=0.0, le=1.0)
    partial_vin_length: int = Field(default=8, gt=0)
    progress_interval: int = Field(default=50, gt=0)
    relisting: RelistingConfig = RelistingConfig()


def load_matching_config(path: Path) -> MatchingConfig:
    """Load matching configuration from a YAML file.

    If the file does not exist, returns a ``MatchingConfig`` with all
    default values.  Partial overrides are supported -- only the keys
    present in the YAML file will override defaults.
    """
    if not path.exists():
        return MatchingConfig()

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return MatchingConfig(**data)


def load_default_config() -> MatchingConfig:
    """Load the configuration file named by the process settings."""
    return load_matching_config(get_settings().matching_config_path)
