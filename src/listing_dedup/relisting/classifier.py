"""Suspicious relisting classification."""

from __future__ import annotations

from typing import Protocol

from listing_dedup.matching.config import SuspiciousConfig
from listing_dedup.models.enums import RelistingType
from listing_dedup.models.relisting_pattern import RelistingPattern


class SuspiciousPatternClassifier(Protocol):
    def classify(self, pattern: RelistingPattern) -> str | None:
        """Return the reason ``pattern`` is suspicious, or ``None``."""
        ...


class DefaultSuspiciousClassifier:
    """Flags relistings that look like inventory-age or price manipulation.

    - quick flip: relisted within ``quick_flip_days`` at a higher price
    - large swing: absolute price change above ``large_price_change_percent``
    - days-on-market reset: a stale listing relisted within ``stale_relist_days``
    - fast same-VIN relist within ``fast_vin_relist_days``

    All matching reasons are joined with ``"; "``.
    """

    def __init__(self, config: SuspiciousConfig | None = None) -> None:
        self.config = config or SuspiciousConfig()

    def classify(self, pattern: RelistingPattern) -> str | None:
        cfg = self.config
        days = pattern.days_between_listings
        change_pct = pattern.price_change_percent
        reasons = []

        if days <= cfg.quick_flip_days and change_pct is not None and change_pct > 0:
            reasons.append(
                f"quick flip: relisted in {days} days with {change_pct:.1f}% price increase"
            )
        if change_pct is not None and abs(change_pct) > cfg.large_price_change_percent:
            reasons.append(f"significant price change: {change_pct:.1f}%")
        previous_dom = pattern.previous_days_on_market or 0
        if previous_dom > cfg.stale_days_on_market and days <= cfg.stale_relist_days:
            reasons.append(
                f"days-on-market reset: {pattern.previous_days_on_market} days, "
                f"relisted in {days} days"
            )
        if pattern.type == RelistingType.VIN_MATCH.value and days <= cfg.fast_vin_relist_days:
            reasons.append(f"same VIN relisted within {cfg.fast_vin_relist_days:g} days")

        return "; ".join(reasons) or None


def apply_classification(
    pattern: RelistingPattern, classifier: SuspiciousPatternClassifier
) -> bool:
    """Set the suspicious flag and reason; return whether either changed."""
    reason = classifier.classify(pattern)
    flagged = reason is not None
    changed = pattern.is_suspicious != flagged or pattern.suspicious_reason != reason
    pattern.is_suspicious = flagged
    pattern.suspicious_reason = reason
    return changed
