"""Per-dealer deduplication rules."""

from listing_dedup.rules.resolution import apply_rule, rule_applies

__all__ = ["apply_rule", "rule_applies"]
