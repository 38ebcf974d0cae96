from listing_dedup.models.base import Base
from listing_dedup.models.dealer import Dealer
from listing_dedup.models.dealer_rule import DealerDeduplicationRule
from listing_dedup.models.enums import (
    MatchMethod,
    RelistingType,
    ResolutionDecision,
    ReviewStatus,
)
from listing_dedup.models.listing import Listing
from listing_dedup.models.relisting_pattern import RelistingPattern
from listing_dedup.models.review_item import ReviewItem

__all__ = [
    "Base",
    "Dealer",
    "DealerDeduplicationRule",
    "Listing",
    "MatchMethod",
    "RelistingPattern",
    "RelistingType",
    "ResolutionDecision",
    "ReviewItem",
    "ReviewStatus",
]
