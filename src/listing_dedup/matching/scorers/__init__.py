"""Similarity primitives -- pure functions returning scores in [0, 1]."""

from listing_dedup.matching.scorers.geo_scorer import geo_similarity, haversine_miles
from listing_dedup.matching.scorers.image_scorer import image_similarity
from listing_dedup.matching.scorers.numeric_scorer import numeric_similarity, year_similarity
from listing_dedup.matching.scorers.string_scorer import string_similarity

__all__ = [
    "geo_similarity",
    "haversine_miles",
    "image_similarity",
    "numeric_similarity",
    "string_similarity",
    "year_similarity",
]
