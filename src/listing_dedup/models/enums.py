"""Closed value sets stored as strings in the database."""

import enum


class MatchMethod(str, enum.Enum):
    EXACT_VIN = "exact_vin"
    PARTIAL_VIN = "partial_vin"
    EXTERNAL_ID = "external_id"
    FUZZY_ATTRIBUTES = "fuzzy_attributes"
    NONE = "none"


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ResolutionDecision(str, enum.Enum):
    SAME_VEHICLE = "same_vehicle"
    DIFFERENT_VEHICLE = "different_vehicle"
    UNSET = "unset"


class RelistingType(str, enum.Enum):
    VIN_MATCH = "vin_match"
    EXTERNAL_ID_MATCH = "external_id_match"
    FUZZY_MATCH = "fuzzy_match"
    COMBINED_MATCH = "combined_match"


def sql_in(enum_cls: type[enum.Enum]) -> str:
    """Render ``'a', 'b'`` for CHECK constraints."""
    return ", ".join(f"'{member.value}'" for member in enum_cls)
