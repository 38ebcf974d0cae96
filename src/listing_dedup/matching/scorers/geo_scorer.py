"""Geographic proximity scorer using the Haversine formula."""

from __future__ import annotations

import math

from listing_dedup.errors import InvalidArgumentError

EARTH_RADIUS_MILES = 3959.0


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute the great-circle distance between two points in miles."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def geo_similarity(
    lat1: float | None,
    lon1: float | None,
    lat2: float | None,
    lon2: float | None,
    tolerance_miles: float,
) -> float:
    """Compute geographic proximity between two points.

    Returns a float in [0, 1]:
    - 0.0 if any coordinate is missing
    - 1.0 if the points are within ``tolerance_miles``
    - ``tolerance_miles / distance`` otherwise

    The tolerance is validated before the coordinates are inspected.
    """
    if tolerance_miles <= 0:
        raise InvalidArgumentError(
            f"tolerance_miles must be positive, got {tolerance_miles}"
        )

    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return 0.0

    dist = haversine_miles(lat1, lon1, lat2, lon2)
    if dist <= tolerance_miles:
        return 1.0
    return tolerance_miles / dist
