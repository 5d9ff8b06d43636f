"""Great-circle distance, location similarity and game scoring."""

from math import asin, cos, radians, sin, sqrt
from typing import Optional

from .models import Coordinates

EARTH_RADIUS_KM = 6371.0

SAME_PLACE_KM = 0.5
DISTINCT_PLACE_KM = 5.0

POINT_TIERS = (
    (1, 5000),
    (10, 4500),
    (50, 4000),
    (100, 3500),
    (250, 3000),
    (500, 2500),
    (1000, 2000),
    (2000, 1500),
    (5000, 1000),
)
MIN_POINTS = 500

ACCURACY_TIERS = (
    (1, "Perfect!"),
    (10, "Excellent!"),
    (50, "Great!"),
    (100, "Good!"),
    (500, "Not bad!"),
    (1000, "Could be better"),
)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * asin(min(1.0, sqrt(a)))


def distance_between(a: Coordinates, b: Coordinates) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def similarity_from_distance(distance_km: float) -> float:
    """Map a distance to [0, 1]: within 500m is the same place, beyond 5km is distinct."""
    if distance_km <= SAME_PLACE_KM:
        return 1.0
    if distance_km > DISTINCT_PLACE_KM:
        return 0.0
    return 1.0 - (distance_km / DISTINCT_PLACE_KM)


def location_similarity(a: Optional[Coordinates], b: Optional[Coordinates]) -> float:
    # Unknown locations never merge.
    if a is None or b is None:
        return 0.0
    return similarity_from_distance(distance_between(a, b))


def calculate_points(distance_km: float) -> int:
    for limit, points in POINT_TIERS:
        if distance_km < limit:
            return points
    return MIN_POINTS


def accuracy_label(distance_km: float) -> str:
    for limit, label in ACCURACY_TIERS:
        if distance_km < limit:
            return label
    return "Keep practicing!"
