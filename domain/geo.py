"""
Geographic utilities for distance calculation and ranking.
"""
import math
from typing import List, Optional

from domain.errors import ValidationError
from domain.models import AvailablePoint

EARTH_RADIUS_KM = 6371.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points using Haversine formula.

    Args:
        lat1, lon1: First point (latitude, longitude)
        lat2, lon2: Second point (latitude, longitude)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(dlon / 2) ** 2)
    # Rounding can push a just past 1 for nearly antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def validate_coordinates(lat: Optional[float], lng: Optional[float]):
    """
    Check a latitude/longitude pair.

    Both may be None (no location). Otherwise both must be finite and
    within [-90, 90] and [-180, 180].

    Raises:
        ValidationError: on a half pair, non-finite or out-of-range value
    """
    if lat is None and lng is None:
        return
    if lat is None or lng is None:
        raise ValidationError("Both lat and lng are required for a location")
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise ValidationError("Coordinates must be finite numbers")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError("Latitude must be between -90 and 90")
    if not -180.0 <= lng <= 180.0:
        raise ValidationError("Longitude must be between -180 and 180")


def attach_distances(
    candidates: List[AvailablePoint],
    user_lat: Optional[float],
    user_lng: Optional[float],
    max_distance_km: Optional[float] = None
) -> List[AvailablePoint]:
    """
    Compute distance from the caller to each candidate and apply the radius.

    Candidates without coordinates keep ``distance_km = None`` and are never
    dropped by the radius. The boundary is inclusive.

    Args:
        candidates: Points to measure
        user_lat, user_lng: Caller location (both None to skip)
        max_distance_km: Maximum distance in kilometers (None for no limit)

    Returns:
        Candidates within range, in their original order
    """
    if user_lat is None or user_lng is None:
        return list(candidates)

    kept = []
    for candidate in candidates:
        point = candidate.point
        if not point.has_coordinates:
            candidate.distance_km = None
            kept.append(candidate)
            continue

        distance = haversine_distance(user_lat, user_lng, point.lat, point.lng)
        candidate.distance_km = distance

        if max_distance_km is None or distance <= max_distance_km:
            kept.append(candidate)

    return kept


def sort_by_distance(candidates: List[AvailablePoint]) -> List[AvailablePoint]:
    """Sort ascending by distance; unmeasured points go last in original order."""
    return sorted(
        candidates,
        key=lambda c: (c.distance_km is None, c.distance_km if c.distance_km is not None else 0.0)
    )
