"""Unit tests for distance calculation and ranking."""

import math

import pytest

from domain.errors import ValidationError
from domain.geo import (
    EARTH_RADIUS_KM, attach_distances, haversine_distance, sort_by_distance, validate_coordinates,
)
from domain.models import AvailablePoint, CollectionPoint


def _candidate(point_id, lat=None, lng=None):
    return AvailablePoint(point=CollectionPoint(id=point_id, user_id="u", address=point_id, lat=lat, lng=lng))


def test_zero_distance():
    """Same point is zero km away."""
    assert haversine_distance(-27.78, -64.27, -27.78, -64.27) == 0.0


def test_matches_standard_haversine():
    """atan2 form agrees with the asin form."""
    lat1, lon1, lat2, lon2 = -27.78, -64.27, -34.60, -58.38
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2)
    expected = 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))

    assert haversine_distance(lat1, lon1, lat2, lon2) == pytest.approx(expected, rel=1e-12)
    # Santiago del Estero to Buenos Aires is roughly 940 km
    assert 900 < expected < 980


def test_one_degree_latitude():
    """One degree of latitude is about 111.19 km."""
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111.195, abs=0.01)


def test_radius_boundary_inclusive():
    """A point exactly at the radius is kept; one beyond is dropped."""
    near = _candidate("near", 0.0, 0.045)
    far = _candidate("far", 0.0, 0.046)
    limit = haversine_distance(0, 0, 0.0, 0.045)

    kept = attach_distances([near, far], 0.0, 0.0, max_distance_km=limit)

    assert [c.point.id for c in kept] == ["near"]
    assert kept[0].distance_km == limit


def test_no_location_leaves_distances_empty():
    """Without a caller location nothing is measured or dropped."""
    candidates = [_candidate("a", 1, 1), _candidate("b")]
    kept = attach_distances(candidates, None, None, max_distance_km=1)
    assert [c.distance_km for c in kept] == [None, None]
    assert len(kept) == 2


def test_points_without_coordinates_sort_last_in_order():
    """Unmeasured points go last and keep their relative order."""
    candidates = [
        _candidate("x"),
        _candidate("far", 0, 2),
        _candidate("y"),
        _candidate("near", 0, 1),
        _candidate("z"),
    ]
    measured = attach_distances(candidates, 0.0, 0.0, max_distance_km=1000)
    ranked = sort_by_distance(measured)

    assert [c.point.id for c in ranked] == ["near", "far", "x", "y", "z"]


def test_nearly_antipodal_points():
    """Rounding near the antipode must not break the square root."""
    lat, lng = -10.414191309368462, 143.82140450280431
    distance = haversine_distance(lat, lng, -lat, lng - 180.0)
    assert distance == pytest.approx(math.pi * EARTH_RADIUS_KM, rel=1e-6)
    assert haversine_distance(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * EARTH_RADIUS_KM)


@pytest.mark.parametrize("lat,lng", [
    (float("nan"), 0.0),
    (0.0, float("inf")),
    (90.5, 0.0),
    (-91.0, 0.0),
    (0.0, 180.5),
    (0.0, -1000.0),
    (1.0, None),
])
def test_validate_coordinates_rejects(lat, lng):
    with pytest.raises(ValidationError):
        validate_coordinates(lat, lng)


def test_validate_coordinates_accepts_edges():
    validate_coordinates(None, None)
    validate_coordinates(90.0, 180.0)
    validate_coordinates(-90.0, -180.0)
