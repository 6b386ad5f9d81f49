"""Unit tests for claimable point filtering and ranking."""

import logging
from datetime import timedelta

import pytest

from conftest import CENTER
from domain.errors import TransientStorageError, ValidationError
from domain.geo import haversine_distance


def _ids(results):
    return [r.point.id for r in results]


def _pickup(clock):
    return clock() + timedelta(hours=1)


def test_unclaimed_point_is_listed_with_owner(coordinator, point, resident):
    results = coordinator.list_available("recycler-1")

    assert _ids(results) == [point.id]
    assert results[0].owner.name == "Ana"
    assert results[0].owner.phone == resident.phone
    assert results[0].distance_km is None


def test_claimed_and_completed_points_hidden(coordinator, point, clock):
    claim = coordinator.claim_point(point.id, "recycler-1", _pickup(clock))
    assert coordinator.list_available("recycler-1") == []
    assert coordinator.list_available("recycler-2") == []

    coordinator.complete_claim(claim.id)
    assert coordinator.list_available("recycler-2") == []


def test_penalty_window_is_per_recycler(coordinator, point, clock):
    """Canceller is kept off the point for 3 hours; others see it at once."""
    claim = coordinator.claim_point(point.id, "recycler-1", _pickup(clock))
    coordinator.cancel_claim(claim.id, "too far")
    cancelled_at = clock()

    assert _ids(coordinator.list_available("recycler-2")) == [point.id]
    assert coordinator.list_available("recycler-1", now=cancelled_at + timedelta(minutes=179)) == []
    assert _ids(coordinator.list_available("recycler-1", now=cancelled_at + timedelta(minutes=181))) == [point.id]


def test_penalty_survives_later_cancellation_by_other(coordinator, point, clock):
    first = coordinator.claim_point(point.id, "recycler-1", _pickup(clock))
    coordinator.cancel_claim(first.id, "")
    clock.advance(minutes=5)
    second = coordinator.claim_point(point.id, "recycler-2", _pickup(clock))
    coordinator.cancel_claim(second.id, "")

    assert coordinator.list_available("recycler-1") == []
    assert coordinator.list_available("recycler-2") == []
    assert _ids(coordinator.list_available("recycler-3")) == [point.id]


def test_institutional_suppression(coordinator, point):
    """Individual points at an institution's address are never listed."""
    institution = coordinator.create_point("inst-1", {
        "address": "Calle Falsa 123", "type": "colective_point", "lat": 0.0, "lng": 0.0,
    })
    behind = coordinator.create_point("resident-2", {
        "address": "Calle Falsa 123", "lat": CENTER[0], "lng": CENTER[1],
    })

    for kwargs in ({}, {"lat": CENTER[0], "lng": CENTER[1]}):
        ids = _ids(coordinator.list_available("recycler-1", **kwargs))
        assert behind.id not in ids
        assert institution.id in ids
        assert point.id in ids


def test_institutional_lookup_failure_degrades(coordinator, point, monkeypatch):
    behind = coordinator.create_point("resident-2", {"address": "Calle Falsa 123"})
    coordinator.create_point("inst-1", {"address": "Calle Falsa 123", "type": "colective_point"})

    def broken():
        raise TransientStorageError("timeout")

    monkeypatch.setattr(coordinator.catalog, "institutional_addresses", broken)

    assert behind.id in _ids(coordinator.list_available("recycler-1"))


def test_distance_ranking_and_radius(coordinator, point):
    """Nearest first, radius inclusive, unlocated points last."""
    lat, lng = CENTER
    far = coordinator.create_point("r2", {"address": "Far", "lat": lat, "lng": lng + 0.2})
    near = coordinator.create_point("r3", {"address": "Near", "lat": lat, "lng": lng + 0.01})
    unknown = coordinator.create_point("r4", {"address": "Sin ubicacion"})

    results = coordinator.list_available("recycler-1", lat=lat, lng=lng)
    assert _ids(results) == [point.id, near.id, far.id, unknown.id]
    assert results[0].distance_km == 0.0
    assert results[3].distance_km is None

    limit = haversine_distance(lat, lng, lat, lng + 0.01)
    results = coordinator.list_available("recycler-1", lat=lat, lng=lng, max_distance_km=limit)
    assert _ids(results) == [point.id, near.id, unknown.id]


def test_five_km_boundary(coordinator, resident):
    """A point computed at exactly the limit is included."""
    target = coordinator.create_point(resident.user_id, {"address": "Borde", "lat": 0.0, "lng": 0.04496})
    distance = haversine_distance(0.0, 0.0, 0.0, 0.04496)
    assert distance == pytest.approx(5.0, abs=0.001)

    ids = _ids(coordinator.list_available("recycler-1", lat=0.0, lng=0.0, max_distance_km=distance))
    assert target.id in ids
    ids = _ids(coordinator.list_available("recycler-1", lat=0.0, lng=0.0, max_distance_km=distance - 1e-9))
    assert target.id not in ids


def test_invalid_queries(coordinator):
    with pytest.raises(ValidationError):
        coordinator.list_available("")
    with pytest.raises(ValidationError):
        coordinator.list_available("recycler-1", lat=1.0)
    with pytest.raises(ValidationError):
        coordinator.list_available("recycler-1", lat=1.0, lng=1.0, max_distance_km=-1)


def test_point_without_profile_has_no_owner(coordinator):
    orphan = coordinator.create_point("ghost", {"address": "Nowhere 1"})
    results = coordinator.list_available("recycler-1")
    assert results[0].point.id == orphan.id
    assert results[0].owner is None
    assert results[0].to_dict()["owner"] is None


def test_invalid_coordinates_rejected(coordinator, point):
    for lat, lng in ((float("nan"), 0.0), (1000.0, 0.0), (0.0, -200.0)):
        with pytest.raises(ValidationError):
            coordinator.list_available("recycler-1", lat=lat, lng=lng)
    with pytest.raises(ValidationError):
        coordinator.list_available("recycler-1", lat=0.0, lng=0.0, max_distance_km=float("nan"))


def test_nearly_antipodal_recycler(coordinator, resident):
    """The far side of the planet is measured, not an error."""
    lat, lng = -10.414191309368462, 143.82140450280431
    far = coordinator.create_point(resident.user_id, {"address": "Antipoda", "lat": lat, "lng": lng})

    results = coordinator.list_available("recycler-1", lat=-lat, lng=lng - 180.0)

    assert _ids(results) == [far.id]
    assert results[0].distance_km == pytest.approx(20015.09, abs=0.01)


def test_owner_lookup_failure_degrades(coordinator, point, monkeypatch, caplog):
    """Points are still listed, just without owner cards."""
    def broken(user_ids):
        raise TransientStorageError("database is locked")

    monkeypatch.setattr(coordinator.profiles, "get_profiles", broken)

    with caplog.at_level(logging.WARNING, logger="claims.availability_filter"):
        results = coordinator.list_available("recycler-1")

    assert _ids(results) == [point.id]
    assert results[0].owner is None
    assert "Owner profile lookup failed" in caplog.text
