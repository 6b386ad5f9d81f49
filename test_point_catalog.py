"""Unit tests for the collection point catalog."""

import pytest

from claims.database import Database
from claims.point_catalog import PointCatalog
from conftest import FakeClock
from domain.errors import ForbiddenError, NotFoundError, ValidationError
from domain.models import PointStatus, PointType


@pytest.fixture
def catalog(tmp_path, clock):
    return PointCatalog(Database(str(tmp_path), "catalog.db"), clock)


def test_create_point_defaults(catalog):
    """New points are available individual points."""
    point = catalog.create_point("owner-1", {"address": "Calle Falsa 123", "materials": ["PET"]})

    assert point.status == PointStatus.AVAILABLE.value
    assert point.type == PointType.INDIVIDUAL.value
    assert point.materials == ["PET"]
    assert catalog.get_point(point.id) == point


def test_create_point_requires_address_and_owner(catalog):
    """Missing address or owner is a validation error."""
    with pytest.raises(ValidationError):
        catalog.create_point("owner-1", {"address": "   "})
    with pytest.raises(ValidationError):
        catalog.create_point("", {"address": "Calle Falsa 123"})
    with pytest.raises(ValidationError):
        catalog.create_point(None, {"address": "Calle Falsa 123"})


def test_create_point_rejects_bad_attributes(catalog):
    """Unknown type, half coordinates and unknown keys are rejected."""
    with pytest.raises(ValidationError):
        catalog.create_point("o", {"address": "a", "type": "warehouse"})
    with pytest.raises(ValidationError):
        catalog.create_point("o", {"address": "a", "lat": -27.7})
    with pytest.raises(ValidationError):
        catalog.create_point("o", {"address": "a", "status": "claimed"})
    with pytest.raises(ValidationError):
        catalog.create_point("o", {"address": "a", "lat": "north", "lng": 1})


def test_delete_point_owner_only(catalog):
    """Only the owner may delete; a second delete is a no-op."""
    point = catalog.create_point("owner-1", {"address": "Calle Falsa 123"})

    with pytest.raises(ForbiddenError):
        catalog.delete_point(point.id, "someone-else")
    assert catalog.get_point(point.id) is not None

    assert catalog.delete_point(point.id, "owner-1") is True
    assert catalog.get_point(point.id) is None
    assert catalog.delete_point(point.id, "owner-1") is False


def test_require_point_missing(catalog):
    with pytest.raises(NotFoundError):
        catalog.require_point("no-such-point")


def test_list_points_by_owner_newest_first(catalog, clock: FakeClock):
    """Owner listing is ordered by creation time, newest first."""
    first = catalog.create_point("owner-1", {"address": "A"})
    clock.advance(minutes=5)
    second = catalog.create_point("owner-1", {"address": "B"})
    clock.advance(minutes=5)
    catalog.create_point("owner-2", {"address": "C"})

    listed = catalog.list_points_by_owner("owner-1")
    assert [p.id for p in listed] == [second.id, first.id]


def test_institutional_addresses(catalog):
    catalog.create_point("inst", {"address": "Calle Falsa 123", "type": "colective_point"})
    catalog.create_point("res", {"address": "Calle Falsa 123"})
    catalog.create_point("res", {"address": "Otra 1"})

    assert catalog.institutional_addresses() == {"Calle Falsa 123"}


def test_create_point_rejects_impossible_coordinates(catalog):
    """Non-finite or out-of-range coordinates never reach the table."""
    for lat, lng in ((float("nan"), 1.0), (1.0, float("inf")), (90.01, 0.0), (0.0, 180.01)):
        with pytest.raises(ValidationError):
            catalog.create_point("o", {"address": "a", "lat": lat, "lng": lng})
    with pytest.raises(ValidationError):
        catalog.create_point("o", {"address": 42})
    with pytest.raises(ValidationError):
        catalog.create_point("o", {"address": "a", "estimated_weight": float("nan")})

    assert catalog.count_points() == 0
    edge = catalog.create_point("o", {"address": "Polo", "lat": -90.0, "lng": 180.0})
    assert (edge.lat, edge.lng) == (-90.0, 180.0)
