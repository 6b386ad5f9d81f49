"""Shared fixtures: throwaway database and a controllable clock."""

from datetime import datetime, timedelta, timezone

import pytest

from claims.coordinator import ClaimCoordinator
from domain.models import OwnerProfile

START = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

# Santiago del Estero, Argentina
CENTER = (-27.78, -64.27)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(tmp_path, clock):
    return ClaimCoordinator(data_dir=str(tmp_path), db_name="test.db", clock=clock)


@pytest.fixture
def resident(coordinator):
    return coordinator.register_profile(OwnerProfile(
        user_id="resident-1",
        name="Ana",
        email="ana@example.com",
        phone="+54 385 555 0101",
        avatar_url="https://example.com/ana.png",
        role="resident",
    ))


@pytest.fixture
def point(coordinator, resident):
    return coordinator.create_point(resident.user_id, {
        "address": "Av. Belgrano 1200",
        "district": "Centro",
        "schedule": "Lunes 9-12",
        "lat": CENTER[0],
        "lng": CENTER[1],
        "materials": ["PET", "Carton"],
    })
