"""
Domain models for collection points, claims and owner profiles.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

from domain.errors import ValidationError


class PointType(str, Enum):
    """Kind of collection point."""
    INDIVIDUAL = "individual"
    COLECTIVE_POINT = "colective_point"


class PointStatus(str, Enum):
    """Projected status of a collection point."""
    AVAILABLE = "available"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ClaimStatus(str, Enum):
    """Claim state machine states."""
    CLAIMED = "claimed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ClaimStatus.CLAIMED


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize a datetime to a sortable ISO8601 string (UTC, microseconds)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value) -> Optional[datetime]:
    """
    Parse an ISO8601 string (or pass a datetime through).

    Naive values are taken as UTC. A trailing ``Z`` is accepted.

    Raises:
        ValidationError: if the value is not a valid timestamp
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid timestamp: {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass
class CollectionPoint:
    """Collection point record."""
    id: str
    user_id: str
    address: str
    district: Optional[str] = None
    schedule: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    materials: List[str] = None
    type: str = PointType.INDIVIDUAL.value
    photo_url: Optional[str] = None
    notes: Optional[str] = None
    additional_info: Optional[str] = None
    estimated_weight: Optional[float] = None
    status: str = PointStatus.AVAILABLE.value  # written at creation only
    created_at: Optional[str] = None

    def __post_init__(self):
        if self.materials is None:
            self.materials = []

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def is_institutional(self) -> bool:
        return self.type == PointType.COLECTIVE_POINT.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Claim:
    """A recycler's commitment to collect from a point."""
    id: str
    collection_point_id: str
    recycler_id: str
    user_id: str
    status: str
    pickup_time: str
    created_at: str
    cancelled_at: Optional[str] = None
    cancellation_reason: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return self.status == ClaimStatus.CLAIMED.value

    @property
    def is_terminal(self) -> bool:
        return ClaimStatus(self.status).is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OwnerProfile:
    """Profile fields denormalized onto listings."""
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    role: str = "resident"
    eco_credits: int = 0
    rating_average: float = 0.0
    total_ratings: int = 0

    def contact_card(self) -> Dict[str, Any]:
        """Fields shown next to a point in the recycler's list."""
        return {
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "avatar_url": self.avatar_url,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AvailablePoint:
    """A claimable point ranked for one recycler."""
    point: CollectionPoint
    distance_km: Optional[float] = None  # None if caller or point has no location
    owner: Optional[OwnerProfile] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.point.to_dict()
        data["distance_km"] = self.distance_km
        data["owner"] = self.owner.contact_card() if self.owner else None
        return data


@dataclass
class RecyclerRating:
    """Resident's rating of a recycler for one completed claim."""
    id: str
    recycler_id: str
    resident_id: str
    claim_id: str
    rating: int
    comment: str = ""
    created_at: str = field(default_factory=lambda: to_iso(utc_now()))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
