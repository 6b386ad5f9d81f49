"""Collection point catalog backed by SQLite."""

import json
import logging
import math
import sqlite3
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from claims.database import Database
from domain.errors import ForbiddenError, NotFoundError, ValidationError
from domain.geo import validate_coordinates
from domain.models import CollectionPoint, PointStatus, PointType, to_iso, utc_now

logger = logging.getLogger(__name__)

# Attributes a caller may set on creation besides address and owner
POINT_ATTRIBUTES = (
    "district", "schedule", "lat", "lng", "materials", "type",
    "photo_url", "notes", "additional_info", "estimated_weight",
)


class PointCatalog:
    """
    Authoritative record of point attributes and ownership.

    Claim state lives in the ledger; the stored ``status`` column is written
    once, as ``available``, when the point is created.
    """

    def __init__(self, db: Database, clock: Callable = utc_now):
        """
        Initialize point catalog.

        Args:
            db: Shared database
            clock: Returns the current aware datetime
        """
        self.db = db
        self.clock = clock
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        self.db.create_schema([
            """
            CREATE TABLE IF NOT EXISTS collection_points (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                address TEXT NOT NULL,
                district TEXT,
                schedule TEXT,
                lat REAL,
                lng REAL,
                materials_json TEXT NOT NULL DEFAULT '[]',
                type TEXT NOT NULL DEFAULT 'individual',
                photo_url TEXT,
                notes TEXT,
                additional_info TEXT,
                estimated_weight REAL,
                status TEXT NOT NULL DEFAULT 'available',
                created_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_points_user ON collection_points(user_id)",
            "CREATE INDEX IF NOT EXISTS idx_points_type ON collection_points(type)",
        ])

    def create_point(self, owner_ref: str, attrs: Dict[str, Any]) -> CollectionPoint:
        """
        Create a new collection point owned by ``owner_ref``.

        Args:
            owner_ref: Owner (resident or institution) user id
            attrs: Point attributes; ``address`` is required

        Returns:
            The stored point, status ``available``

        Raises:
            ValidationError: on missing owner/address or malformed attributes
        """
        attrs = dict(attrs or {})
        address = attrs.pop("address", None)
        if not owner_ref or not str(owner_ref).strip():
            raise ValidationError("Owner is required")
        if address is not None and not isinstance(address, str):
            raise ValidationError("Address must be text")
        address = (address or "").strip()
        if not address:
            raise ValidationError("Address is required")

        unknown = set(attrs) - set(POINT_ATTRIBUTES)
        if unknown:
            raise ValidationError(f"Unknown point attributes: {', '.join(sorted(unknown))}")

        point_type = attrs.get("type") or PointType.INDIVIDUAL.value
        if point_type not in {t.value for t in PointType}:
            raise ValidationError(f"Invalid point type: {point_type}")

        lat, lng = attrs.get("lat"), attrs.get("lng")
        if (lat is None) != (lng is None):
            raise ValidationError("Both lat and lng are required for a location")
        try:
            lat = float(lat) if lat is not None else None
            lng = float(lng) if lng is not None else None
            weight = attrs.get("estimated_weight")
            weight = float(weight) if weight is not None else None
        except (TypeError, ValueError):
            raise ValidationError("Coordinates and weight must be numbers")
        validate_coordinates(lat, lng)
        if weight is not None and not math.isfinite(weight):
            raise ValidationError("Estimated weight must be a finite number")

        materials = attrs.get("materials") or []
        if isinstance(materials, str):
            materials = [materials]

        point = CollectionPoint(
            id=str(uuid.uuid4()),
            user_id=str(owner_ref),
            address=address,
            district=attrs.get("district"),
            schedule=attrs.get("schedule"),
            lat=lat,
            lng=lng,
            materials=[str(m) for m in materials],
            type=point_type,
            photo_url=attrs.get("photo_url"),
            notes=attrs.get("notes"),
            additional_info=attrs.get("additional_info"),
            estimated_weight=weight,
            status=PointStatus.AVAILABLE.value,
            created_at=to_iso(self.clock()),
        )

        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO collection_points (
                    id, user_id, address, district, schedule, lat, lng,
                    materials_json, type, photo_url, notes, additional_info,
                    estimated_weight, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                point.id,
                point.user_id,
                point.address,
                point.district,
                point.schedule,
                point.lat,
                point.lng,
                json.dumps(point.materials),
                point.type,
                point.photo_url,
                point.notes,
                point.additional_info,
                point.estimated_weight,
                point.status,
                point.created_at,
            ))

        logger.info("Created point %s for owner %s", point.id, point.user_id)
        return point

    def delete_point(self, point_id: str, requester: str,
                     before_delete: Optional[Callable[[sqlite3.Connection, CollectionPoint], None]] = None) -> bool:
        """
        Hard delete a point. Claims referencing it are kept.

        Args:
            point_id: Point to delete
            requester: User asking for the deletion
            before_delete: Called with the open transaction and the point
                after the ownership check; raising aborts the deletion

        Returns:
            True if a row was deleted, False if the point was already gone

        Raises:
            ForbiddenError: if requester is not the owner
        """
        with self.db.transaction() as conn:
            point = self.point_in(conn, point_id)
            if point is None:
                return False
            if point.user_id != requester:
                raise ForbiddenError("Only the owner can delete this point")
            if before_delete is not None:
                before_delete(conn, point)
            conn.execute("DELETE FROM collection_points WHERE id = ?", (point_id,))

        logger.info("Deleted point %s", point_id)
        return True

    def get_point(self, point_id: str) -> Optional[CollectionPoint]:
        """Get point by ID."""
        with self.db.connect() as conn:
            return self.point_in(conn, point_id)

    def point_in(self, conn: sqlite3.Connection, point_id: str) -> Optional[CollectionPoint]:
        """Read a point through an already open connection or transaction."""
        row = conn.execute(
            "SELECT * FROM collection_points WHERE id = ?", (point_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_point(dict(row))

    def require_point(self, point_id: str) -> CollectionPoint:
        """Get point by ID or raise NotFoundError."""
        point = self.get_point(point_id)
        if point is None:
            raise NotFoundError(f"Collection point {point_id} not found")
        return point

    def list_points_by_owner(self, owner_ref: str) -> List[CollectionPoint]:
        """Points of one owner, newest first."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM collection_points
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
            """, (owner_ref,)).fetchall()
        return [self._row_to_point(dict(row)) for row in rows]

    def list_points(self) -> List[CollectionPoint]:
        """All points, oldest first."""
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM collection_points ORDER BY created_at, rowid"
            ).fetchall()
        return [self._row_to_point(dict(row)) for row in rows]

    def institutional_addresses(self) -> Set[str]:
        """Addresses of all collective (institutional) points."""
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT address FROM collection_points WHERE type = ?",
                (PointType.COLECTIVE_POINT.value,)
            ).fetchall()
        return {row["address"] for row in rows}

    def count_points(self) -> int:
        """Get total point count."""
        with self.db.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM collection_points").fetchone()[0]

    def _row_to_point(self, row: dict) -> CollectionPoint:
        """Convert database row to CollectionPoint."""
        return CollectionPoint(
            id=row["id"],
            user_id=row["user_id"],
            address=row["address"],
            district=row.get("district"),
            schedule=row.get("schedule"),
            lat=row.get("lat"),
            lng=row.get("lng"),
            materials=json.loads(row["materials_json"]) if row.get("materials_json") else [],
            type=row.get("type") or PointType.INDIVIDUAL.value,
            photo_url=row.get("photo_url"),
            notes=row.get("notes"),
            additional_info=row.get("additional_info"),
            estimated_weight=row.get("estimated_weight"),
            status=row.get("status") or PointStatus.AVAILABLE.value,
            created_at=row.get("created_at"),
        )
