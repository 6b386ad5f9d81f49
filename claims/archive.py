"""Backup store for points and claims removed from the live tables."""

import json
import logging
import math
import sqlite3
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from claims.config import CANCELLED_CLAIM_RETENTION_HOURS, PENALTY_WINDOW_HOURS
from claims.database import Database, placeholders
from domain.errors import ValidationError
from domain.models import Claim, ClaimStatus, CollectionPoint, to_iso, utc_now

logger = logging.getLogger(__name__)

_CLAIM_COLUMNS = (
    "id", "collection_point_id", "recycler_id", "user_id", "status",
    "pickup_time", "created_at", "cancelled_at", "cancellation_reason", "completed_at",
)


class PointArchive:
    """Copies rows into backup tables before they leave the live ones."""

    def __init__(self, db: Database, clock: Callable = utc_now):
        self.db = db
        self.clock = clock
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        self.db.create_schema([
            """
            CREATE TABLE IF NOT EXISTS collection_points_backup (
                id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                address TEXT NOT NULL,
                point_json TEXT NOT NULL,
                archived_at TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS collection_claims_backup (
                id TEXT NOT NULL,
                collection_point_id TEXT NOT NULL,
                recycler_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                pickup_time TEXT NOT NULL,
                created_at TEXT NOT NULL,
                cancelled_at TEXT,
                cancellation_reason TEXT,
                completed_at TEXT,
                archived_at TEXT NOT NULL
            )
            """,
        ])

    def archive_point(self, point: CollectionPoint, claims: List[Claim],
                      conn: Optional[sqlite3.Connection] = None) -> int:
        """
        Copy a point and its claim history into the backup tables.

        Args:
            point: Point about to be removed
            claims: Its claim history
            conn: Caller's open transaction; a new one is used if None

        Returns:
            Number of claims archived
        """
        if conn is None:
            with self.db.transaction() as conn:
                return self.archive_point(point, claims, conn)

        archived_at = to_iso(self.clock())
        conn.execute("""
            INSERT INTO collection_points_backup (id, user_id, address, point_json, archived_at)
            VALUES (?, ?, ?, ?, ?)
        """, (point.id, point.user_id, point.address, json.dumps(point.to_dict()), archived_at))

        for claim in claims:
            values = [getattr(claim, column) for column in _CLAIM_COLUMNS]
            conn.execute(f"""
                INSERT INTO collection_claims_backup ({", ".join(_CLAIM_COLUMNS)}, archived_at)
                VALUES ({placeholders(_CLAIM_COLUMNS)}, ?)
            """, values + [archived_at])

        logger.info("Archived point %s with %d claims", point.id, len(claims))
        return len(claims)

    def archive_and_clear_cancelled(self, older_than_hours: float = CANCELLED_CLAIM_RETENTION_HOURS) -> int:
        """
        Move cancelled claims older than the cutoff into the backup table.

        The cutoff cannot be shorter than the penalty window; recent
        cancellations are still needed to hide points from their canceller.

        Returns:
            Number of claims moved
        """
        if not math.isfinite(older_than_hours) or older_than_hours < PENALTY_WINDOW_HOURS:
            raise ValidationError(
                f"Cutoff must be at least {PENALTY_WINDOW_HOURS} hours"
            )

        now = self.clock()
        cutoff = to_iso(now - timedelta(hours=older_than_hours))
        columns = ", ".join(_CLAIM_COLUMNS)

        with self.db.transaction() as conn:
            conn.execute(f"""
                INSERT INTO collection_claims_backup ({columns}, archived_at)
                SELECT {columns}, ? FROM collection_claims
                WHERE status = ? AND cancelled_at < ?
            """, (to_iso(now), ClaimStatus.CANCELLED.value, cutoff))
            cursor = conn.execute("""
                DELETE FROM collection_claims WHERE status = ? AND cancelled_at < ?
            """, (ClaimStatus.CANCELLED.value, cutoff))
            moved = cursor.rowcount

        logger.info("Archived %d cancelled claims older than %s", moved, cutoff)
        return moved

    def archived_points(self) -> List[Dict[str, Any]]:
        """Archived point snapshots, newest first."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT point_json, archived_at FROM collection_points_backup
                ORDER BY archived_at DESC, rowid DESC
            """).fetchall()
        archived = []
        for row in rows:
            data = json.loads(row["point_json"])
            data["archived_at"] = row["archived_at"]
            archived.append(data)
        return archived

    def archived_claims(self) -> List[Dict[str, Any]]:
        """Archived claims, newest first."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM collection_claims_backup ORDER BY archived_at DESC, rowid DESC
            """).fetchall()
        return [dict(row) for row in rows]
