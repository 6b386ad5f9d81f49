"""Claim ledger: the claimed -> completed / cancelled state machine."""

import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from claims.database import Database, chunked, placeholders
from claims.point_catalog import PointCatalog
from domain.errors import AlreadyTerminalError, ConflictError, NotFoundError, ValidationError
from domain.models import Claim, ClaimStatus, parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)


class ClaimLedger:
    """
    Owns claim rows and their status transitions.

    ``claimed`` moves to ``completed`` or ``cancelled``; both are terminal.
    Re-claiming a point after a cancellation inserts a new row. At most one
    ``claimed`` row per point is enforced by a partial unique index, so
    concurrent claim attempts resolve to one winner and ConflictErrors.
    """

    def __init__(self, db: Database, catalog: PointCatalog, clock: Callable = utc_now):
        """
        Initialize claim ledger.

        Args:
            db: Shared database
            catalog: Point catalog, used for existence checks
            clock: Returns the current aware datetime
        """
        self.db = db
        self.catalog = catalog
        self.clock = clock
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        self.db.create_schema([
            """
            CREATE TABLE IF NOT EXISTS collection_claims (
                id TEXT PRIMARY KEY,
                collection_point_id TEXT NOT NULL,
                recycler_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                pickup_time TEXT NOT NULL,
                created_at TEXT NOT NULL,
                cancelled_at TEXT,
                cancellation_reason TEXT,
                completed_at TEXT
            )
            """,
            # One live claim per point
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_claims_one_live
            ON collection_claims(collection_point_id) WHERE status = 'claimed'
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_claims_point
            ON collection_claims(collection_point_id, created_at)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_claims_recycler
            ON collection_claims(recycler_id, status)
            """,
        ])

    def create_claim(self, point_id: str, recycler_ref: str, owner_ref: Optional[str],
                     pickup_time) -> Claim:
        """
        Claim a point for a recycler.

        The ledger only requires a pickup time to be present and parseable;
        rejecting past times is the caller's job.

        Args:
            point_id: Collection point to claim
            recycler_ref: Claiming recycler
            owner_ref: Point owner (taken from the point when None)
            pickup_time: Scheduled pickup (datetime or ISO8601 string)

        Returns:
            The new claim, status ``claimed``

        Raises:
            ValidationError: missing recycler or pickup time
            NotFoundError: point does not exist
            ConflictError: the point already has a live claim or was collected
        """
        if not recycler_ref:
            raise ValidationError("Recycler is required")
        if pickup_time is None or pickup_time == "":
            raise ValidationError("Pickup time is required")
        pickup = parse_iso(pickup_time)

        point = self.catalog.require_point(point_id)

        claim = Claim(
            id=str(uuid.uuid4()),
            collection_point_id=point_id,
            recycler_id=recycler_ref,
            user_id=owner_ref or point.user_id,
            status=ClaimStatus.CLAIMED.value,
            pickup_time=to_iso(pickup),
            created_at=to_iso(self.clock()),
        )

        try:
            with self.db.transaction() as conn:
                # The point may have been deleted since the lookup above
                if self.catalog.point_in(conn, point_id) is None:
                    raise NotFoundError(f"Collection point {point_id} not found")
                latest = self._latest_row(conn, point_id)
                if latest is not None and latest["status"] == ClaimStatus.COMPLETED.value:
                    raise ConflictError("This point was already collected")

                conn.execute("""
                    INSERT INTO collection_claims (
                        id, collection_point_id, recycler_id, user_id, status,
                        pickup_time, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    claim.id,
                    claim.collection_point_id,
                    claim.recycler_id,
                    claim.user_id,
                    claim.status,
                    claim.pickup_time,
                    claim.created_at,
                ))
        except sqlite3.IntegrityError as e:
            logger.info("Claim on point %s by %s lost the race", point_id, recycler_ref)
            raise ConflictError("This point was already claimed by another recycler") from e

        logger.info("Recycler %s claimed point %s (claim %s)", recycler_ref, point_id, claim.id)
        return claim

    def cancel_claim(self, claim_id: str, reason: str) -> Claim:
        """
        Cancel a live claim.

        Args:
            claim_id: Claim to cancel
            reason: Cancellation reason; may be empty but not None

        Returns:
            The cancelled claim

        Raises:
            ValidationError: reason is None
            NotFoundError: claim does not exist
            AlreadyTerminalError: claim already completed or cancelled
        """
        if reason is None:
            raise ValidationError("A cancellation reason is required")

        now = to_iso(self.clock())
        with self.db.transaction() as conn:
            self._require_live(conn, claim_id)
            conn.execute("""
                UPDATE collection_claims
                SET status = ?, cancelled_at = ?, cancellation_reason = ?
                WHERE id = ? AND status = ?
            """, (ClaimStatus.CANCELLED.value, now, str(reason), claim_id, ClaimStatus.CLAIMED.value))
            row = self._get_row(conn, claim_id)

        logger.info("Claim %s cancelled: %s", claim_id, reason)
        return self._row_to_claim(dict(row))

    def complete_claim(self, claim_id: str) -> Claim:
        """
        Mark a live claim as collected.

        Raises:
            NotFoundError: claim does not exist
            AlreadyTerminalError: claim already completed or cancelled
        """
        now = to_iso(self.clock())
        with self.db.transaction() as conn:
            self._require_live(conn, claim_id)
            conn.execute("""
                UPDATE collection_claims
                SET status = ?, completed_at = ?
                WHERE id = ? AND status = ?
            """, (ClaimStatus.COMPLETED.value, now, claim_id, ClaimStatus.CLAIMED.value))
            row = self._get_row(conn, claim_id)

        logger.info("Claim %s completed", claim_id)
        return self._row_to_claim(dict(row))

    def get_claim(self, claim_id: str) -> Optional[Claim]:
        """Get claim by ID."""
        with self.db.connect() as conn:
            row = self._get_row(conn, claim_id)
        if row is None:
            return None
        return self._row_to_claim(dict(row))

    def require_claim(self, claim_id: str) -> Claim:
        """Get claim by ID or raise NotFoundError."""
        claim = self.get_claim(claim_id)
        if claim is None:
            raise NotFoundError(f"Claim {claim_id} not found")
        return claim

    def latest_claim_for_point(self, point_id: str) -> Optional[Claim]:
        """
        Most recently created claim for a point.

        Ties on ``created_at`` fall back to insertion order.
        """
        with self.db.connect() as conn:
            row = self._latest_row(conn, point_id)
        if row is None:
            return None
        return self._row_to_claim(dict(row))

    def latest_claims(self, point_ids: Iterable[str]) -> Dict[str, Claim]:
        """Batch form of latest_claim_for_point; points without claims are absent."""
        point_ids = list(dict.fromkeys(point_ids))
        latest: Dict[str, Claim] = {}

        with self.db.connect() as conn:
            for chunk in chunked(point_ids):
                rows = conn.execute(f"""
                    SELECT * FROM collection_claims
                    WHERE collection_point_id IN ({placeholders(chunk)})
                    ORDER BY created_at DESC, rowid DESC
                """, chunk).fetchall()
                for row in rows:
                    point_id = row["collection_point_id"]
                    if point_id not in latest:
                        latest[point_id] = self._row_to_claim(dict(row))

        return latest

    def claims_for_point(self, point_id: str,
                         conn: Optional[sqlite3.Connection] = None) -> List[Claim]:
        """
        Full claim history of a point, newest first.

        Args:
            point_id: Collection point
            conn: Open transaction to read through (a new connection if None)
        """
        if conn is None:
            with self.db.connect() as conn:
                return self.claims_for_point(point_id, conn)

        rows = conn.execute("""
            SELECT * FROM collection_claims
            WHERE collection_point_id = ?
            ORDER BY created_at DESC, rowid DESC
        """, (point_id,)).fetchall()
        return [self._row_to_claim(dict(row)) for row in rows]

    def claims_for_recycler(self, recycler_id: str, status: Optional[str] = None) -> List[Claim]:
        """Claims of one recycler, newest first, optionally by status."""
        query = "SELECT * FROM collection_claims WHERE recycler_id = ?"
        params = [recycler_id]
        if status is not None:
            if status not in {s.value for s in ClaimStatus}:
                raise ValidationError(f"Invalid claim status: {status}")
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, rowid DESC"

        with self.db.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_claim(dict(row)) for row in rows]

    def all_claims(self) -> List[Claim]:
        """Every claim row, oldest first."""
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM collection_claims ORDER BY created_at, rowid"
            ).fetchall()
        return [self._row_to_claim(dict(row)) for row in rows]

    def recent_cancellations(self, recycler_id: str, since: datetime) -> Set[str]:
        """Point ids this recycler cancelled after ``since``."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT DISTINCT collection_point_id FROM collection_claims
                WHERE recycler_id = ? AND status = ? AND cancelled_at > ?
            """, (recycler_id, ClaimStatus.CANCELLED.value, to_iso(since))).fetchall()
        return {row["collection_point_id"] for row in rows}

    def _get_row(self, conn: sqlite3.Connection, claim_id: str):
        return conn.execute(
            "SELECT * FROM collection_claims WHERE id = ?", (claim_id,)
        ).fetchone()

    def _latest_row(self, conn: sqlite3.Connection, point_id: str):
        return conn.execute("""
            SELECT * FROM collection_claims
            WHERE collection_point_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1
        """, (point_id,)).fetchone()

    def _require_live(self, conn: sqlite3.Connection, claim_id: str):
        row = self._get_row(conn, claim_id)
        if row is None:
            raise NotFoundError(f"Claim {claim_id} no longer exists")
        if row["status"] != ClaimStatus.CLAIMED.value:
            raise AlreadyTerminalError(f"Claim {claim_id} is already {row['status']}")
        return row

    def _row_to_claim(self, row: dict) -> Claim:
        """Convert database row to Claim."""
        return Claim(
            id=row["id"],
            collection_point_id=row["collection_point_id"],
            recycler_id=row["recycler_id"],
            user_id=row["user_id"],
            status=row["status"],
            pickup_time=row["pickup_time"],
            created_at=row["created_at"],
            cancelled_at=row.get("cancelled_at"),
            cancellation_reason=row.get("cancellation_reason"),
            completed_at=row.get("completed_at"),
        )
