"""Resident ratings of recyclers after a completed collection."""

import logging
import sqlite3
import uuid
from typing import Callable, List

from claims.config import RATING_MAX, RATING_MIN
from claims.database import Database
from claims.profile_directory import ProfileDirectory
from domain.errors import ConflictError, ForbiddenError, ValidationError
from domain.models import Claim, ClaimStatus, RecyclerRating, to_iso, utc_now

logger = logging.getLogger(__name__)


class RatingBook:
    """Stores one rating per completed claim and keeps recycler averages."""

    def __init__(self, db: Database, profiles: ProfileDirectory, clock: Callable = utc_now):
        self.db = db
        self.profiles = profiles
        self.clock = clock
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        self.db.create_schema([
            """
            CREATE TABLE IF NOT EXISTS recycler_ratings (
                id TEXT PRIMARY KEY,
                recycler_id TEXT NOT NULL,
                resident_id TEXT NOT NULL,
                claim_id TEXT NOT NULL UNIQUE,
                rating INTEGER NOT NULL,
                comment TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_ratings_recycler ON recycler_ratings(recycler_id)",
        ])

    def rate(self, claim: Claim, resident_id: str, rating, comment: str = "") -> RecyclerRating:
        """
        Rate the recycler of a completed claim.

        Args:
            claim: The completed claim being rated
            resident_id: Rating resident; must own the collected point
            rating: Integer from RATING_MIN to RATING_MAX
            comment: Optional free text

        Raises:
            ValidationError: claim not completed or rating out of range
            ForbiddenError: resident does not own the point
            ConflictError: claim already rated
        """
        if claim.status != ClaimStatus.COMPLETED.value:
            raise ValidationError("Only completed collections can be rated")
        if claim.user_id != resident_id:
            raise ForbiddenError("Only the point owner can rate this collection")
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValidationError("Rating must be a whole number")
        if not RATING_MIN <= rating <= RATING_MAX:
            raise ValidationError(f"Rating must be between {RATING_MIN} and {RATING_MAX}")

        record = RecyclerRating(
            id=str(uuid.uuid4()),
            recycler_id=claim.recycler_id,
            resident_id=resident_id,
            claim_id=claim.id,
            rating=rating,
            comment=comment or "",
            created_at=to_iso(self.clock()),
        )

        try:
            with self.db.transaction() as conn:
                conn.execute("""
                    INSERT INTO recycler_ratings (
                        id, recycler_id, resident_id, claim_id, rating, comment, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.id,
                    record.recycler_id,
                    record.resident_id,
                    record.claim_id,
                    record.rating,
                    record.comment,
                    record.created_at,
                ))
        except sqlite3.IntegrityError as e:
            raise ConflictError("This collection was already rated") from e

        if self.profiles.get_profile(claim.recycler_id) is not None:
            self.profiles.record_rating(claim.recycler_id, rating)
        else:
            logger.warning("Rated recycler %s has no profile; average not updated", claim.recycler_id)

        return record

    def ratings_for(self, recycler_id: str) -> List[RecyclerRating]:
        """Ratings of one recycler, newest first."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM recycler_ratings WHERE recycler_id = ?
                ORDER BY created_at DESC, rowid DESC
            """, (recycler_id,)).fetchall()
        return [RecyclerRating(**dict(row)) for row in rows]
