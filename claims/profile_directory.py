"""Owner and recycler profiles shown next to collection points."""

import logging
from typing import Dict, Iterable, Optional

from claims.database import Database, chunked, placeholders
from domain.errors import NotFoundError, ValidationError
from domain.models import OwnerProfile

logger = logging.getLogger(__name__)

ROLES = ("resident", "recycler", "institution")


class ProfileDirectory:
    """Local profile store: contact card, eco-credits and rating aggregate."""

    def __init__(self, db: Database):
        self.db = db
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        self.db.create_schema([
            """
            CREATE TABLE IF NOT EXISTS profiles (
                user_id TEXT PRIMARY KEY,
                name TEXT,
                email TEXT,
                phone TEXT,
                avatar_url TEXT,
                role TEXT NOT NULL DEFAULT 'resident',
                eco_credits INTEGER NOT NULL DEFAULT 0,
                rating_average REAL NOT NULL DEFAULT 0.0,
                total_ratings INTEGER NOT NULL DEFAULT 0
            )
            """,
        ])

    def upsert_profile(self, profile: OwnerProfile) -> OwnerProfile:
        """
        Insert or update contact fields of a profile.

        Eco-credits and ratings are only changed through their own methods.
        """
        if not profile.user_id:
            raise ValidationError("Profile user id is required")
        if profile.role not in ROLES:
            raise ValidationError(f"Invalid role: {profile.role}")

        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO profiles (user_id, name, email, phone, avatar_url, role)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    name = excluded.name,
                    email = excluded.email,
                    phone = excluded.phone,
                    avatar_url = excluded.avatar_url,
                    role = excluded.role
            """, (
                profile.user_id,
                profile.name,
                profile.email,
                profile.phone,
                profile.avatar_url,
                profile.role,
            ))
        return self.get_profile(profile.user_id)

    def get_profile(self, user_id: str) -> Optional[OwnerProfile]:
        """Get profile by user ID."""
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM profiles WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_profile(dict(row))

    def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, OwnerProfile]:
        """Profiles keyed by user id; unknown ids are absent."""
        user_ids = list(dict.fromkeys(user_ids))
        profiles: Dict[str, OwnerProfile] = {}
        if not user_ids:
            return profiles

        with self.db.connect() as conn:
            for chunk in chunked(user_ids):
                rows = conn.execute(
                    f"SELECT * FROM profiles WHERE user_id IN ({placeholders(chunk)})", chunk
                ).fetchall()
                for row in rows:
                    profiles[row["user_id"]] = self._row_to_profile(dict(row))
        return profiles

    def add_eco_credits(self, user_id: str, amount: int) -> int:
        """
        Credit eco-credits to a user.

        Returns:
            The new balance

        Raises:
            NotFoundError: if the user has no profile
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE profiles SET eco_credits = eco_credits + ? WHERE user_id = ?",
                (int(amount), user_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Profile {user_id} not found")
            balance = conn.execute(
                "SELECT eco_credits FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()[0]

        logger.info("Credited %d eco-credits to %s (balance %d)", amount, user_id, balance)
        return balance

    def record_rating(self, recycler_id: str, rating: int) -> OwnerProfile:
        """Fold one rating into the recycler's running average."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT rating_average, total_ratings FROM profiles WHERE user_id = ?",
                (recycler_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Recycler profile {recycler_id} not found")

            total = row["total_ratings"] + 1
            average = (row["rating_average"] * row["total_ratings"] + rating) / total
            conn.execute(
                "UPDATE profiles SET rating_average = ?, total_ratings = ? WHERE user_id = ?",
                (average, total, recycler_id)
            )
        return self.get_profile(recycler_id)

    def _row_to_profile(self, row: dict) -> OwnerProfile:
        """Convert database row to OwnerProfile."""
        return OwnerProfile(
            user_id=row["user_id"],
            name=row.get("name"),
            email=row.get("email"),
            phone=row.get("phone"),
            avatar_url=row.get("avatar_url"),
            role=row.get("role") or "resident",
            eco_credits=row.get("eco_credits") or 0,
            rating_average=row.get("rating_average") or 0.0,
            total_ratings=row.get("total_ratings") or 0,
        )
