"""Append-only feed of claim and point events for polling subscribers."""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from claims.config import EVENTS_PAGE_SIZE
from claims.database import Database
from domain.errors import ClaimError
from domain.models import to_iso, utc_now

logger = logging.getLogger(__name__)

EVENT_TYPES = (
    "point_created",
    "point_deleted",
    "claim_created",
    "claim_cancelled",
    "claim_completed",
    "collection_completed",
    "recycler_rated",
    "claims_archived",
)


class ClaimEventLog:
    """
    Logs state changes so dashboards and the notification gateway can follow
    them with ``events_since(cursor)``.
    """

    def __init__(self, db: Database, clock: Callable = utc_now):
        """
        Initialize event log.

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
            CREATE TABLE IF NOT EXISTS claim_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                collection_point_id TEXT,
                claim_id TEXT,
                actor_id TEXT,
                recipient_id TEXT,
                timestamp TEXT NOT NULL,
                metadata_json TEXT
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_events_recipient ON claim_events(recipient_id)",
        ])

    def publish(self, event_type: str,
                point_id: Optional[str] = None,
                claim_id: Optional[str] = None,
                actor_id: Optional[str] = None,
                recipient_id: Optional[str] = None,
                metadata: Optional[dict] = None) -> Optional[int]:
        """
        Log an event.

        Called after the change it describes is committed, so a failure here
        is logged and reported as ``None`` rather than raised.

        Args:
            event_type: One of EVENT_TYPES
            point_id: Collection point concerned
            claim_id: Claim concerned
            actor_id: User who caused the event
            recipient_id: User to notify, for notification events
            metadata: Additional metadata

        Returns:
            Event id, or None if it could not be written
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")

        try:
            with self.db.transaction() as conn:
                cursor = conn.execute("""
                    INSERT INTO claim_events (
                        event_type, collection_point_id, claim_id, actor_id,
                        recipient_id, timestamp, metadata_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    event_type,
                    point_id,
                    claim_id,
                    actor_id,
                    recipient_id,
                    to_iso(self.clock()),
                    json.dumps(metadata) if metadata else None,
                ))
                return cursor.lastrowid
        except ClaimError as e:
            logger.warning("Could not publish %s event for claim %s: %s", event_type, claim_id, e)
            return None

    def events_since(self, cursor: int = 0, limit: int = EVENTS_PAGE_SIZE) -> List[Dict[str, Any]]:
        """Events with id greater than ``cursor``, oldest first."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM claim_events WHERE id > ? ORDER BY id LIMIT ?
            """, (int(cursor), int(limit))).fetchall()
        return [self._row_to_event(dict(row)) for row in rows]

    def notifications_for(self, recipient_id: str) -> List[Dict[str, Any]]:
        """Events addressed to one user, newest first."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM claim_events WHERE recipient_id = ? ORDER BY id DESC
            """, (recipient_id,)).fetchall()
        return [self._row_to_event(dict(row)) for row in rows]

    def _row_to_event(self, row: dict) -> Dict[str, Any]:
        metadata_json = row.pop("metadata_json", None)
        row["metadata"] = json.loads(metadata_json) if metadata_json else {}
        return row
