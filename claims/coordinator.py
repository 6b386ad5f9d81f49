"""ClaimCoordinator: the entry point the presentation layer calls."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from claims.archive import PointArchive
from claims.availability_filter import AvailabilityFilter
from claims.claim_ledger import ClaimLedger
from claims.config import (
    CANCELLED_CLAIM_RETENTION_HOURS, DATA_DIR, DB_NAME, ECO_CREDITS_PER_COMPLETION, EVENTS_PAGE_SIZE,
)
from claims.database import Database
from claims.event_log import ClaimEventLog
from claims.point_catalog import PointCatalog
from claims.profile_directory import ProfileDirectory
from claims.ratings import RatingBook
from claims.statistics import ClaimStatistics
from domain.errors import ConflictError, ForbiddenError, NotFoundError, PenaltyWindowError, ValidationError
from domain.models import (
    AvailablePoint, Claim, ClaimStatus, CollectionPoint, OwnerProfile, PointStatus,
    RecyclerRating, parse_iso, utc_now,
)

logger = logging.getLogger(__name__)


class ClaimCoordinator:
    """
    Wires catalog, ledger and filter together and publishes every change.

    Point status is never written after creation; ``point_status`` projects
    it from the latest claim.
    """

    def __init__(self, data_dir: str = DATA_DIR, db_name: str = DB_NAME,
                 clock: Callable = utc_now, db: Optional[Database] = None):
        """
        Initialize coordinator and its stores.

        Args:
            data_dir: Data directory
            db_name: SQLite database filename
            clock: Returns the current aware datetime
            db: Existing Database to share (overrides data_dir/db_name)
        """
        self.clock = clock
        self.db = db or Database(data_dir, db_name)

        self.catalog = PointCatalog(self.db, clock)
        self.ledger = ClaimLedger(self.db, self.catalog, clock)
        self.profiles = ProfileDirectory(self.db)
        self.events = ClaimEventLog(self.db, clock)
        self.archive = PointArchive(self.db, clock)
        self.ratings = RatingBook(self.db, self.profiles, clock)
        self.stats = ClaimStatistics(self.catalog, self.ledger)
        self.availability = AvailabilityFilter(self.catalog, self.ledger, self.profiles)

    # Points

    def create_point(self, owner_ref: str, attrs: Dict[str, Any]) -> CollectionPoint:
        point = self.catalog.create_point(owner_ref, attrs)
        self.events.publish("point_created", point_id=point.id, actor_id=owner_ref)
        return point

    def delete_point(self, point_id: str, requester: str) -> bool:
        """
        Delete a point owned by ``requester``.

        A point with a live claim cannot be deleted. A point whose latest
        claim is completed or cancelled is archived with its history first.
        The check, the archive and the delete share one transaction, so a
        claim cannot slip in between them.

        Returns:
            True if deleted, False if it was already gone
        """
        def archive_unless_claimed(conn, point):
            history = self.ledger.claims_for_point(point.id, conn=conn)
            if history and history[0].is_live:
                raise ConflictError("This point has an active claim and cannot be deleted")
            if history:
                self.archive.archive_point(point, history, conn=conn)

        deleted = self.catalog.delete_point(point_id, requester, before_delete=archive_unless_claimed)
        if deleted:
            self.events.publish("point_deleted", point_id=point_id, actor_id=requester)
        return deleted

    def list_points_by_owner(self, owner_ref: str) -> List[CollectionPoint]:
        return self.catalog.list_points_by_owner(owner_ref)

    def point_status(self, point_id: str) -> str:
        """Projected status from the latest claim; cancelled reads as available."""
        self.catalog.require_point(point_id)
        latest = self.ledger.latest_claim_for_point(point_id)
        if latest is None or latest.status == ClaimStatus.CANCELLED.value:
            return PointStatus.AVAILABLE.value
        return latest.status

    def with_status(self, point: CollectionPoint) -> CollectionPoint:
        """Copy of ``point`` with its projected status filled in."""
        latest = self.ledger.latest_claim_for_point(point.id)
        status = PointStatus.AVAILABLE.value
        if latest is not None and latest.status != ClaimStatus.CANCELLED.value:
            status = latest.status
        return CollectionPoint(**{**point.to_dict(), "status": status})

    # Availability

    def list_available(self, recycler_id: str,
                       lat: Optional[float] = None,
                       lng: Optional[float] = None,
                       max_distance_km: Optional[float] = None,
                       now: Optional[datetime] = None) -> List[AvailablePoint]:
        return self.availability.available_for(recycler_id, lat, lng, max_distance_km, now)

    # Claims

    def claim_point(self, point_id: str, recycler_id: str, pickup_time,
                    now: Optional[datetime] = None) -> Claim:
        """
        Claim a point for pickup at ``pickup_time``.

        A ConflictError means another recycler won; refresh the list instead
        of retrying the same call.

        Raises:
            ValidationError: missing or past pickup time
            PenaltyWindowError: recycler cancelled this point too recently
            NotFoundError: point was removed
            ConflictError: point already claimed or collected
        """
        if pickup_time is None or pickup_time == "":
            raise ValidationError("Pickup time is required")
        pickup = parse_iso(pickup_time)
        now = now or self.clock()
        if pickup < parse_iso(now):
            raise ValidationError("Pickup time cannot be in the past")

        point = self.catalog.require_point(point_id)
        if point_id in self.availability.penalized_points(recycler_id, now):
            raise PenaltyWindowError()

        claim = self.ledger.create_claim(point_id, recycler_id, point.user_id, pickup)
        self.events.publish(
            "claim_created",
            point_id=point_id,
            claim_id=claim.id,
            actor_id=recycler_id,
            recipient_id=point.user_id,
            metadata={"pickup_time": claim.pickup_time},
        )
        return claim

    def cancel_claim(self, claim_id: str, reason: str, requester: Optional[str] = None) -> Claim:
        """Cancel a live claim; the requester, when given, must be its recycler."""
        self._check_claim_actor(claim_id, requester)
        claim = self.ledger.cancel_claim(claim_id, reason)
        self.events.publish(
            "claim_cancelled",
            point_id=claim.collection_point_id,
            claim_id=claim.id,
            actor_id=claim.recycler_id,
            recipient_id=claim.user_id,
            metadata={"reason": claim.cancellation_reason},
        )
        return claim

    def complete_claim(self, claim_id: str, requester: Optional[str] = None) -> Claim:
        """
        Mark a claim collected and reward the point owner.

        The owner receives ECO_CREDITS_PER_COMPLETION eco-credits and a
        ``collection_completed`` notification.
        """
        self._check_claim_actor(claim_id, requester)
        claim = self.ledger.complete_claim(claim_id)
        self.events.publish(
            "claim_completed",
            point_id=claim.collection_point_id,
            claim_id=claim.id,
            actor_id=claim.recycler_id,
        )

        try:
            self.profiles.add_eco_credits(claim.user_id, ECO_CREDITS_PER_COMPLETION)
        except NotFoundError:
            logger.warning("Owner %s has no profile; eco-credits not awarded", claim.user_id)

        self.events.publish(
            "collection_completed",
            point_id=claim.collection_point_id,
            claim_id=claim.id,
            actor_id=claim.recycler_id,
            recipient_id=claim.user_id,
            metadata={"eco_credits": ECO_CREDITS_PER_COMPLETION},
        )
        return claim

    def latest_claim_for_point(self, point_id: str) -> Optional[Claim]:
        return self.ledger.latest_claim_for_point(point_id)

    def claims_for_recycler(self, recycler_id: str, status: Optional[str] = None) -> List[Claim]:
        return self.ledger.claims_for_recycler(recycler_id, status)

    def _check_claim_actor(self, claim_id: str, requester: Optional[str]):
        if requester is None:
            return
        claim = self.ledger.require_claim(claim_id)
        if claim.recycler_id != requester:
            raise ForbiddenError("Only the claiming recycler can change this claim")

    # Profiles and ratings

    def register_profile(self, profile: OwnerProfile) -> OwnerProfile:
        return self.profiles.upsert_profile(profile)

    def rate_recycler(self, claim_id: str, resident_id: str, rating, comment: str = "") -> RecyclerRating:
        claim = self.ledger.require_claim(claim_id)
        record = self.ratings.rate(claim, resident_id, rating, comment)
        self.events.publish(
            "recycler_rated",
            point_id=claim.collection_point_id,
            claim_id=claim.id,
            actor_id=resident_id,
            recipient_id=claim.recycler_id,
            metadata={"rating": record.rating},
        )
        return record

    # Feeds, statistics, maintenance

    def events_since(self, cursor: int = 0, limit: int = EVENTS_PAGE_SIZE) -> List[Dict[str, Any]]:
        return self.events.events_since(cursor, limit)

    def statistics(self) -> Dict[str, Any]:
        return self.stats.claims_summary()

    def monthly_statistics(self, user_id: Optional[str] = None, months: int = 12) -> Dict[str, Any]:
        return self.stats.monthly_breakdown(user_id, months, now=self.clock())

    def archive_cancelled_claims(self, older_than_hours: float = CANCELLED_CLAIM_RETENTION_HOURS) -> int:
        moved = self.archive.archive_and_clear_cancelled(older_than_hours)
        if moved:
            self.events.publish("claims_archived", metadata={"count": moved})
        return moved
