"""Claimable point filtering and ranking for recyclers."""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

from claims.claim_ledger import ClaimLedger
from claims.config import PENALTY_WINDOW_HOURS
from claims.point_catalog import PointCatalog
from claims.profile_directory import ProfileDirectory
from domain.errors import ClaimError, ValidationError
from domain.geo import attach_distances, sort_by_distance, validate_coordinates
from domain.models import AvailablePoint, ClaimStatus, CollectionPoint, OwnerProfile, PointType

logger = logging.getLogger(__name__)


class AvailabilityFilter:
    """
    Computes the points one recycler may claim right now.

    Read-only over the catalog and the ledger. Nothing is cached; the
    penalty window is recomputed on every query.
    """

    def __init__(self, catalog: PointCatalog, ledger: ClaimLedger,
                 profiles: Optional[ProfileDirectory] = None,
                 penalty_window_hours: float = PENALTY_WINDOW_HOURS):
        """
        Initialize filter.

        Args:
            catalog: Point catalog
            ledger: Claim ledger
            profiles: Profile directory for owner cards (optional)
            penalty_window_hours: How long a canceller is kept off a point
        """
        self.catalog = catalog
        self.ledger = ledger
        self.profiles = profiles
        self.penalty_window = timedelta(hours=penalty_window_hours)

    def available_for(self,
                      recycler_id: str,
                      lat: Optional[float] = None,
                      lng: Optional[float] = None,
                      max_distance_km: Optional[float] = None,
                      now: Optional[datetime] = None) -> List[AvailablePoint]:
        """
        List points the recycler can claim, nearest first.

        Args:
            recycler_id: Requesting recycler
            lat, lng: Recycler location (optional, both or neither)
            max_distance_km: Radius in kilometers, inclusive (optional)
            now: Reference time for the penalty window (defaults to ledger clock)

        Returns:
            Ranked list of AvailablePoint with owner profile attached
        """
        if not recycler_id:
            raise ValidationError("Recycler is required")
        validate_coordinates(lat, lng)
        if max_distance_km is not None and not (max_distance_km >= 0):
            raise ValidationError("Maximum distance must be a non-negative number")

        now = now or self.ledger.clock()

        points = self._unclaimed_points()
        points = self._drop_penalized(points, recycler_id, now)
        points = self._drop_behind_institutions(points)

        candidates = [AvailablePoint(point=point) for point in points]
        candidates = attach_distances(candidates, lat, lng, max_distance_km)
        candidates = sort_by_distance(candidates)

        self._attach_owners(candidates)
        return candidates

    def _unclaimed_points(self) -> List[CollectionPoint]:
        """Points whose latest claim is absent or cancelled."""
        points = self.catalog.list_points()
        latest = self.ledger.latest_claims(point.id for point in points)

        unclaimed = []
        for point in points:
            claim = latest.get(point.id)
            if claim is None or claim.status == ClaimStatus.CANCELLED.value:
                unclaimed.append(point)
        return unclaimed

    def _drop_penalized(self, points: List[CollectionPoint], recycler_id: str,
                        now: datetime) -> List[CollectionPoint]:
        """Remove points this recycler cancelled inside the penalty window."""
        penalized = self.penalized_points(recycler_id, now)
        if penalized:
            logger.debug("Recycler %s penalized on %d points", recycler_id, len(penalized))
        return [point for point in points if point.id not in penalized]

    def _drop_behind_institutions(self, points: List[CollectionPoint]) -> List[CollectionPoint]:
        """
        Remove individual points sharing an address with a collective point.

        Residents at an institution's address are served through it. If the
        lookup fails the listing goes ahead without this exclusion.
        """
        try:
            institutional = self.catalog.institutional_addresses()
        except ClaimError as e:
            logger.warning("Institutional address lookup failed, not suppressing: %s", e)
            return points

        return [
            point for point in points
            if not (point.type == PointType.INDIVIDUAL.value and point.address in institutional)
        ]

    def _attach_owners(self, candidates: List[AvailablePoint]):
        """Denormalize owner profiles onto the results."""
        if self.profiles is None or not candidates:
            return

        try:
            owners: Dict[str, OwnerProfile] = self.profiles.get_profiles(
                c.point.user_id for c in candidates
            )
        except ClaimError as e:
            logger.warning("Owner profile lookup failed: %s", e)
            return

        for candidate in candidates:
            candidate.owner = owners.get(candidate.point.user_id)

    def penalized_points(self, recycler_id: str, now: Optional[datetime] = None) -> Set[str]:
        """Point ids currently hidden from this recycler by the penalty window."""
        now = now or self.ledger.clock()
        return self.ledger.recent_cancellations(recycler_id, since=now - self.penalty_window)
