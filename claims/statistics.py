"""Claim statistics for dashboards."""

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from claims.claim_ledger import ClaimLedger
from claims.point_catalog import PointCatalog
from domain.models import ClaimStatus, parse_iso, utc_now


def month_labels(months: int, now: datetime) -> List[str]:
    """``YYYY-MM`` labels for the last ``months`` months, oldest first."""
    labels = []
    year, month = now.year, now.month
    for _ in range(months):
        labels.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(labels))


class ClaimStatistics:
    """
    Aggregates over the retained claim history.

    Cancelled claims are kept in the ledger for exactly this purpose.
    """

    def __init__(self, catalog: PointCatalog, ledger: ClaimLedger):
        self.catalog = catalog
        self.ledger = ledger

    def claims_summary(self) -> Dict[str, Any]:
        """Totals per status and number of claims per point."""
        stats = {
            "total": 0,
            "claimed": 0,
            "completed": 0,
            "cancelled": 0,
            "by_point": defaultdict(int),
        }
        for claim in self.ledger.all_claims():
            stats["total"] += 1
            stats[claim.status] += 1
            stats["by_point"][claim.collection_point_id] += 1

        stats["by_point"] = dict(stats["by_point"])
        return stats

    def recycler_summary(self, recycler_id: str) -> Dict[str, Any]:
        """Completed/cancelled counts and cancellation rate of one recycler."""
        claims = self.ledger.claims_for_recycler(recycler_id)
        counts = defaultdict(int)
        for claim in claims:
            counts[claim.status] += 1

        finished = counts[ClaimStatus.COMPLETED.value] + counts[ClaimStatus.CANCELLED.value]
        return {
            "recycler_id": recycler_id,
            "total": len(claims),
            "claimed": counts[ClaimStatus.CLAIMED.value],
            "completed": counts[ClaimStatus.COMPLETED.value],
            "cancelled": counts[ClaimStatus.CANCELLED.value],
            "cancellation_rate": counts[ClaimStatus.CANCELLED.value] / finished if finished else 0.0,
        }

    def monthly_breakdown(self, user_id: Optional[str] = None, months: int = 12,
                          now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Points created and claims by status per month.

        Args:
            user_id: Restrict to points/claims of this owner (None for all)
            months: Number of months, ending with the current one
            now: Reference time (defaults to the current time)

        Returns:
            Dictionary with ``months`` labels, ``created_by_month`` and
            ``claims_by_status`` (status -> month -> count). Completed claims
            are the collections made.
        """
        now = now or utc_now()
        labels = month_labels(months, now)
        window = set(labels)

        created_by_month = {label: 0 for label in labels}
        points = (self.catalog.list_points_by_owner(user_id) if user_id
                  else self.catalog.list_points())
        for point in points:
            label = _month_of(point.created_at)
            if label in window:
                created_by_month[label] += 1

        claims_by_status = {
            status.value: {label: 0 for label in labels} for status in ClaimStatus
        }
        for claim in self.ledger.all_claims():
            if user_id and claim.user_id != user_id:
                continue
            label = _month_of(claim.created_at)
            if label in window:
                claims_by_status[claim.status][label] += 1

        return {
            "months": labels,
            "created_by_month": created_by_month,
            "claims_by_status": claims_by_status,
        }


def _month_of(timestamp: Optional[str]) -> Optional[str]:
    if not timestamp:
        return None
    moment = parse_iso(timestamp)
    return f"{moment.year:04d}-{moment.month:02d}"
