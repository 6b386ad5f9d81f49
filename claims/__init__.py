"""Collection-point claim lifecycle: catalog, ledger and availability."""

from claims.availability_filter import AvailabilityFilter
from claims.claim_ledger import ClaimLedger
from claims.coordinator import ClaimCoordinator
from claims.database import Database
from claims.point_catalog import PointCatalog

__all__ = [
    "AvailabilityFilter",
    "ClaimCoordinator",
    "ClaimLedger",
    "Database",
    "PointCatalog",
]
