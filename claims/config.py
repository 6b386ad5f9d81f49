"""Configuration constants for the claim coordinator."""

import os

# Claim lifecycle
PENALTY_WINDOW_HOURS = 3  # Canceller cannot see/claim the point again for this long
ECO_CREDITS_PER_COMPLETION = 10  # Credited to the point owner on completion
CANCELLED_CLAIM_RETENTION_HOURS = 24  # Default cutoff for archive-and-clear

# Ratings
RATING_MIN = 1
RATING_MAX = 5

# Storage
DATA_DIR = os.environ.get("CLAIMS_DATA_DIR", "data")
DB_NAME = os.environ.get("CLAIMS_DB_NAME", "claims.db")
DB_TIMEOUT_SECONDS = float(os.environ.get("CLAIMS_DB_TIMEOUT", "5.0"))

# Event feed
EVENTS_PAGE_SIZE = 100

# HTTP adapter
API_HOST = os.environ.get("CLAIMS_API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("CLAIMS_API_PORT", "5001"))
LOG_LEVEL = os.environ.get("CLAIMS_LOG_LEVEL", "INFO")
