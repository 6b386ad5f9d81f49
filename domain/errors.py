"""
Error taxonomy for collection-point and claim operations.

Every mutating operation either returns the new state or raises one of
these. ``user_message`` is the text the presentation layer shows.
"""
from typing import Optional


class ClaimError(Exception):
    """Base class for all coordinator errors."""
    kind = "error"
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Text shown to the end user."""
        return self.default_message


class ValidationError(ClaimError):
    """Missing or malformed required field. Surfaced verbatim."""
    kind = "validation"

    @property
    def user_message(self) -> str:
        return self.message


class NotFoundError(ClaimError):
    """Referenced point or claim no longer exists."""
    kind = "not_found"
    default_message = "No longer available or was removed"


class ConflictError(ClaimError):
    """Another recycler already holds the point."""
    kind = "conflict"
    default_message = "Already claimed by someone else"


class AlreadyTerminalError(ClaimError):
    """Claim is already completed or cancelled."""
    kind = "already_terminal"
    default_message = "Already cancelled or completed"


class ForbiddenError(ClaimError):
    """Actor does not own the resource."""
    kind = "forbidden"
    default_message = "Access denied"


class PenaltyWindowError(ForbiddenError):
    """Recycler cancelled this point too recently to claim it again."""
    kind = "penalty_window"
    default_message = "You cancelled this point recently, try again later"


class TransientStorageError(ClaimError):
    """Connectivity or timeout problem in the storage layer."""
    kind = "transient_storage"
    default_message = "Storage temporarily unavailable, please retry"
