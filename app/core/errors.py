"""
Domain errors for the challenge platform.

Every failure an operation can report to its caller is one of these
exceptions. Each carries the HTTP status the routes answer with, so the
web layer never has to know which service raised it.
"""
from typing import Optional


class ArenaError(Exception):
    """Base class for all domain failures"""
    status_code: int = 400
    kind: str = "error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.default_message()
        super().__init__(self.message)

    @classmethod
    def default_message(cls) -> str:
        return cls.kind.replace("_", " ").capitalize()


class NotFoundError(ArenaError):
    status_code = 404
    kind = "not_found"


class UnauthenticatedError(ArenaError):
    status_code = 401
    kind = "unauthenticated"

    @classmethod
    def default_message(cls) -> str:
        return "Authentication required"


class ForbiddenError(ArenaError):
    status_code = 403
    kind = "forbidden"


class ValidationError(ArenaError):
    """Request data is missing or malformed"""
    status_code = 422
    kind = "validation_error"

    def __init__(self, message: Optional[str] = None, errors: Optional[dict] = None):
        super().__init__(message)
        self.errors = errors or {}


class InvalidTransitionError(ArenaError):
    """Challenge is not in a state the requested transition starts from"""
    status_code = 409
    kind = "invalid_transition"


class InvalidStateError(ArenaError):
    """Operation is not allowed in the entity's current state"""
    status_code = 409
    kind = "invalid_state"


class TooEarlyError(ArenaError):
    """Date-bound transition requested before its date"""
    status_code = 400
    kind = "too_early"


class InvalidDateRangeError(ArenaError):
    status_code = 422
    kind = "invalid_date_range"


class DuplicateVoteError(ArenaError):
    status_code = 409
    kind = "duplicate_vote"

    @classmethod
    def default_message(cls) -> str:
        return "You have already voted for this project"


class SelfVoteError(ArenaError):
    status_code = 403
    kind = "self_vote"

    @classmethod
    def default_message(cls) -> str:
        return "You cannot vote for your own project"


class BadgeNotConfiguredError(ArenaError):
    status_code = 404
    kind = "badge_not_configured"


class StorageUnavailableError(ArenaError):
    """The database could not be reached or timed out"""
    status_code = 503
    kind = "storage_unavailable"

    @classmethod
    def default_message(cls) -> str:
        return "Storage temporarily unavailable, please retry"
