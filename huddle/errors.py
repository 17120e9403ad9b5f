"""
huddle.errors — Typed failures for membership and vote operations
==================================================================

Services raise these; the surrounding :func:`~huddle.database.engine.get_session`
block rolls the transaction back, and the API layer turns them into JSON
error payloads.  Each class carries a stable ``code`` and the HTTP status
the API uses for it.
"""

from __future__ import annotations


class HuddleError(Exception):
    """Base class for every failure returned to callers."""

    code = "error"
    http_status = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.replace("_", " "))
        self.message = message or self.code.replace("_", " ")

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class NotFound(HuddleError):
    """Gathering, schedule or membership does not exist."""
    code = "not_found"
    http_status = 404


class Forbidden(HuddleError):
    """Caller lacks the required role or membership."""
    code = "forbidden"
    http_status = 403


class InvalidState(HuddleError):
    """Transition is not legal from the row's current status."""
    code = "invalid_state"
    http_status = 409


class AlreadyMember(HuddleError):
    code = "already_member"
    http_status = 409


class AlreadyExists(HuddleError):
    code = "already_exists"
    http_status = 409


class Full(HuddleError):
    """Capacity reached."""
    code = "full"
    http_status = 409


class SelfVote(HuddleError):
    code = "self_vote"
    http_status = 422


class NotCompleted(HuddleError):
    """Evaluation attempted before the schedule was completed."""
    code = "not_completed"
    http_status = 409


class NotAMember(HuddleError):
    """Voter or target never took part in the referenced schedule."""
    code = "not_a_member"
    http_status = 403


class RateLimited(HuddleError):
    """Daily new-target vote quota exhausted."""
    code = "rate_limited"
    http_status = 429

    def __init__(self, message: str | None = None, *, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, str | int]:
        return {**super().to_dict(), "retry_after": self.retry_after}
