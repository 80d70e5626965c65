"""Error taxonomy for the vetting pipeline.

Every error carries an HTTP status, a stable machine-readable ``code`` and a
``retryable`` flag so that API handlers and MCP tools can report failures
uniformly as ``{"error": ..., "code": ..., "details": ...}``.
"""
from __future__ import annotations

from typing import Any


class VettingError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthorized(VettingError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required", **kw):
        super().__init__(message, **kw)


class Forbidden(VettingError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Insufficient permissions", **kw):
        super().__init__(message, **kw)


class NotFound(VettingError):
    status_code = 404
    code = "NOT_FOUND"


class ValidationFailed(VettingError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidStage(VettingError):
    status_code = 400
    code = "INVALID_STAGE"


class InvalidTransition(InvalidStage):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str, allowed: list[str]):
        super().__init__(
            f"Cannot move from {current} to {requested}",
            details={"current": current, "requested": requested, "allowed": allowed},
        )
        self.current = current
        self.requested = requested
        self.allowed = allowed


class InsufficientVotes(VettingError):
    status_code = 400
    code = "INSUFFICIENT_VOTES"


class TiedVote(InsufficientVotes):
    code = "TIED_VOTE"


class Conflict(VettingError):
    status_code = 409
    code = "CONFLICT"
    retryable = True

    def __init__(self, message: str, *, audit_id: str | None = None, details: Any = None):
        if audit_id is not None:
            details = {**(details or {}), "audit_id": audit_id}
        super().__init__(message, details=details)
        self.audit_id = audit_id


class ConcurrentFinalization(Conflict):
    """Another actor committed the board decision first. Safe to re-read and retry."""
    code = "CONCURRENT_FINALIZATION"
    retryable = True

    def __init__(self, message: str = "Votes were finalized by another user", **kw):
        super().__init__(message, **kw)


class AlreadyFinalized(ConcurrentFinalization):
    code = "ALREADY_FINALIZED"
    retryable = False

    def __init__(self, message: str = "Votes have already been finalized", **kw):
        super().__init__(message, **kw)


class InternalError(VettingError):
    pass
