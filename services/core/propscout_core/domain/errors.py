"""Domain errors for the enrichment pipeline.

Every error carries a machine-readable ``reason`` and an optional payload
(``used``/``limit``, ``missing`` field names, current ``status``) so callers can
decide whether to retry, buy more quota, or complete their preferences.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, reason: str, message: Optional[str] = None, **payload: Any):
        super().__init__(message or reason)
        self.reason = reason
        self.payload = payload

    def to_dict(self) -> dict[str, Any]:
        """Convert to an error body."""
        body: dict[str, Any] = {"error": self.reason}
        body.update(self.payload)
        return body


class UnauthorizedError(PipelineError):
    """Missing or invalid caller identity."""

    def __init__(self, message: str = "Invalid bearer token"):
        super().__init__("UNAUTHORIZED", message)


class ForbiddenError(PipelineError):
    """Session exists but belongs to another user."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__("FORBIDDEN", message)


class SessionNotFoundError(PipelineError):
    """Session id does not exist."""

    def __init__(self, session_id: str):
        super().__init__("SESSION_NOT_FOUND", f"Session {session_id} not found")


class MaxLinksReachedError(PipelineError):
    """User already tracks the maximum number of listings."""

    def __init__(self, limit: int):
        super().__init__("MAX_LINKS_REACHED", limit=limit)


class ConflictError(PipelineError):
    """Guarded transition lost: wrong state or a concurrent run."""

    def __init__(
        self,
        status: Optional[str],
        reason: str = "ALREADY_RUNNING_OR_INVALID_STATE",
    ):
        super().__init__(reason, status=status)


class QuotaExceededError(PipelineError):
    """Usage limit reached for an action."""

    def __init__(self, action: str, used: int, limit: int):
        super().__init__(
            "QUOTA_EXCEEDED", "Quota exceeded", action=action, used=used, limit=limit
        )


class PreconditionFailedError(PipelineError):
    """Confirmed upstream artifact or preferences missing."""

    def __init__(self, reason: str, missing: Optional[list[str]] = None):
        if missing is None:
            super().__init__(reason)
        else:
            super().__init__(reason, missing=missing)


class ValidationFailedError(PipelineError):
    """Caller-supplied confirmation payload is incomplete or mistyped."""

    def __init__(self, missing: list[str]):
        super().__init__("VALIDATION_FAILED", missing=missing)


class UpstreamFailureError(PipelineError):
    """AI call or HTML fetch failed, timed out, or returned unusable output."""

    def __init__(self, reason: str, message: Optional[str] = None, status: Optional[str] = None):
        if status is None:
            super().__init__(reason, message)
        else:
            super().__init__(reason, message, status=status)


__all__ = [
    "PipelineError",
    "UnauthorizedError",
    "ForbiddenError",
    "SessionNotFoundError",
    "MaxLinksReachedError",
    "ConflictError",
    "QuotaExceededError",
    "PreconditionFailedError",
    "ValidationFailedError",
    "UpstreamFailureError",
]
