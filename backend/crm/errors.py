# Overview: Domain exception hierarchy shared by services and routes.

"""
Every service-level failure the API reports is one of these.

Routes catch CrmError, roll back the session and answer with
error.to_dict() and error.status_code. Anything else is an internal error.
"""

from __future__ import annotations

from typing import Any


class CrmError(Exception):
    """Base class for expected, user-facing failures."""
    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message}
        payload.update(self.extra)
        return payload


class ValidationError(CrmError):
    """400: malformed or missing payload fields."""

    def __init__(self, message: str, details: dict[str, str] | None = None):
        super().__init__(message, details=details or {})
        self.details = details or {}


class PermissionDeniedError(CrmError):
    status_code = 403


class NotFoundError(CrmError):
    status_code = 404


class ConflictError(CrmError):
    """409: a state precondition no longer holds (lost a race, already processed)."""
    status_code = 409


class BusinessRuleError(CrmError):
    """Precondition violations; pass status_code=403 for authorization-flavoured rules."""
    status_code = 400


class QuotaExceededError(CrmError):
    status_code = 403

    def __init__(self, message: str, *, current_limit: int, remaining: int,
                 today_count: int, approval_count: int):
        super().__init__(
            message,
            code="QUOTA_EXCEEDED",
            currentLimit=current_limit,
            remaining=remaining,
            todayCount=today_count,
            approvalCount=approval_count,
            needsApproval=True,
        )
        self.current_limit = current_limit
        self.remaining = remaining
