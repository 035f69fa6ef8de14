"""
Domain error taxonomy.

Every failure a workflow operation can report is one of these.  The HTTP
layer maps ``status_code`` straight onto the response; nothing below the
routes knows about HTTP otherwise.
"""

from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    status_code: int = 400

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.rule = rule
        self.details = details


class Unauthorized(DomainError):
    status_code = 401


class Forbidden(DomainError):
    status_code = 403


class NotFound(DomainError):
    status_code = 404


class InvalidTransition(DomainError):
    """Raised when a status change violates a state machine."""

    status_code = 400

    def __init__(self, current: Any, target: Any, *, allowed=None):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"Invalid status transition from {current_value} to {target_value}",
            details={
                "current": current_value,
                "target": target_value,
                "allowed_transitions": sorted(
                    getattr(s, "value", s) for s in (allowed or ())
                ),
            },
        )
        self.current = current
        self.target = target


class ValidationFailed(DomainError):
    status_code = 400


class Conflict(DomainError):
    status_code = 409


class PreconditionFailed(DomainError):
    status_code = 400


class SettlementFailed(DomainError):
    status_code = 400
