"""
Typed errors raised by the policy layer.

Every error carries the HTTP status it maps to, so the app registers a
single exception handler for ``PolicyError``.
"""
from typing import Optional

from core.logger import logger
from policy.evaluator import Allow, Deny, DenyReason, Decision


class PolicyError(Exception):
    """Base class for policy failures."""
    status_code = 500
    default_detail = "Policy error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    @property
    def reason(self) -> Optional[str]:
        return None


class Denied(PolicyError):
    """The caller may not perform the action on the resource."""
    status_code = 403
    default_detail = "Access denied"

    def __init__(self, reason: DenyReason, detail: Optional[str] = None):
        self._reason = reason
        super().__init__(detail or f"Access denied: {reason.value}")

    @property
    def reason(self) -> Optional[str]:
        return self._reason.value


class NotFound(PolicyError):
    """Row does not exist, or exists outside the caller's stream."""
    status_code = 404
    default_detail = "Resource not found"


class InvalidStateTransition(PolicyError):
    """The row's current state does not permit the action."""
    status_code = 409
    default_detail = "Invalid state transition"

    def __init__(self, detail: Optional[str] = None, current: Optional[str] = None, target: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(detail)

    @property
    def reason(self) -> Optional[str]:
        return DenyReason.INVALID_STATUS_FOR_ACTION.value


class DatabaseUnavailable(PolicyError):
    """Connection lost, pool exhausted or statement timeout. Safe to retry."""
    status_code = 503
    default_detail = "Database temporarily unavailable"


def enforce(decision: Decision, resource_label: str = "Resource") -> None:
    """Raise the error matching a Deny; return silently on Allow."""
    if isinstance(decision, Allow):
        return
    if not isinstance(decision, Deny):
        raise Denied(DenyReason.ROLE_FORBIDDEN)
    logger.warning(f"Policy denied access to {resource_label.lower()}: {decision.reason.value}")
    if decision.reason is DenyReason.WRONG_STREAM:
        # Cross-stream rows are reported as missing
        raise NotFound(f"{resource_label} not found")
    if decision.reason is DenyReason.INVALID_STATUS_FOR_ACTION:
        raise InvalidStateTransition(f"{resource_label} cannot be changed in its current status")
    raise Denied(decision.reason)
