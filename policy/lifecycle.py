"""
Report status lifecycle.

pending -> reviewed -> approved, with pending -> approved allowed directly.
Nothing returns to pending and approved is terminal.
"""
from typing import Dict, FrozenSet

from database.models import ReportStatus
from policy.errors import InvalidStateTransition

TRANSITIONS: Dict[ReportStatus, FrozenSet[ReportStatus]] = {
    ReportStatus.PENDING: frozenset({ReportStatus.REVIEWED, ReportStatus.APPROVED}),
    ReportStatus.REVIEWED: frozenset({ReportStatus.APPROVED}),
    ReportStatus.APPROVED: frozenset(),
}


def can_transition(current: ReportStatus, target: ReportStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def require_transition(current: ReportStatus, target: ReportStatus) -> None:
    """Raise InvalidStateTransition unless ``current -> target`` is a legal move."""
    if not can_transition(current, target):
        raise InvalidStateTransition(
            f"Report status cannot change from '{_value(current)}' to '{_value(target)}'",
            current=_value(current),
            target=_value(target),
        )


def status_after_feedback(current: ReportStatus) -> ReportStatus:
    """Feedback moves a pending report to reviewed and leaves later statuses alone."""
    if current is ReportStatus.PENDING:
        return ReportStatus.REVIEWED
    return current


def _value(status) -> str:
    return status.value if isinstance(status, ReportStatus) else str(status)
