"""
Mutation guard.

Re-reads the ownership facts of the target row under a row lock, re-runs
the evaluator and performs the write in the same transaction, so a
concurrent reassignment or status change between the route's first read
and the write cannot slip through.
"""
from typing import Any, Callable, Iterable, Optional, Dict

from sqlalchemy import inspect, text
from sqlalchemy.exc import NoInspectionAvailable, OperationalError
from sqlalchemy.orm import Session, contains_eager

from core.logger import logger
from database.models import Stream, User, Course, Class, Report, ReportFeedback
from policy.errors import DatabaseUnavailable, NotFound, enforce
from policy.evaluator import Action, decide
from policy.identity import Identity
from policy.resources import ResourceType, describe, describe_new
from services.audit_service import AuditService

# Parent row a create is checked against
PARENT_TYPES = {
    ResourceType.REPORT: ResourceType.COURSE,
    ResourceType.FEEDBACK: ResourceType.REPORT,
    ResourceType.COURSE: ResourceType.STREAM,
    ResourceType.CLASS: ResourceType.STREAM,
    ResourceType.USER: ResourceType.STREAM,
}


def _locked(query):
    # populate_existing so rows already in the identity map are refreshed from the locked read
    return query.populate_existing().with_for_update()


def load_locked(session: Session, resource_type: ResourceType, resource_id: int):
    """Load a row together with the rows its ownership depends on, locked FOR UPDATE."""
    if resource_type is ResourceType.STREAM:
        query = session.query(Stream).filter(Stream.stream_id == resource_id)
    elif resource_type is ResourceType.USER:
        query = session.query(User).filter(User.user_id == resource_id)
    elif resource_type is ResourceType.COURSE:
        query = session.query(Course).filter(Course.course_id == resource_id)
    elif resource_type is ResourceType.CLASS:
        query = session.query(Class).filter(Class.class_id == resource_id)
    elif resource_type is ResourceType.REPORT:
        # The joined course is populated from the same locked read
        query = (
            session.query(Report)
            .join(Report.course)
            .options(contains_eager(Report.course))
            .filter(Report.report_id == resource_id)
        )
    elif resource_type is ResourceType.FEEDBACK:
        query = (
            session.query(ReportFeedback)
            .join(ReportFeedback.report)
            .join(Report.course)
            .options(contains_eager(ReportFeedback.report).contains_eager(Report.course))
            .filter(ReportFeedback.feedback_id == resource_id)
        )
    else:
        raise ValueError(f"Unknown resource type: {resource_type}")
    return _locked(query).first()


def _primary_key(row) -> Optional[str]:
    try:
        identity = inspect(row).identity
    except NoInspectionAvailable:
        return None
    if not identity:
        return None
    return str(identity[0]) if len(identity) == 1 else ",".join(str(v) for v in identity)


def _apply_timeout(session: Session, timeout_ms: Optional[int]) -> None:
    if not timeout_ms:
        return
    if session.get_bind().dialect.name != "postgresql":
        return
    # SET LOCAL lasts until the end of the current transaction
    session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


def guard(
    session: Session,
    identity: Identity,
    action: Action,
    resource_type: ResourceType,
    resource_id: Optional[int],
    perform: Callable[[Any], Any],
    changed_fields: Iterable[str] = (),
    timeout_ms: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    Run ``perform`` inside one transaction after re-checking the policy.

    For update, delete and review ``resource_id`` is the target row and
    ``perform`` receives it. For create, ``resource_id`` is the parent row
    (Course of a Report, Report of Feedback, Stream of a Course, Class or
    User; None for a Stream or a stream-less User) and ``perform`` receives
    the parent. Whatever ``perform`` returns is returned.

    Raises:
        NotFound: target or parent does not exist, or is outside the caller's stream
        Denied: the evaluator refused the action
        InvalidStateTransition: the row's status forbids the action
        DatabaseUnavailable: lock or statement timeout, or connection loss
    """
    action = Action(action)
    label = resource_type.value.capitalize()
    try:
        _apply_timeout(session, timeout_ms)

        if action is Action.CREATE:
            parent_type = PARENT_TYPES.get(resource_type)
            target = None
            if parent_type is not None:
                # Cross-stream parents are hidden like missing ones
                label = parent_type.value.capitalize()
                if resource_id is not None:
                    target = load_locked(session, parent_type, resource_id)
                if target is None and (resource_id is not None or resource_type is not ResourceType.USER):
                    raise NotFound(f"{label} not found")
            descriptor = describe_new(resource_type, target)
            enforce(decide(identity, action, descriptor.with_changes(changed_fields)), label)
        else:
            target = load_locked(session, resource_type, resource_id)
            if target is None:
                raise NotFound(f"{label} not found")
            descriptor = describe(resource_type, target)
            enforce(decide(identity, action, descriptor.with_changes(changed_fields)), label)

        result = perform(target)
        session.flush()

        audited_id = _primary_key(result) if action is Action.CREATE else str(resource_id)
        AuditService.log_action(
            session,
            action=f"{resource_type.value}_{action.value}",
            user_id=identity.user_id,
            resource_type=resource_type.value,
            resource_id=audited_id,
            details=details,
            commit=False,
        )
        session.commit()
        logger.info(f"User {identity.user_id} {action.value} {resource_type.value} {audited_id}")
        return result
    except OperationalError as e:
        session.rollback()
        logger.error(f"Guarded {action.value} on {resource_type.value} failed: {e}")
        raise DatabaseUnavailable() from e
    except Exception:
        session.rollback()
        raise
