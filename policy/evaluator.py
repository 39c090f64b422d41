"""
Policy evaluator: decides whether an identity may perform an action on a resource.

``decide`` is pure. It reads nothing from the database and never raises;
anything it does not recognise is denied with ``role_forbidden``.
"""
import enum
from dataclasses import dataclass
from typing import Callable, Dict, Union

from database.models import UserRole, ReportStatus
from policy.identity import Identity
from policy.resources import ResourceType, ResourceDescriptor, PRIVILEGED_USER_FIELDS


class Action(str, enum.Enum):
    READ_ONE = "read_one"
    LIST = "list"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REVIEW = "review"


class DenyReason(str, enum.Enum):
    NOT_OWNER = "not_owner"
    WRONG_STREAM = "wrong_stream"
    ROLE_FORBIDDEN = "role_forbidden"
    INVALID_STATUS_FOR_ACTION = "invalid_status_for_action"


@dataclass(frozen=True)
class Allow:
    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Deny:
    reason: DenyReason

    def __bool__(self) -> bool:
        return False


Decision = Union[Allow, Deny]

ALLOW = Allow()
NOT_OWNER = Deny(DenyReason.NOT_OWNER)
WRONG_STREAM = Deny(DenyReason.WRONG_STREAM)
ROLE_FORBIDDEN = Deny(DenyReason.ROLE_FORBIDDEN)
INVALID_STATUS = Deny(DenyReason.INVALID_STATUS_FOR_ACTION)

# Types whose visibility is owned by a report author
_REPORT_OWNED = (ResourceType.REPORT, ResourceType.FEEDBACK)


def _in_stream(identity: Identity, resource: ResourceDescriptor) -> bool:
    return identity.stream_id is not None and resource.owning_stream_id == identity.stream_id


def _is_self(identity: Identity, resource: ResourceDescriptor) -> bool:
    return resource.type is ResourceType.USER and resource.id is not None and resource.id == identity.user_id


def _touches_privileged_fields(resource: ResourceDescriptor) -> bool:
    return bool(resource.changed_fields & PRIVILEGED_USER_FIELDS)


def _self_user_rule(identity: Identity, action: Action, resource: ResourceDescriptor):
    """Own user row: readable and editable by everyone, role and stream excepted."""
    if not _is_self(identity, resource):
        return None
    if action is Action.READ_ONE:
        return ALLOW
    if action is Action.UPDATE:
        return ROLE_FORBIDDEN if _touches_privileged_fields(resource) else ALLOW
    return None


def _student(identity: Identity, action: Action, resource: ResourceDescriptor) -> Decision:
    if action is Action.LIST:
        if resource.type is ResourceType.USER:
            return ROLE_FORBIDDEN
        return ALLOW if identity.has_stream else WRONG_STREAM
    if action is Action.READ_ONE:
        if resource.type is ResourceType.USER:
            return ROLE_FORBIDDEN
        return ALLOW if _in_stream(identity, resource) else WRONG_STREAM
    return ROLE_FORBIDDEN


def _lecturer(identity: Identity, action: Action, resource: ResourceDescriptor) -> Decision:
    if action is Action.LIST:
        if resource.type is ResourceType.USER:
            return ROLE_FORBIDDEN
        return ALLOW if identity.has_stream else WRONG_STREAM

    if action is Action.READ_ONE:
        if resource.type is ResourceType.USER:
            return ROLE_FORBIDDEN
        # Reads never cross streams, not even for the author
        if not _in_stream(identity, resource):
            return WRONG_STREAM
        if resource.type in _REPORT_OWNED and resource.owner_user_id != identity.user_id:
            return NOT_OWNER
        return ALLOW

    if action is Action.CREATE:
        if resource.type is not ResourceType.REPORT:
            return ROLE_FORBIDDEN
        if not _in_stream(identity, resource):
            return WRONG_STREAM
        if resource.assigned_lecturer_id != identity.user_id:
            return NOT_OWNER
        return ALLOW

    if action in (Action.UPDATE, Action.DELETE):
        if resource.type is not ResourceType.REPORT:
            return ROLE_FORBIDDEN
        # Decided on authorship and status alone; ownership comes first
        if resource.owner_user_id != identity.user_id:
            return NOT_OWNER
        if resource.status is not ReportStatus.PENDING:
            return INVALID_STATUS
        return ALLOW

    return ROLE_FORBIDDEN


def _principal_lecturer(identity: Identity, action: Action, resource: ResourceDescriptor) -> Decision:
    if action is Action.LIST:
        return ALLOW if identity.has_stream else WRONG_STREAM

    if action is Action.READ_ONE:
        return ALLOW if _in_stream(identity, resource) else WRONG_STREAM

    if action is Action.CREATE:
        if resource.type is not ResourceType.FEEDBACK:
            return ROLE_FORBIDDEN
        return ALLOW if _in_stream(identity, resource) else WRONG_STREAM

    if action in (Action.UPDATE, Action.DELETE):
        # Other accounts belong to the program leader; report content to its author.
        # Own account edits are settled by _self_user_rule before we get here.
        if resource.type in (ResourceType.STREAM, ResourceType.FEEDBACK, ResourceType.USER, ResourceType.REPORT):
            return ROLE_FORBIDDEN
        if not _in_stream(identity, resource):
            return WRONG_STREAM
        # Moving a row to another stream is a program leader decision
        if "stream_id" in resource.changed_fields:
            return ROLE_FORBIDDEN
        return ALLOW

    if action is Action.REVIEW:
        if resource.type is not ResourceType.REPORT:
            return ROLE_FORBIDDEN
        return ALLOW if _in_stream(identity, resource) else WRONG_STREAM

    return ROLE_FORBIDDEN


def _program_leader(identity: Identity, action: Action, resource: ResourceDescriptor) -> Decision:
    # Reports are authored only by the lecturer who delivered the lecture
    if action is Action.CREATE and resource.type is ResourceType.REPORT:
        return ROLE_FORBIDDEN
    return ALLOW


_ROLE_RULES: Dict[UserRole, Callable[[Identity, Action, ResourceDescriptor], Decision]] = {
    UserRole.STUDENT: _student,
    UserRole.LECTURER: _lecturer,
    UserRole.PRINCIPAL_LECTURER: _principal_lecturer,
    UserRole.PROGRAM_LEADER: _program_leader,
}


def _coerce_action(action):
    if isinstance(action, Action):
        return action
    try:
        return Action(action)
    except (ValueError, TypeError):
        return None


def decide(identity: Identity, action: Action, resource: ResourceDescriptor) -> Decision:
    """Return Allow or Deny(reason) for ``identity`` performing ``action`` on ``resource``."""
    action = _coerce_action(action)
    if (
        action is None
        or not isinstance(identity, Identity)
        or not isinstance(resource, ResourceDescriptor)
        or not isinstance(resource.type, ResourceType)
    ):
        return ROLE_FORBIDDEN

    rule = _ROLE_RULES.get(identity.role)
    if rule is None:
        return ROLE_FORBIDDEN

    if not identity.is_program_leader:
        self_decision = _self_user_rule(identity, action, resource)
        if self_decision is not None:
            return self_decision

    return rule(identity, action, resource)
