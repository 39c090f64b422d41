"""
Resource descriptors: the ownership facts the evaluator needs about a row.
"""
import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from database.models import (
    Stream, User, Course, Class, Report, ReportFeedback, ReportStatus
)


class ResourceType(str, enum.Enum):
    REPORT = "report"
    COURSE = "course"
    CLASS = "class"
    STREAM = "stream"
    USER = "user"
    FEEDBACK = "feedback"


# Fields only a program leader may change on a user row
PRIVILEGED_USER_FIELDS = frozenset({"role", "stream_id"})


@dataclass(frozen=True)
class ResourceDescriptor:
    """
    What the evaluator sees of a row.

    For ``list`` the id is None. For ``create`` the ownership fields come
    from the parent row (the Course of a new Report, the Report of new
    Feedback, the Stream of a new Course, Class or User).
    """
    type: ResourceType
    id: Optional[int] = None
    owning_stream_id: Optional[int] = None
    owner_user_id: Optional[int] = None
    assigned_lecturer_id: Optional[int] = None
    status: Optional[ReportStatus] = None
    changed_fields: FrozenSet[str] = field(default_factory=frozenset)

    def with_changes(self, changed_fields) -> "ResourceDescriptor":
        return ResourceDescriptor(
            type=self.type,
            id=self.id,
            owning_stream_id=self.owning_stream_id,
            owner_user_id=self.owner_user_id,
            assigned_lecturer_id=self.assigned_lecturer_id,
            status=self.status,
            changed_fields=frozenset(changed_fields or ()),
        )


def describe(resource_type: ResourceType, row) -> ResourceDescriptor:
    """Build the descriptor of an existing row."""
    if resource_type is ResourceType.STREAM:
        return ResourceDescriptor(type=resource_type, id=row.stream_id, owning_stream_id=row.stream_id)
    if resource_type is ResourceType.USER:
        return ResourceDescriptor(
            type=resource_type, id=row.user_id,
            owning_stream_id=row.stream_id, owner_user_id=row.user_id
        )
    if resource_type is ResourceType.COURSE:
        return ResourceDescriptor(
            type=resource_type, id=row.course_id,
            owning_stream_id=row.stream_id, assigned_lecturer_id=row.lecturer_id
        )
    if resource_type is ResourceType.CLASS:
        return ResourceDescriptor(type=resource_type, id=row.class_id, owning_stream_id=row.stream_id)
    if resource_type is ResourceType.REPORT:
        course = row.course
        return ResourceDescriptor(
            type=resource_type, id=row.report_id,
            owning_stream_id=course.stream_id if course else None,
            owner_user_id=row.lecturer_id,
            assigned_lecturer_id=course.lecturer_id if course else None,
            status=row.status,
        )
    if resource_type is ResourceType.FEEDBACK:
        report = row.report
        course = report.course if report else None
        return ResourceDescriptor(
            type=resource_type, id=row.feedback_id,
            owning_stream_id=course.stream_id if course else None,
            owner_user_id=report.lecturer_id if report else None,
            status=report.status if report else None,
        )
    raise ValueError(f"Unknown resource type: {resource_type}")


def describe_new(resource_type: ResourceType, parent=None) -> ResourceDescriptor:
    """Build the descriptor of a row about to be created under ``parent``."""
    if resource_type is ResourceType.STREAM:
        return ResourceDescriptor(type=resource_type)
    if resource_type is ResourceType.REPORT:
        # parent is the Course being reported on
        return ResourceDescriptor(
            type=resource_type,
            owning_stream_id=parent.stream_id,
            assigned_lecturer_id=parent.lecturer_id,
        )
    if resource_type is ResourceType.FEEDBACK:
        # parent is the Report receiving feedback
        return ResourceDescriptor(
            type=resource_type,
            owning_stream_id=parent.course.stream_id if parent.course else None,
            owner_user_id=parent.lecturer_id,
            status=parent.status,
        )
    if resource_type in (ResourceType.COURSE, ResourceType.CLASS, ResourceType.USER):
        # parent is the owning Stream; None for a stream-less program leader account
        return ResourceDescriptor(
            type=resource_type,
            owning_stream_id=parent.stream_id if parent is not None else None,
        )
    raise ValueError(f"Unknown resource type: {resource_type}")


def model_for(resource_type: ResourceType):
    return {
        ResourceType.STREAM: Stream,
        ResourceType.USER: User,
        ResourceType.COURSE: Course,
        ResourceType.CLASS: Class,
        ResourceType.REPORT: Report,
        ResourceType.FEEDBACK: ReportFeedback,
    }[resource_type]
