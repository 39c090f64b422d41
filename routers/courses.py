"""
Course APIs.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import or_, func
from pydantic import BaseModel, Field
from typing import Optional

from database.models import Course, Report, User, UserRole, Stream
from auth.dependencies import get_db_session, get_identity, require_reviewer
from policy.identity import Identity
from policy.evaluator import Action
from policy.resources import ResourceType
from policy.scoper import Op, Predicate, scoped_query, load_visible
from policy.guard import guard
import config


router = APIRouter(prefix="/api/courses", tags=["courses"])


class CourseCreate(BaseModel):
    """Create course request."""
    courseName: str = Field(..., min_length=1, max_length=255)
    courseCode: str = Field(..., min_length=1, max_length=50)
    streamId: int
    lecturerId: Optional[int] = None


class CourseUpdate(BaseModel):
    """Update course request."""
    courseName: Optional[str] = Field(None, min_length=1, max_length=255)
    courseCode: Optional[str] = Field(None, min_length=1, max_length=50)
    streamId: Optional[int] = None
    lecturerId: Optional[int] = None


class AssignLecturer(BaseModel):
    """Assign lecturer request."""
    lecturerId: int


def course_to_dict(course: Course, include_classes: bool = False) -> dict:
    data = {
        "id": course.course_id,
        "courseName": course.course_name,
        "courseCode": course.course_code,
        "streamId": course.stream_id,
        "streamName": course.stream.stream_name if course.stream else None,
        "streamCode": course.stream.stream_code if course.stream else None,
        "lecturerId": course.lecturer_id,
        "lecturerName": course.lecturer.full_name if course.lecturer else None,
        "lecturerEmail": course.lecturer.email if course.lecturer else None,
        "createdAt": course.created_at.isoformat() if course.created_at else None,
        "updatedAt": course.updated_at.isoformat() if course.updated_at else None,
    }
    if include_classes:
        classes = sorted((link.klass for link in course.class_links), key=lambda k: k.class_name)
        data["classes"] = [
            {"id": k.class_id, "className": k.class_name, "totalStudents": k.total_students}
            for k in classes
        ]
    return data


def _check_code_unique(db: Session, code: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(Course).filter(func.upper(Course.course_code) == code.upper())
    if exclude_id is not None:
        query = query.filter(Course.course_id != exclude_id)
    if query.first() is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Course code already exists")


def _check_lecturer(db: Session, lecturer_id: int, stream_id: int) -> User:
    """The assigned lecturer must be a lecturer of the course's stream."""
    lecturer = db.query(User).filter(
        User.user_id == lecturer_id,
        User.role == UserRole.LECTURER,
        User.stream_id == stream_id
    ).first()
    if lecturer is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Lecturer not found or not in the same stream as the course"
        )
    return lecturer


@router.get("")
async def list_courses(
    stream_id: Optional[int] = Query(None, alias="stream"),
    lecturer_id: Optional[int] = Query(None, alias="lecturer"),
    search: Optional[str] = Query(None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Courses visible to the caller."""
    filters = []
    if stream_id is not None:
        filters.append(Predicate("courses.stream_id", Op.EQ, stream_id))
    if lecturer_id is not None:
        filters.append(Predicate("courses.lecturer_id", Op.EQ, lecturer_id))

    query = scoped_query(db, identity, ResourceType.COURSE, filters)
    if search:
        query = query.filter(
            or_(
                Course.course_name.ilike(f"%{search}%"),
                Course.course_code.ilike(f"%{search}%")
            )
        )
    courses = query.order_by(Course.course_code).all()
    return {"data": [course_to_dict(c) for c in courses], "total": len(courses)}


@router.get("/stats/overview")
async def course_stats(
    identity: Identity = Depends(require_reviewer),
    db: Session = Depends(get_db_session)
):
    """Courses per stream, split into assigned and unassigned."""
    rows = (
        scoped_query(db, identity, ResourceType.STREAM)
        .outerjoin(Course, Course.stream_id == Stream.stream_id)
        .with_entities(
            Stream.stream_id,
            Stream.stream_name,
            Stream.stream_code,
            func.count(Course.course_id),
            func.count(Course.lecturer_id),
        )
        .group_by(Stream.stream_id, Stream.stream_name, Stream.stream_code)
        .order_by(Stream.stream_code)
        .all()
    )
    return {
        "data": [
            {
                "streamId": stream_id,
                "streamName": stream_name,
                "streamCode": stream_code,
                "totalCourses": total,
                "assignedCourses": assigned,
                "unassignedCourses": total - assigned,
            }
            for stream_id, stream_name, stream_code, total, assigned in rows
        ]
    }


@router.get("/{course_id}")
async def get_course(
    course_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Course with the classes taking it."""
    course = load_visible(db, identity, ResourceType.COURSE, course_id)
    return course_to_dict(course, include_classes=True)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_course(
    body: CourseCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Create course in a stream. Program leader only."""
    code = body.courseCode.strip().upper()

    def perform(stream: Stream) -> Course:
        _check_code_unique(db, code)
        if body.lecturerId is not None:
            _check_lecturer(db, body.lecturerId, stream.stream_id)
        course = Course(
            course_name=body.courseName.strip(),
            course_code=code,
            stream_id=stream.stream_id,
            lecturer_id=body.lecturerId,
        )
        db.add(course)
        return course

    course = guard(
        db, identity, Action.CREATE, ResourceType.COURSE, body.streamId, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return course_to_dict(course)


@router.put("/{course_id}")
async def update_course(
    course_id: int,
    body: CourseUpdate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Update course fields. Moving a course to another stream is program leader only."""
    provided = body.model_dump(exclude_unset=True)
    if not provided:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    changed_fields = set()
    if "streamId" in provided:
        changed_fields.add("stream_id")
    if "lecturerId" in provided:
        changed_fields.add("lecturer_id")

    def perform(course: Course) -> Course:
        if body.courseName is not None:
            course.course_name = body.courseName.strip()
        if body.courseCode is not None:
            code = body.courseCode.strip().upper()
            _check_code_unique(db, code, exclude_id=course.course_id)
            course.course_code = code
        if body.streamId is not None and body.streamId != course.stream_id:
            if db.get(Stream, body.streamId) is None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Stream not found")
            course.stream_id = body.streamId
        if "lecturerId" in provided:
            if body.lecturerId is not None:
                _check_lecturer(db, body.lecturerId, course.stream_id)
            course.lecturer_id = body.lecturerId
        elif course.lecturer_id is not None and "stream_id" in changed_fields:
            # Keep the assigned lecturer only if they belong to the new stream
            _check_lecturer(db, course.lecturer_id, course.stream_id)
        return course

    course = guard(
        db, identity, Action.UPDATE, ResourceType.COURSE, course_id, perform,
        changed_fields=changed_fields, timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return course_to_dict(course)


@router.patch("/{course_id}/assign-lecturer")
async def assign_lecturer(
    course_id: int,
    body: AssignLecturer,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Assign the single lecturer allowed to report on this course."""
    def perform(course: Course) -> Course:
        _check_lecturer(db, body.lecturerId, course.stream_id)
        course.lecturer_id = body.lecturerId
        return course

    course = guard(
        db, identity, Action.UPDATE, ResourceType.COURSE, course_id, perform,
        changed_fields={"lecturer_id"}, timeout_ms=config.GUARD_TIMEOUT_MS,
        details={"lecturerId": body.lecturerId},
    )
    return course_to_dict(course)


@router.delete("/{course_id}")
async def delete_course(
    course_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Delete a course that has no reports."""
    def perform(course: Course) -> None:
        if db.query(Report).filter(Report.course_id == course.course_id).first() is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete course with existing reports"
            )
        db.delete(course)

    guard(
        db, identity, Action.DELETE, ResourceType.COURSE, course_id, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return {"message": "Course deleted successfully"}
