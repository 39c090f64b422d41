"""
Class (student cohort) APIs.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional

from database.models import Class, ClassCourse, Course, Report, Stream
from auth.dependencies import get_db_session, get_identity
from policy.identity import Identity
from policy.evaluator import Action
from policy.resources import ResourceType
from policy.scoper import Op, Predicate, scoped_query, load_visible
from policy.guard import guard
import config


router = APIRouter(prefix="/api/classes", tags=["classes"])


class ClassCreate(BaseModel):
    """Create class request."""
    className: str = Field(..., min_length=1, max_length=100)
    streamId: int
    totalStudents: int = Field(0, ge=0)


class ClassUpdate(BaseModel):
    """Update class request."""
    className: Optional[str] = Field(None, min_length=1, max_length=100)
    streamId: Optional[int] = None
    totalStudents: Optional[int] = Field(None, ge=0)


class ClassCourseLink(BaseModel):
    """Link a course to a class."""
    courseId: int


def class_to_dict(klass: Class, include_courses: bool = False) -> dict:
    data = {
        "id": klass.class_id,
        "className": klass.class_name,
        "streamId": klass.stream_id,
        "streamName": klass.stream.stream_name if klass.stream else None,
        "totalStudents": klass.total_students,
        "createdAt": klass.created_at.isoformat() if klass.created_at else None,
        "updatedAt": klass.updated_at.isoformat() if klass.updated_at else None,
    }
    if include_courses:
        courses = sorted((link.course for link in klass.course_links), key=lambda c: c.course_code)
        data["courses"] = [
            {
                "id": c.course_id,
                "courseName": c.course_name,
                "courseCode": c.course_code,
                "lecturerId": c.lecturer_id,
                "lecturerName": c.lecturer.full_name if c.lecturer else None,
            }
            for c in courses
        ]
    return data


@router.get("")
async def list_classes(
    stream_id: Optional[int] = Query(None, alias="stream"),
    search: Optional[str] = Query(None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Classes visible to the caller."""
    filters = []
    if stream_id is not None:
        filters.append(Predicate("classes.stream_id", Op.EQ, stream_id))
    if search:
        filters.append(Predicate("classes.class_name", Op.ILIKE, f"%{search}%"))
    classes = scoped_query(db, identity, ResourceType.CLASS, filters).order_by(Class.class_name).all()
    return {"data": [class_to_dict(k) for k in classes], "total": len(classes)}


@router.get("/{class_id}")
async def get_class(
    class_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Class with the courses it takes."""
    klass = load_visible(db, identity, ResourceType.CLASS, class_id)
    return class_to_dict(klass, include_courses=True)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_class(
    body: ClassCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Create class in a stream. Program leader only."""
    def perform(stream: Stream) -> Class:
        klass = Class(
            class_name=body.className.strip(),
            stream_id=stream.stream_id,
            total_students=body.totalStudents,
        )
        db.add(klass)
        return klass

    klass = guard(
        db, identity, Action.CREATE, ResourceType.CLASS, body.streamId, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return class_to_dict(klass)


@router.patch("/{class_id}")
async def update_class(
    class_id: int,
    body: ClassUpdate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Update class fields."""
    provided = body.model_dump(exclude_unset=True)
    if not provided:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    changed_fields = {"stream_id"} if "streamId" in provided else set()

    def perform(klass: Class) -> Class:
        if body.className is not None:
            klass.class_name = body.className.strip()
        if body.totalStudents is not None:
            klass.total_students = body.totalStudents
        if body.streamId is not None and body.streamId != klass.stream_id:
            if db.get(Stream, body.streamId) is None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Stream not found")
            if klass.course_links:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Unlink the class's courses before moving it to another stream"
                )
            klass.stream_id = body.streamId
        return klass

    klass = guard(
        db, identity, Action.UPDATE, ResourceType.CLASS, class_id, perform,
        changed_fields=changed_fields, timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return class_to_dict(klass)


@router.delete("/{class_id}")
async def delete_class(
    class_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Delete a class that has no reports."""
    def perform(klass: Class) -> None:
        if db.query(Report).filter(Report.class_id == klass.class_id).first() is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete class with existing reports"
            )
        db.delete(klass)

    guard(
        db, identity, Action.DELETE, ResourceType.CLASS, class_id, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return {"message": "Class deleted successfully"}


@router.post("/{class_id}/courses", status_code=status.HTTP_201_CREATED)
async def add_course_to_class(
    class_id: int,
    body: ClassCourseLink,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Link a course of the same stream to the class."""
    def perform(klass: Class) -> Class:
        course = db.get(Course, body.courseId)
        if course is None or course.stream_id != klass.stream_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Course not found in the class's stream"
            )
        if db.get(ClassCourse, (klass.class_id, course.course_id)) is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Course already assigned to this class"
            )
        db.add(ClassCourse(class_id=klass.class_id, course_id=course.course_id))
        return klass

    klass = guard(
        db, identity, Action.UPDATE, ResourceType.CLASS, class_id, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS, details={"addCourseId": body.courseId},
    )
    return class_to_dict(klass, include_courses=True)


@router.delete("/{class_id}/courses/{course_id}")
async def remove_course_from_class(
    class_id: int,
    course_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Unlink a course from the class."""
    def perform(klass: Class) -> None:
        link = db.get(ClassCourse, (klass.class_id, course_id))
        if link is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Course is not assigned to this class"
            )
        db.delete(link)

    guard(
        db, identity, Action.UPDATE, ResourceType.CLASS, class_id, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS, details={"removeCourseId": course_id},
    )
    return {"message": "Course removed from class successfully"}
