"""
Stream (academic program) APIs.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import func
from pydantic import BaseModel, Field
from typing import Optional

from database.models import Stream, Course, Class, User, Report, ReportFeedback, ReportStatus
from auth.dependencies import get_db_session, get_identity
from policy.identity import Identity
from policy.evaluator import Action
from policy.resources import ResourceType
from policy.scoper import Op, Predicate, scoped_query, load_visible
from policy.guard import guard
import config


router = APIRouter(prefix="/api/streams", tags=["streams"])


class StreamCreate(BaseModel):
    """Create stream request."""
    streamName: str = Field(..., min_length=1, max_length=255)
    streamCode: str = Field(..., min_length=1, max_length=50)


class StreamUpdate(BaseModel):
    """Update stream request."""
    streamName: Optional[str] = Field(None, min_length=1, max_length=255)
    streamCode: Optional[str] = Field(None, min_length=1, max_length=50)


def stream_to_dict(stream: Stream) -> dict:
    return {
        "id": stream.stream_id,
        "streamName": stream.stream_name,
        "streamCode": stream.stream_code,
        "createdAt": stream.created_at.isoformat() if stream.created_at else None,
        "updatedAt": stream.updated_at.isoformat() if stream.updated_at else None,
    }


def _check_unique(db: Session, name: Optional[str], code: Optional[str], exclude_id: Optional[int] = None) -> None:
    query = db.query(Stream)
    if exclude_id is not None:
        query = query.filter(Stream.stream_id != exclude_id)
    if name is not None and query.filter(func.lower(Stream.stream_name) == name.lower()).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Stream name already exists")
    if code is not None and query.filter(func.upper(Stream.stream_code) == code.upper()).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Stream code already exists")


@router.get("/public")
async def list_public_streams(db: Session = Depends(get_db_session)):
    """Stream names and codes for the registration form. No authentication."""
    streams = db.query(Stream).order_by(Stream.stream_name).all()
    return {
        "data": [
            {"id": s.stream_id, "streamName": s.stream_name, "streamCode": s.stream_code}
            for s in streams
        ]
    }


@router.get("")
async def list_streams(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Streams visible to the caller with their course counts."""
    streams = scoped_query(db, identity, ResourceType.STREAM).order_by(Stream.stream_name).all()
    course_counts = dict(
        db.query(Course.stream_id, func.count(Course.course_id))
        .filter(Course.stream_id.in_([s.stream_id for s in streams]))
        .group_by(Course.stream_id)
        .all()
    ) if streams else {}
    data = []
    for stream in streams:
        item = stream_to_dict(stream)
        item["courseCount"] = course_counts.get(stream.stream_id, 0)
        data.append(item)
    return {"data": data}


@router.get("/{stream_id}")
async def get_stream(
    stream_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Stream details with the courses and classes the caller may see."""
    stream = load_visible(db, identity, ResourceType.STREAM, stream_id)
    in_stream = [Predicate("courses.stream_id", Op.EQ, stream_id)]

    courses = scoped_query(db, identity, ResourceType.COURSE, in_stream).order_by(Course.course_code).all()
    classes = scoped_query(
        db, identity, ResourceType.CLASS, [Predicate("classes.stream_id", Op.EQ, stream_id)]
    ).order_by(Class.class_name).all()

    lecturers = {}
    for course in courses:
        if course.lecturer is not None:
            lecturers[course.lecturer.user_id] = {
                "id": course.lecturer.user_id,
                "fullName": course.lecturer.full_name,
                "email": course.lecturer.email,
            }

    return {
        "stream": stream_to_dict(stream),
        "courses": [
            {
                "id": c.course_id,
                "courseName": c.course_name,
                "courseCode": c.course_code,
                "lecturerId": c.lecturer_id,
                "lecturerName": c.lecturer.full_name if c.lecturer else None,
            }
            for c in courses
        ],
        "classes": [
            {"id": k.class_id, "className": k.class_name, "totalStudents": k.total_students}
            for k in classes
        ],
        "lecturers": sorted(lecturers.values(), key=lambda l: l["fullName"]),
    }


@router.get("/{stream_id}/statistics")
async def get_stream_statistics(
    stream_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Report and attendance statistics for one stream, within the caller's visibility."""
    load_visible(db, identity, ResourceType.STREAM, stream_id)
    reports = scoped_query(db, identity, ResourceType.REPORT, [Predicate("courses.stream_id", Op.EQ, stream_id)])

    by_status = {s.value: 0 for s in ReportStatus}
    for report_status, count in reports.with_entities(Report.status, func.count(Report.report_id)).group_by(Report.status).all():
        by_status[report_status.value if isinstance(report_status, ReportStatus) else report_status] = count

    active_lecturers, active_courses, total_present, total_registered, avg_attendance = reports.with_entities(
        func.count(func.distinct(Report.lecturer_id)),
        func.count(func.distinct(Report.course_id)),
        func.sum(Report.actual_students_present),
        func.sum(Report.total_registered_students),
        func.avg(Report.actual_students_present * 100.0 / func.nullif(Report.total_registered_students, 0)),
    ).one()

    report_ids = [rid for (rid,) in reports.with_entities(Report.report_id).all()]
    average_rating = (
        db.query(func.avg(ReportFeedback.rating))
        .filter(ReportFeedback.report_id.in_(report_ids))
        .scalar()
    ) if report_ids else None

    return {
        "reportStatistics": {
            "totalReports": sum(by_status.values()),
            "byStatus": by_status,
            "averageRating": round(float(average_rating), 2) if average_rating is not None else None,
            "activeLecturers": active_lecturers,
            "activeCourses": active_courses,
        },
        "attendanceStatistics": {
            "averageAttendanceRate": round(float(avg_attendance), 2) if avg_attendance is not None else None,
            "totalPresent": int(total_present or 0),
            "totalRegistered": int(total_registered or 0),
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_stream(
    body: StreamCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Create stream. Program leader only."""
    name = body.streamName.strip()
    code = body.streamCode.strip().upper()

    def perform(_parent) -> Stream:
        _check_unique(db, name, code)
        stream = Stream(stream_name=name, stream_code=code)
        db.add(stream)
        return stream

    stream = guard(
        db, identity, Action.CREATE, ResourceType.STREAM, None, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return stream_to_dict(stream)


@router.patch("/{stream_id}")
async def update_stream(
    stream_id: int,
    body: StreamUpdate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Rename a stream or change its code. Program leader only."""
    if body.streamName is None and body.streamCode is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    name = body.streamName.strip() if body.streamName is not None else None
    code = body.streamCode.strip().upper() if body.streamCode is not None else None

    def perform(stream: Stream) -> Stream:
        _check_unique(db, name, code, exclude_id=stream.stream_id)
        if name is not None:
            stream.stream_name = name
        if code is not None:
            stream.stream_code = code
        return stream

    stream = guard(
        db, identity, Action.UPDATE, ResourceType.STREAM, stream_id, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return stream_to_dict(stream)


@router.delete("/{stream_id}")
async def delete_stream(
    stream_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Delete a stream. Refused while courses, classes or users still belong to it."""
    def perform(stream: Stream) -> None:
        for model, label in ((Course, "courses"), (Class, "classes"), (User, "users")):
            if db.query(model).filter(model.stream_id == stream.stream_id).first() is not None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Cannot delete stream with existing {label}"
                )
        db.delete(stream)

    guard(
        db, identity, Action.DELETE, ResourceType.STREAM, stream_id, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return {"message": "Stream deleted successfully"}
