"""
Lecture report APIs.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import func
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date

from database.models import (
    Report, ReportFeedback, ReportStatus, Course, Class, Stream
)
from auth.dependencies import get_db_session, get_identity, require_reviewer
from policy.identity import Identity
from policy.evaluator import Action
from policy.resources import ResourceType
from policy.scoper import Op, Predicate, scoped_query, load_visible
from policy.guard import guard
from policy.lifecycle import require_transition, status_after_feedback
from core.logger import logger
import config


router = APIRouter(prefix="/api/reports", tags=["reports"])


# Request/Response Models
class ReportCreate(BaseModel):
    """Create report request."""
    courseId: int
    classId: int
    weekOfReporting: int = Field(..., ge=1, le=52)
    dateOfLecture: date
    venue: str = Field(..., min_length=1, max_length=255)
    scheduledTime: str = Field(..., min_length=1, max_length=20)
    topicTaught: str = Field(..., min_length=1)
    learningOutcomes: str = Field(..., min_length=1)
    actualStudentsPresent: int = Field(..., ge=0)
    totalRegisteredStudents: int = Field(..., ge=1)
    recommendations: Optional[str] = None


class ReportUpdate(BaseModel):
    """Update report request. Only provided fields change."""
    weekOfReporting: Optional[int] = Field(None, ge=1, le=52)
    dateOfLecture: Optional[date] = None
    venue: Optional[str] = Field(None, min_length=1, max_length=255)
    scheduledTime: Optional[str] = Field(None, min_length=1, max_length=20)
    topicTaught: Optional[str] = Field(None, min_length=1)
    learningOutcomes: Optional[str] = Field(None, min_length=1)
    actualStudentsPresent: Optional[int] = Field(None, ge=0)
    totalRegisteredStudents: Optional[int] = Field(None, ge=1)
    recommendations: Optional[str] = None


class FeedbackCreate(BaseModel):
    """Principal lecturer feedback request."""
    feedbackText: str = Field(..., min_length=1)
    rating: Optional[int] = Field(None, ge=1, le=5)


class ReportStatusUpdate(BaseModel):
    """Update report status request."""
    status: str  # reviewed | approved


class ReportListResponse(BaseModel):
    """Report list response."""
    data: List[dict]
    total: int
    page: int
    limit: int


# Request field -> model column
_UPDATABLE_FIELDS = {
    "weekOfReporting": "week_of_reporting",
    "dateOfLecture": "date_of_lecture",
    "venue": "venue",
    "scheduledTime": "scheduled_time",
    "topicTaught": "topic_taught",
    "learningOutcomes": "learning_outcomes",
    "actualStudentsPresent": "actual_students_present",
    "totalRegisteredStudents": "total_registered_students",
    "recommendations": "recommendations",
}


def _feedback_to_dict(feedback: ReportFeedback) -> dict:
    return {
        "id": feedback.feedback_id,
        "reportId": feedback.report_id,
        "prlId": feedback.prl_id,
        "prlName": feedback.author.full_name if feedback.author else None,
        "feedbackText": feedback.feedback_text,
        "rating": feedback.rating,
        "createdAt": feedback.created_at.isoformat() if feedback.created_at else None,
    }


def _report_to_dict(report: Report, include_feedback: bool = False) -> dict:
    course = report.course
    klass = report.klass
    data = {
        "id": report.report_id,
        "lecturerId": report.lecturer_id,
        "lecturerName": report.lecturer.full_name if report.lecturer else None,
        "courseId": report.course_id,
        "courseName": course.course_name if course else None,
        "courseCode": course.course_code if course else None,
        "streamId": course.stream_id if course else None,
        "classId": report.class_id,
        "className": klass.class_name if klass else None,
        "weekOfReporting": report.week_of_reporting,
        "dateOfLecture": report.date_of_lecture.isoformat() if report.date_of_lecture else None,
        "venue": report.venue,
        "scheduledTime": report.scheduled_time,
        "topicTaught": report.topic_taught,
        "learningOutcomes": report.learning_outcomes,
        "actualStudentsPresent": report.actual_students_present,
        "totalRegisteredStudents": report.total_registered_students,
        "recommendations": report.recommendations,
        "status": report.status.value if isinstance(report.status, ReportStatus) else report.status,
        "createdAt": report.created_at.isoformat() if report.created_at else None,
        "updatedAt": report.updated_at.isoformat() if report.updated_at else None,
    }
    if include_feedback:
        data["feedback"] = [_feedback_to_dict(f) for f in report.feedback]
    return data


def _parse_status(value: str) -> ReportStatus:
    try:
        return ReportStatus(value.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status: {value}"
        )


@router.get("", response_model=ReportListResponse)
async def list_reports(
    stream_id: Optional[int] = Query(None, alias="stream"),
    course_id: Optional[int] = Query(None, alias="course"),
    class_id: Optional[int] = Query(None, alias="class"),
    status_filter: Optional[str] = Query(None, alias="status"),
    week: Optional[int] = Query(None, ge=1),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """
    List reports visible to the caller.

    Students see their stream, lecturers their own reports, principal
    lecturers their stream and program leaders everything.
    """
    filters = []
    if stream_id is not None:
        filters.append(Predicate("courses.stream_id", Op.EQ, stream_id))
    if course_id is not None:
        filters.append(Predicate("reports.course_id", Op.EQ, course_id))
    if class_id is not None:
        filters.append(Predicate("reports.class_id", Op.EQ, class_id))
    if status_filter:
        filters.append(Predicate("reports.status", Op.EQ, _parse_status(status_filter).value))
    if week is not None:
        filters.append(Predicate("reports.week_of_reporting", Op.EQ, week))
    if search:
        filters.append(Predicate("reports.topic_taught", Op.ILIKE, f"%{search}%"))

    query = scoped_query(db, identity, ResourceType.REPORT, filters)
    total = query.count()
    offset = (page - 1) * limit
    reports = query.order_by(Report.date_of_lecture.desc(), Report.report_id.desc()).offset(offset).limit(limit).all()

    return {
        "data": [_report_to_dict(r) for r in reports],
        "total": total,
        "page": page,
        "limit": limit
    }


@router.get("/recent")
async def recent_reports(
    limit: int = Query(config.RECENT_REPORTS_DEFAULT_LIMIT, ge=1, le=config.RECENT_REPORTS_MAX_LIMIT),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Most recently submitted reports visible to the caller."""
    reports = (
        scoped_query(db, identity, ResourceType.REPORT)
        .order_by(Report.created_at.desc(), Report.report_id.desc())
        .limit(limit)
        .all()
    )
    return {"data": [_report_to_dict(r) for r in reports]}


@router.get("/statistics/overview")
async def report_statistics(
    identity: Identity = Depends(require_reviewer),
    db: Session = Depends(get_db_session)
):
    """Report counts by status, average attendance and per-stream totals."""
    query = scoped_query(db, identity, ResourceType.REPORT)

    by_status = {s.value: 0 for s in ReportStatus}
    for report_status, count in query.with_entities(Report.status, func.count(Report.report_id)).group_by(Report.status).all():
        key = report_status.value if isinstance(report_status, ReportStatus) else report_status
        by_status[key] = count

    avg_attendance = query.with_entities(
        func.avg(
            Report.actual_students_present * 100.0 / func.nullif(Report.total_registered_students, 0)
        )
    ).scalar()

    by_stream = [
        {"streamId": stream_id, "streamName": stream_name, "total": count}
        for stream_id, stream_name, count in query
        .join(Stream, Stream.stream_id == Course.stream_id)
        .with_entities(Stream.stream_id, Stream.stream_name, func.count(Report.report_id))
        .group_by(Stream.stream_id, Stream.stream_name)
        .order_by(Stream.stream_name)
        .all()
    ]

    return {
        "totalReports": sum(by_status.values()),
        "byStatus": by_status,
        "averageAttendance": round(float(avg_attendance), 2) if avg_attendance is not None else None,
        "byStream": by_stream,
    }


def with_feedback_counts(db: Session, reports: List[Report]) -> List[dict]:
    ids = [r.report_id for r in reports]
    counts = {}
    if ids:
        counts = dict(
            db.query(ReportFeedback.report_id, func.count(ReportFeedback.feedback_id))
            .filter(ReportFeedback.report_id.in_(ids))
            .group_by(ReportFeedback.report_id)
            .all()
        )
    data = []
    for report in reports:
        item = _report_to_dict(report)
        item["feedbackCount"] = counts.get(report.report_id, 0)
        data.append(item)
    return data


@router.get("/my/reports")
async def my_reports(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """
    Every report the caller works with: a lecturer's own reports, a
    principal lecturer's stream, everything for a program leader.
    """
    reports = (
        scoped_query(db, identity, ResourceType.REPORT)
        .order_by(Report.date_of_lecture.desc(), Report.report_id.desc())
        .all()
    )
    return {"data": with_feedback_counts(db, reports)}


@router.get("/stream/{stream_id}")
async def stream_reports(
    stream_id: int,
    identity: Identity = Depends(require_reviewer),
    db: Session = Depends(get_db_session)
):
    """Reports of one stream. Principal lecturers may only ask for their own."""
    load_visible(db, identity, ResourceType.STREAM, stream_id)
    reports = (
        scoped_query(db, identity, ResourceType.REPORT, [Predicate("courses.stream_id", Op.EQ, stream_id)])
        .order_by(Report.date_of_lecture.desc(), Report.report_id.desc())
        .all()
    )
    return {"streamId": stream_id, "data": with_feedback_counts(db, reports)}


@router.get("/{report_id}")
async def get_report(
    report_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Get one report with its feedback."""
    report = load_visible(db, identity, ResourceType.REPORT, report_id)
    return _report_to_dict(report, include_feedback=True)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_report(
    body: ReportCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """
    Submit a lecture report.

    Only the lecturer assigned to the course may report on it, and the
    class must belong to the course's stream.
    """
    if body.actualStudentsPresent > body.totalRegisteredStudents:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Students present cannot exceed registered students"
        )

    def perform(course: Course) -> Report:
        klass = db.get(Class, body.classId)
        if klass is None or klass.stream_id != course.stream_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Class not found in the course's stream"
            )
        report = Report(
            lecturer_id=identity.user_id,
            course_id=course.course_id,
            class_id=klass.class_id,
            week_of_reporting=body.weekOfReporting,
            date_of_lecture=body.dateOfLecture,
            venue=body.venue.strip(),
            scheduled_time=body.scheduledTime.strip(),
            topic_taught=body.topicTaught.strip(),
            learning_outcomes=body.learningOutcomes.strip(),
            actual_students_present=body.actualStudentsPresent,
            total_registered_students=body.totalRegisteredStudents,
            recommendations=body.recommendations,
            status=ReportStatus.PENDING,
        )
        db.add(report)
        return report

    report = guard(
        db, identity, Action.CREATE, ResourceType.REPORT, body.courseId, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    logger.info(f"Report {report.report_id} submitted by lecturer {identity.user_id}")
    return _report_to_dict(report)


@router.patch("/{report_id}")
async def update_report(
    report_id: int,
    body: ReportUpdate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Edit a report. Lecturers may only edit their own pending reports."""
    changes = {
        _UPDATABLE_FIELDS[name]: value
        for name, value in body.model_dump(exclude_unset=True).items()
        if name in _UPDATABLE_FIELDS
    }
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update"
        )

    def perform(report: Report) -> Report:
        for column, value in changes.items():
            if value is None and column != "recommendations":
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"{column} cannot be null"
                )
            setattr(report, column, value)
        if report.actual_students_present > report.total_registered_students:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Students present cannot exceed registered students"
            )
        return report

    report = guard(
        db, identity, Action.UPDATE, ResourceType.REPORT, report_id, perform,
        changed_fields=changes.keys(), timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return _report_to_dict(report)


@router.delete("/{report_id}")
async def delete_report(
    report_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Delete a report. Lecturers may only delete their own pending reports."""
    guard(
        db, identity, Action.DELETE, ResourceType.REPORT, report_id, db.delete,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return {"message": "Report deleted successfully"}


@router.post("/{report_id}/feedback", status_code=status.HTTP_201_CREATED)
async def add_feedback(
    report_id: int,
    body: FeedbackCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Add principal lecturer feedback. A pending report becomes reviewed."""
    feedback_text = body.feedbackText.strip()
    if not feedback_text:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Feedback text is required"
        )

    def perform(report: Report) -> ReportFeedback:
        feedback = ReportFeedback(
            report_id=report.report_id,
            prl_id=identity.user_id,
            feedback_text=feedback_text,
            rating=body.rating,
        )
        db.add(feedback)
        report.status = status_after_feedback(report.status)
        return feedback

    feedback = guard(
        db, identity, Action.CREATE, ResourceType.FEEDBACK, report_id, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    report = feedback.report
    return {
        "feedback": _feedback_to_dict(feedback),
        "reportStatus": report.status.value if report else None,
    }


@router.patch("/{report_id}/status")
async def update_report_status(
    report_id: int,
    body: ReportStatusUpdate,
    identity: Identity = Depends(require_reviewer),
    db: Session = Depends(get_db_session)
):
    """Move a report forward in its lifecycle (reviewed or approved)."""
    target = _parse_status(body.status)

    def perform(report: Report) -> Report:
        require_transition(report.status, target)
        report.status = target
        return report

    report = guard(
        db, identity, Action.REVIEW, ResourceType.REPORT, report_id, perform,
        changed_fields={"status"}, timeout_ms=config.GUARD_TIMEOUT_MS,
        details={"status": target.value},
    )
    return _report_to_dict(report)
