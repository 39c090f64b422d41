"""
Role dashboards: one summary endpoint per role, each built from the
caller's scoped queries.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import func

from database.models import (
    Stream, User, UserRole, Course, Class, ClassCourse, Report, ReportFeedback, ReportStatus
)
from auth.dependencies import get_db_session, get_identity, require_role
from policy.identity import Identity
from policy.resources import ResourceType
from policy.scoper import Op, Predicate, scoped_query, load_visible
from routers.classes import class_to_dict
from routers.courses import course_to_dict
from routers.reports import with_feedback_counts
from routers.streams import stream_to_dict
from routers.users import user_to_dict


router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

_ATTENDANCE_RATE = Report.actual_students_present * 100.0 / func.nullif(Report.total_registered_students, 0)


def _rate(value):
    return round(float(value), 2) if value is not None else None


def _status_counts(reports) -> dict:
    by_status = {s.value: 0 for s in ReportStatus}
    for report_status, count in reports.with_entities(Report.status, func.count(Report.report_id)).group_by(Report.status).all():
        by_status[report_status.value if isinstance(report_status, ReportStatus) else report_status] = count
    return by_status


def _recent(db: Session, reports, limit: int, order=None) -> list:
    if order is None:
        order = Report.date_of_lecture.desc()
    return with_feedback_counts(db, reports.order_by(order, Report.report_id.desc()).limit(limit).all())


def _student_dashboard(identity: Identity, db: Session) -> dict:
    student = load_visible(db, identity, ResourceType.USER, identity.user_id)
    classes = scoped_query(db, identity, ResourceType.CLASS).order_by(Class.class_name).all()
    courses = scoped_query(db, identity, ResourceType.COURSE).order_by(Course.course_code).all()
    recent = _recent(db, scoped_query(db, identity, ResourceType.REPORT), 10)
    return {
        "student": user_to_dict(student),
        "classes": [class_to_dict(k) for k in classes],
        "courses": [course_to_dict(c) for c in courses],
        "recentReports": recent,
        "stats": {
            "totalCourses": len(courses),
            "totalClasses": len(classes),
            "recentReportsCount": len(recent),
        },
    }


def _lecturer_dashboard(identity: Identity, db: Session) -> dict:
    courses = (
        scoped_query(db, identity, ResourceType.COURSE, [Predicate("courses.lecturer_id", Op.EQ, identity.user_id)])
        .order_by(Course.course_code)
        .all()
    )
    course_ids = [c.course_id for c in courses]
    classes = []
    if course_ids:
        classes = (
            scoped_query(db, identity, ResourceType.CLASS)
            .join(ClassCourse, ClassCourse.class_id == Class.class_id)
            .filter(ClassCourse.course_id.in_(course_ids))
            .distinct()
            .order_by(Class.class_name)
            .all()
        )

    # Scoped to the lecturer's own reports
    reports = scoped_query(db, identity, ResourceType.REPORT)
    by_status = _status_counts(reports)
    avg_rate, min_rate, max_rate = reports.with_entities(
        func.avg(_ATTENDANCE_RATE), func.min(_ATTENDANCE_RATE), func.max(_ATTENDANCE_RATE)
    ).one()

    return {
        "courses": [course_to_dict(c) for c in courses],
        "classes": [class_to_dict(k) for k in classes],
        "recentReports": _recent(db, reports, 10),
        "stats": {
            "totalCourses": len(courses),
            "totalClasses": len(classes),
            "totalReports": sum(by_status.values()),
            "byStatus": by_status,
            "avgAttendanceRate": _rate(avg_rate),
            "minAttendanceRate": _rate(min_rate),
            "maxAttendanceRate": _rate(max_rate),
        },
    }


def _principal_lecturer_dashboard(identity: Identity, db: Session) -> dict:
    if not identity.has_stream:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Principal lecturer must be assigned to a stream"
        )
    stream = load_visible(db, identity, ResourceType.STREAM, identity.stream_id)
    courses = scoped_query(db, identity, ResourceType.COURSE).order_by(Course.course_code).all()
    lecturers = (
        scoped_query(db, identity, ResourceType.USER, [Predicate("users.role", Op.EQ, UserRole.LECTURER.value)])
        .order_by(User.full_name)
        .all()
    )
    classes = scoped_query(db, identity, ResourceType.CLASS).order_by(Class.class_name).all()

    reports = scoped_query(db, identity, ResourceType.REPORT)
    pending = _recent(
        db,
        scoped_query(db, identity, ResourceType.REPORT, [Predicate("reports.status", Op.EQ, ReportStatus.PENDING.value)]),
        20,
    )
    my_feedback = scoped_query(
        db, identity, ResourceType.FEEDBACK, [Predicate("report_feedback.prl_id", Op.EQ, identity.user_id)]
    ).count()
    by_status = _status_counts(reports)
    avg_rate = reports.with_entities(func.avg(_ATTENDANCE_RATE)).scalar()

    return {
        "stream": stream_to_dict(stream),
        "courses": [course_to_dict(c) for c in courses],
        "lecturers": [{"id": u.user_id, "fullName": u.full_name, "email": u.email} for u in lecturers],
        "classes": [class_to_dict(k) for k in classes],
        "pendingReports": pending,
        "stats": {
            "totalCourses": len(courses),
            "totalLecturers": len(lecturers),
            "totalClasses": len(classes),
            "myFeedbackCount": my_feedback,
            "totalReports": sum(by_status.values()),
            "byStatus": by_status,
            "avgAttendance": _rate(avg_rate),
        },
    }


def _program_leader_dashboard(identity: Identity, db: Session) -> dict:
    streams = scoped_query(db, identity, ResourceType.STREAM).order_by(Stream.stream_code).all()

    def per_stream(resource_type, model, filters=()):
        query = scoped_query(db, identity, resource_type, filters)
        return dict(query.with_entities(model.stream_id, func.count()).group_by(model.stream_id).all())

    course_counts = per_stream(ResourceType.COURSE, Course)
    class_counts = per_stream(ResourceType.CLASS, Class)
    lecturer_counts = per_stream(ResourceType.USER, User, [Predicate("users.role", Op.EQ, UserRole.LECTURER.value)])
    prl_counts = per_stream(
        ResourceType.USER, User, [Predicate("users.role", Op.EQ, UserRole.PRINCIPAL_LECTURER.value)]
    )

    reports = scoped_query(db, identity, ResourceType.REPORT)
    report_counts = dict(
        reports.with_entities(Course.stream_id, func.count(Report.report_id)).group_by(Course.stream_id).all()
    )

    users_by_role = {r.value: 0 for r in UserRole}
    for role, count in scoped_query(db, identity, ResourceType.USER).with_entities(User.role, func.count(User.user_id)).group_by(User.role).all():
        users_by_role[role.value if isinstance(role, UserRole) else role] = count

    by_status = _status_counts(reports)
    avg_rate = reports.with_entities(func.avg(_ATTENDANCE_RATE)).scalar()
    total_feedback, avg_rating = scoped_query(db, identity, ResourceType.FEEDBACK).with_entities(
        func.count(ReportFeedback.feedback_id), func.avg(ReportFeedback.rating)
    ).one()

    return {
        "streams": [
            dict(
                stream_to_dict(s),
                courseCount=course_counts.get(s.stream_id, 0),
                classCount=class_counts.get(s.stream_id, 0),
                lecturerCount=lecturer_counts.get(s.stream_id, 0),
                prlCount=prl_counts.get(s.stream_id, 0),
                reportCount=report_counts.get(s.stream_id, 0),
            )
            for s in streams
        ],
        "recentReports": _recent(db, reports, 20, Report.created_at.desc()),
        "stats": {
            "totalStreams": len(streams),
            "totalCourses": sum(course_counts.values()),
            "totalClasses": sum(class_counts.values()),
            "usersByRole": users_by_role,
            "totalReports": sum(by_status.values()),
            "byStatus": by_status,
            "avgAttendance": _rate(avg_rate),
            "totalFeedback": total_feedback,
            "avgRating": _rate(avg_rating),
        },
    }


_DASHBOARDS = {
    UserRole.STUDENT: _student_dashboard,
    UserRole.LECTURER: _lecturer_dashboard,
    UserRole.PRINCIPAL_LECTURER: _principal_lecturer_dashboard,
    UserRole.PROGRAM_LEADER: _program_leader_dashboard,
}


@router.get("")
async def my_dashboard(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Dashboard of the caller's role."""
    dashboard = _DASHBOARDS.get(identity.role)
    if dashboard is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No dashboard for this role"
        )
    return dashboard(identity, db)


@router.get("/student")
async def student_dashboard(
    identity: Identity = Depends(require_role([UserRole.STUDENT.value])),
    db: Session = Depends(get_db_session)
):
    """Classes, courses and recent reports of the student's stream."""
    return _student_dashboard(identity, db)


@router.get("/lecturer")
async def lecturer_dashboard(
    identity: Identity = Depends(require_role([UserRole.LECTURER.value])),
    db: Session = Depends(get_db_session)
):
    """The lecturer's courses, classes, recent reports and attendance figures."""
    return _lecturer_dashboard(identity, db)


@router.get("/principal-lecturer")
async def principal_lecturer_dashboard(
    identity: Identity = Depends(require_role([UserRole.PRINCIPAL_LECTURER.value])),
    db: Session = Depends(get_db_session)
):
    """Stream overview with the reports still waiting for review."""
    return _principal_lecturer_dashboard(identity, db)


@router.get("/program-leader")
async def program_leader_dashboard(
    identity: Identity = Depends(require_role([UserRole.PROGRAM_LEADER.value])),
    db: Session = Depends(get_db_session)
):
    """Faculty-wide counts per stream, recent reports and feedback figures."""
    return _program_leader_dashboard(identity, db)
