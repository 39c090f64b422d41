"""
Database models for the lecture reporting system.
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Text,
    ForeignKey, JSON, Index, TypeDecorator, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()


# ============================================================================
# Custom Type Decorator for Enum Values
# ============================================================================

class EnumValue(TypeDecorator):
    """Type decorator to ensure enum values (not names) are stored."""
    impl = String
    cache_ok = True

    def __init__(self, enum_class, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        """Convert enum to its value when writing to database."""
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            return value.value
        return value

    def process_result_value(self, value, dialect):
        """Convert database value back to enum when reading."""
        if value is None:
            return None
        if isinstance(value, str):
            try:
                return self.enum_class(value)
            except ValueError:
                return value
        return value


# ============================================================================
# Enums
# ============================================================================

class UserRole(str, enum.Enum):
    """User roles for authorization."""
    STUDENT = "student"
    LECTURER = "lecturer"
    PRINCIPAL_LECTURER = "principal_lecturer"
    PROGRAM_LEADER = "program_leader"


# Roles that must always carry a stream
STREAM_SCOPED_ROLES = frozenset({UserRole.STUDENT, UserRole.LECTURER, UserRole.PRINCIPAL_LECTURER})


class ReportStatus(str, enum.Enum):
    """Lecture report lifecycle status."""
    PENDING = "pending"
    REVIEWED = "reviewed"
    APPROVED = "approved"


# ============================================================================
# Models
# ============================================================================

class Stream(Base):
    """Academic stream (program/department) scoping courses, classes and users."""
    __tablename__ = "streams"

    stream_id = Column(Integer, primary_key=True, index=True)
    stream_name = Column(String(255), unique=True, nullable=False)
    stream_code = Column(String(50), unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    users = relationship("User", back_populates="stream")
    courses = relationship("Course", back_populates="stream")
    classes = relationship("Class", back_populates="stream")

    __table_args__ = (
        Index('idx_stream_code', 'stream_code'),
    )


class User(Base):
    """User model for authentication and authorization."""
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(EnumValue(UserRole), nullable=False)
    # Required for every role except program_leader
    stream_id = Column(Integer, ForeignKey("streams.stream_id", ondelete="RESTRICT"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    stream = relationship("Stream", back_populates="users")
    courses = relationship("Course", back_populates="lecturer")
    reports = relationship("Report", back_populates="lecturer", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_user_stream', 'stream_id'),
        Index('idx_user_role', 'role'),
    )


class Course(Base):
    """Course owned by a stream, optionally assigned to one lecturer."""
    __tablename__ = "courses"

    course_id = Column(Integer, primary_key=True, index=True)
    course_name = Column(String(255), nullable=False)
    course_code = Column(String(50), unique=True, nullable=False)
    stream_id = Column(Integer, ForeignKey("streams.stream_id", ondelete="RESTRICT"), nullable=False)
    lecturer_id = Column(Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    stream = relationship("Stream", back_populates="courses")
    lecturer = relationship("User", back_populates="courses")
    reports = relationship("Report", back_populates="course")
    class_links = relationship("ClassCourse", back_populates="course", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_course_stream', 'stream_id'),
        Index('idx_course_lecturer', 'lecturer_id'),
    )


class Class(Base):
    """Student class (cohort) owned by a stream."""
    __tablename__ = "classes"

    class_id = Column(Integer, primary_key=True, index=True)
    class_name = Column(String(100), nullable=False)
    stream_id = Column(Integer, ForeignKey("streams.stream_id", ondelete="RESTRICT"), nullable=False)
    total_students = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    stream = relationship("Stream", back_populates="classes")
    course_links = relationship("ClassCourse", back_populates="klass", cascade="all, delete-orphan")
    reports = relationship("Report", back_populates="klass")

    __table_args__ = (
        Index('idx_class_stream', 'stream_id'),
    )


class ClassCourse(Base):
    """Join table between classes and courses."""
    __tablename__ = "class_courses"

    class_id = Column(Integer, ForeignKey("classes.class_id", ondelete="CASCADE"), primary_key=True)
    course_id = Column(Integer, ForeignKey("courses.course_id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    klass = relationship("Class", back_populates="course_links")
    course = relationship("Course", back_populates="class_links")


class Report(Base):
    """Lecture report written by the lecturer who delivered the lecture."""
    __tablename__ = "reports"

    report_id = Column(Integer, primary_key=True, index=True)
    lecturer_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.course_id", ondelete="RESTRICT"), nullable=False)
    class_id = Column(Integer, ForeignKey("classes.class_id", ondelete="RESTRICT"), nullable=False)
    week_of_reporting = Column(Integer, nullable=False)
    date_of_lecture = Column(Date, nullable=False)
    venue = Column(String(255), nullable=False)
    scheduled_time = Column(String(20), nullable=False)  # e.g. "08:30"
    topic_taught = Column(Text, nullable=False)
    learning_outcomes = Column(Text, nullable=False)
    actual_students_present = Column(Integer, nullable=False)
    total_registered_students = Column(Integer, nullable=False)
    recommendations = Column(Text, nullable=True)
    status = Column(EnumValue(ReportStatus), default=ReportStatus.PENDING, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    lecturer = relationship("User", back_populates="reports")
    course = relationship("Course", back_populates="reports")
    klass = relationship("Class", back_populates="reports")
    feedback = relationship(
        "ReportFeedback", back_populates="report",
        cascade="all, delete-orphan", order_by="ReportFeedback.created_at.desc()"
    )

    __table_args__ = (
        Index('idx_report_lecturer', 'lecturer_id'),
        Index('idx_report_course', 'course_id'),
        Index('idx_report_class', 'class_id'),
        Index('idx_report_status', 'status'),
        Index('idx_report_date', 'date_of_lecture'),
    )


class ReportFeedback(Base):
    """Principal lecturer feedback on a report. Append-only."""
    __tablename__ = "report_feedback"

    feedback_id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("reports.report_id", ondelete="CASCADE"), nullable=False)
    prl_id = Column(Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    feedback_text = Column(Text, nullable=False)
    rating = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    report = relationship("Report", back_populates="feedback")
    author = relationship("User")

    __table_args__ = (
        CheckConstraint('rating IS NULL OR (rating >= 1 AND rating <= 5)', name='ck_feedback_rating'),
        Index('idx_feedback_report', 'report_id'),
        Index('idx_feedback_prl', 'prl_id'),
    )


class AuditLog(Base):
    """Audit log for guarded mutations."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)  # e.g. "report_update", "user_login"
    resource_type = Column(String(50), nullable=True)  # e.g. "report", "course"
    resource_id = Column(String(100), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    user_agent = Column(String(500), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_user', 'user_id'),
        Index('idx_audit_action', 'action'),
        Index('idx_audit_created', 'created_at'),
    )


def column_for(qualified_name: str):
    """Resolve a "table.column" name to its Column object."""
    table_name, _, column_name = qualified_name.partition(".")
    table = Base.metadata.tables.get(table_name)
    if table is None or column_name not in table.c:
        raise KeyError(f"Unknown column: {qualified_name}")
    return table.c[column_name]
