"""
Shared fixtures: an in-memory database seeded with two streams, and a
TestClient wired to it.
"""
import os
from datetime import date
from types import SimpleNamespace

os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CREATE_TABLES_ON_STARTUP", "false")

import pytest
from fastapi.testclient import TestClient

import config
from database.connection import Database
from database.models import (
    Stream, User, UserRole, Course, Class, ClassCourse, Report, ReportStatus
)
from auth.security import create_access_token, get_password_hash
from policy.identity import Identity

PASSWORD = "secret#123"


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_tables()
    previous = config.db
    config.db = db
    yield db
    config.db = previous
    db.dispose()


def _user(name, role, stream_id, hashed):
    return User(
        full_name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        hashed_password=hashed,
        role=role,
        stream_id=stream_id,
        is_active=True,
    )


def _report(lecturer_id, course_id, class_id, week, status=ReportStatus.PENDING):
    return Report(
        lecturer_id=lecturer_id,
        course_id=course_id,
        class_id=class_id,
        week_of_reporting=week,
        date_of_lecture=date(2024, 3, week),
        venue="Hall 1",
        scheduled_time="08:30",
        topic_taught=f"Week {week} topic",
        learning_outcomes="Outcomes",
        actual_students_present=20,
        total_registered_students=25,
        status=status,
    )


def seed_data(database):
    """
    Stream 5 (IT) holds lecturers L1 and L2, principal lecturer P1, student S,
    course C1 taught by L1, class K1 and a pending report R1 by L1.
    Stream 6 (BM) holds lecturer L6, course C6, class K6 and report R6.
    PL is the program leader; NS is a principal lecturer with no stream.
    """
    # Low bcrypt cost keeps the fixture fast
    hashed = get_password_hash(PASSWORD, rounds=4)
    with database.get_session() as session:
        it = Stream(stream_id=5, stream_name="Information Technology", stream_code="IT")
        bm = Stream(stream_id=6, stream_name="Business Management", stream_code="BM")
        session.add_all([it, bm])
        session.flush()

        l1 = _user("Lecturer One", UserRole.LECTURER, 5, hashed)
        l2 = _user("Lecturer Two", UserRole.LECTURER, 5, hashed)
        p1 = _user("Principal One", UserRole.PRINCIPAL_LECTURER, 5, hashed)
        s = _user("Student One", UserRole.STUDENT, 5, hashed)
        l6 = _user("Lecturer Six", UserRole.LECTURER, 6, hashed)
        pl = _user("Program Leader", UserRole.PROGRAM_LEADER, None, hashed)
        ns = _user("Streamless Principal", UserRole.PRINCIPAL_LECTURER, None, hashed)
        session.add_all([l1, l2, p1, s, l6, pl, ns])
        session.flush()

        c1 = Course(course_name="Programming", course_code="IT101", stream_id=5, lecturer_id=l1.user_id)
        c6 = Course(course_name="Accounting", course_code="BM101", stream_id=6, lecturer_id=l6.user_id)
        k1 = Class(class_name="IT Year 1", stream_id=5, total_students=25)
        k6 = Class(class_name="BM Year 1", stream_id=6, total_students=30)
        session.add_all([c1, c6, k1, k6])
        session.flush()
        session.add_all([
            ClassCourse(class_id=k1.class_id, course_id=c1.course_id),
            ClassCourse(class_id=k6.class_id, course_id=c6.course_id),
        ])

        r1 = _report(l1.user_id, c1.course_id, k1.class_id, 1)
        r6 = _report(l6.user_id, c6.course_id, k6.class_id, 2)
        session.add_all([r1, r6])
        session.flush()

        ids = SimpleNamespace(
            it=5, bm=6,
            l1=l1.user_id, l2=l2.user_id, p1=p1.user_id, s=s.user_id,
            l6=l6.user_id, pl=pl.user_id, ns=ns.user_id,
            c1=c1.course_id, c6=c6.course_id,
            k1=k1.class_id, k6=k6.class_id,
            r1=r1.report_id, r6=r6.report_id,
        )
    return ids


@pytest.fixture
def seed(database):
    return seed_data(database)


def identities_for(seed):
    return SimpleNamespace(
        l1=Identity(seed.l1, UserRole.LECTURER, 5),
        l2=Identity(seed.l2, UserRole.LECTURER, 5),
        p1=Identity(seed.p1, UserRole.PRINCIPAL_LECTURER, 5),
        s=Identity(seed.s, UserRole.STUDENT, 5),
        l6=Identity(seed.l6, UserRole.LECTURER, 6),
        pl=Identity(seed.pl, UserRole.PROGRAM_LEADER, None),
        ns=Identity(seed.ns, UserRole.PRINCIPAL_LECTURER, None),
    )


@pytest.fixture
def identities(seed):
    return identities_for(seed)


@pytest.fixture
def client(seed):
    from app import app
    return TestClient(app)


@pytest.fixture
def auth_headers(seed):
    def headers_for(user_id):
        token = create_access_token({"sub": user_id})
        return {"Authorization": f"Bearer {token}"}
    return headers_for
