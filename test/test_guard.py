import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from database.models import AuditLog, Course, Report, ReportFeedback, ReportStatus, UserRole
from policy.errors import DatabaseUnavailable, Denied, InvalidStateTransition, NotFound
from policy.evaluator import Action
from policy.guard import guard, load_locked
from policy.identity import Identity
from policy.lifecycle import status_after_feedback
from policy.resources import ResourceType


def _set_venue(venue):
    def perform(report):
        report.venue = venue
        return report
    return perform


def _venue(database, report_id):
    with database.get_session() as session:
        return session.get(Report, report_id).venue


def test_owner_updates_pending_report(database, seed, identities):
    with database.get_session() as session:
        report = guard(
            session, identities.l1, Action.UPDATE, ResourceType.REPORT, seed.r1,
            _set_venue("Hall 2"), changed_fields={"venue"},
        )
        assert report.venue == "Hall 2"
    assert _venue(database, seed.r1) == "Hall 2"


def test_other_lecturer_is_not_owner(database, seed, identities):
    with database.get_session() as session:
        with pytest.raises(Denied) as exc_info:
            guard(
                session, identities.l2, Action.UPDATE, ResourceType.REPORT, seed.r1,
                _set_venue("Hall 9"), changed_fields={"venue"},
            )
    assert exc_info.value.reason == "not_owner"
    assert _venue(database, seed.r1) == "Hall 1"


def test_feedback_then_owner_edit_is_rejected(database, seed, identities):
    def add_feedback(report):
        feedback = ReportFeedback(report_id=report.report_id, prl_id=identities.p1.user_id, feedback_text="Good pacing")
        session.add(feedback)
        report.status = status_after_feedback(report.status)
        return feedback

    with database.get_session() as session:
        feedback = guard(session, identities.p1, Action.CREATE, ResourceType.FEEDBACK, seed.r1, add_feedback)
        assert feedback.feedback_id is not None
        assert session.get(Report, seed.r1).status is ReportStatus.REVIEWED

    with database.get_session() as session:
        with pytest.raises(InvalidStateTransition):
            guard(
                session, identities.l1, Action.UPDATE, ResourceType.REPORT, seed.r1,
                _set_venue("Hall 3"), changed_fields={"venue"},
            )
    assert _venue(database, seed.r1) == "Hall 1"


def test_cross_stream_target_is_not_found(database, seed, identities):
    with database.get_session() as session:
        with pytest.raises(NotFound):
            guard(session, identities.p1, Action.REVIEW, ResourceType.REPORT, seed.r6, lambda r: r)


def test_missing_target_is_not_found(database, seed, identities):
    with database.get_session() as session:
        with pytest.raises(NotFound):
            guard(session, identities.pl, Action.DELETE, ResourceType.REPORT, 9999, session.delete)


def test_missing_parent_is_not_found(database, seed, identities):
    with database.get_session() as session:
        with pytest.raises(NotFound) as exc_info:
            guard(session, identities.l1, Action.CREATE, ResourceType.REPORT, 9999, lambda course: None)
    assert exc_info.value.detail == "Course not found"


def test_failed_perform_rolls_back(database, seed, identities):
    def perform(report):
        report.venue = "Half written"
        raise RuntimeError("boom")

    with database.get_session() as session:
        with pytest.raises(RuntimeError):
            guard(session, identities.l1, Action.UPDATE, ResourceType.REPORT, seed.r1, perform)
    assert _venue(database, seed.r1) == "Hall 1"


def test_operational_error_becomes_database_unavailable(database, seed, identities):
    def perform(report):
        raise OperationalError("UPDATE reports", {}, Exception("canceling statement due to statement timeout"))

    with database.get_session() as session:
        with pytest.raises(DatabaseUnavailable) as exc_info:
            guard(session, identities.l1, Action.UPDATE, ResourceType.REPORT, seed.r1, perform)
    assert exc_info.value.status_code == 503


def test_successful_mutation_is_audited(database, seed, identities):
    with database.get_session() as session:
        guard(
            session, identities.pl, Action.UPDATE, ResourceType.REPORT, seed.r6,
            _set_venue("Annex"), details={"source": "test"},
        )

    with database.get_session() as session:
        entry = session.query(AuditLog).filter(AuditLog.action == "report_update").one()
        assert entry.user_id == identities.pl.user_id
        assert entry.resource_type == "report"
        assert entry.resource_id == str(seed.r6)
        assert entry.details == {"source": "test"}


def test_denied_mutation_is_not_audited(database, seed, identities):
    with database.get_session() as session:
        with pytest.raises(Denied):
            guard(session, identities.s, Action.DELETE, ResourceType.REPORT, seed.r1, session.delete)

    with database.get_session() as session:
        assert session.query(AuditLog).count() == 0
        assert session.get(Report, seed.r1) is not None


def test_program_leader_creates_stream_without_parent(database, seed, identities):
    from database.models import Stream

    def perform(_parent):
        stream = Stream(stream_name="Engineering", stream_code="ENG")
        session.add(stream)
        return stream

    with database.get_session() as session:
        stream = guard(session, identities.pl, Action.CREATE, ResourceType.STREAM, None, perform)
        assert stream.stream_id is not None
        entry = session.query(AuditLog).filter(AuditLog.action == "stream_create").one()
        assert entry.resource_id == str(stream.stream_id)


def test_locked_read_sees_course_moved_behind_the_session(database, seed, identities):
    with database.get_session() as session:
        # C1 stays in the identity map with its old stream
        stale = session.get(Course, seed.c1)
        assert stale.stream_id == seed.it
        session.execute(
            update(Course)
            .where(Course.course_id == seed.c1)
            .values(stream_id=seed.bm)
            .execution_options(synchronize_session=False)
        )
        with pytest.raises(NotFound):
            guard(session, identities.p1, Action.REVIEW, ResourceType.REPORT, seed.r1, lambda r: r)


def test_locked_feedback_read_refreshes_report_and_course(database, seed, identities):
    with database.get_session() as session:
        feedback = ReportFeedback(report_id=seed.r1, prl_id=identities.p1.user_id, feedback_text="Clear")
        session.add(feedback)
        session.flush()
        feedback_id = feedback.feedback_id

    with database.get_session() as session:
        stale = session.get(Course, seed.c1)
        assert stale.stream_id == seed.it
        session.execute(
            update(Course)
            .where(Course.course_id == seed.c1)
            .values(stream_id=seed.bm)
            .execution_options(synchronize_session=False)
        )
        row = load_locked(session, ResourceType.FEEDBACK, feedback_id)
        assert row.report.course is stale
        assert stale.stream_id == seed.bm


def test_author_moved_to_other_stream_still_edits_pending_report(database, seed, identities):
    moved = Identity(seed.l1, UserRole.LECTURER, seed.bm)
    with database.get_session() as session:
        guard(
            session, moved, Action.UPDATE, ResourceType.REPORT, seed.r1,
            _set_venue("Hall 5"), changed_fields={"venue"},
        )
    assert _venue(database, seed.r1) == "Hall 5"


def test_principal_lecturer_cannot_delete_report(database, seed, identities):
    with database.get_session() as session:
        with pytest.raises(Denied) as exc_info:
            guard(session, identities.p1, Action.DELETE, ResourceType.REPORT, seed.r1, session.delete)
    assert exc_info.value.reason == "role_forbidden"
    with database.get_session() as session:
        assert session.get(Report, seed.r1) is not None
