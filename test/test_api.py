"""End-to-end tests through the FastAPI app on an in-memory database."""
from conftest import PASSWORD
from database.models import AuditLog


def _report_body(course_id, class_id, **overrides):
    body = {
        "courseId": course_id,
        "classId": class_id,
        "weekOfReporting": 3,
        "dateOfLecture": "2024-03-15",
        "venue": "Lab 4",
        "scheduledTime": "10:30",
        "topicTaught": "Recursion",
        "learningOutcomes": "Write recursive functions",
        "actualStudentsPresent": 18,
        "totalRegisteredStudents": 25,
    }
    body.update(overrides)
    return body


class TestPublicEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["checks"]["database"]["status"] == "ok"

    def test_public_streams(self, client):
        response = client.get("/api/streams/public")
        assert response.status_code == 200
        codes = [s["streamCode"] for s in response.json()["data"]]
        assert sorted(codes) == ["BM", "IT"]

    def test_security_headers(self, client):
        response = client.get("/api/streams/public")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Cache-Control"] == "no-store"


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/api/reports")
        assert response.status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/api/reports", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_login_and_me(self, client):
        response = client.post("/api/auth/login", json={"email": "Lecturer.One@example.com", "password": PASSWORD})
        assert response.status_code == 200
        token = response.json()["access_token"]
        assert response.json()["user"]["role"] == "lecturer"

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["email"] == "lecturer.one@example.com"

    def test_login_wrong_password(self, client):
        response = client.post("/api/auth/login", json={"email": "lecturer.one@example.com", "password": "wrong#123"})
        assert response.status_code == 401


class TestReportVisibility:
    def test_principal_lecturer_lists_only_own_stream(self, client, seed, auth_headers):
        response = client.get("/api/reports", headers=auth_headers(seed.p1))
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert [r["id"] for r in body["data"]] == [seed.r1]
        assert all(r["streamId"] == seed.it for r in body["data"])

    def test_program_leader_lists_everything(self, client, seed, auth_headers):
        body = client.get("/api/reports", headers=auth_headers(seed.pl)).json()
        assert body["total"] == 2

    def test_lecturer_lists_only_own_reports(self, client, seed, auth_headers):
        assert client.get("/api/reports", headers=auth_headers(seed.l1)).json()["total"] == 1
        assert client.get("/api/reports", headers=auth_headers(seed.l2)).json()["total"] == 0

    def test_streamless_principal_gets_empty_list(self, client, seed, auth_headers):
        body = client.get("/api/reports", headers=auth_headers(seed.ns)).json()
        assert body["total"] == 0
        assert body["data"] == []

    def test_student_cannot_see_other_stream_report(self, client, seed, auth_headers):
        response = client.get(f"/api/reports/{seed.r6}", headers=auth_headers(seed.s))
        assert response.status_code == 404

    def test_missing_and_cross_stream_reports_look_the_same(self, client, seed, auth_headers):
        hidden = client.get(f"/api/reports/{seed.r6}", headers=auth_headers(seed.p1))
        missing = client.get("/api/reports/9999", headers=auth_headers(seed.p1))
        assert hidden.status_code == missing.status_code == 404
        assert hidden.json()["detail"] == missing.json()["detail"]

    def test_status_filter(self, client, seed, auth_headers):
        body = client.get("/api/reports?status=approved", headers=auth_headers(seed.pl)).json()
        assert body["total"] == 0
        bad = client.get("/api/reports?status=archived", headers=auth_headers(seed.pl))
        assert bad.status_code == 400


class TestReportMutations:
    def test_assigned_lecturer_submits_report(self, client, seed, auth_headers):
        response = client.post("/api/reports", json=_report_body(seed.c1, seed.k1), headers=auth_headers(seed.l1))
        assert response.status_code == 201
        assert response.json()["status"] == "pending"
        assert response.json()["lecturerId"] == seed.l1

    def test_unassigned_lecturer_cannot_submit(self, client, seed, auth_headers):
        response = client.post("/api/reports", json=_report_body(seed.c1, seed.k1), headers=auth_headers(seed.l2))
        assert response.status_code == 403
        assert response.json()["reason"] == "not_owner"

    def test_report_on_other_stream_course_is_not_found(self, client, seed, auth_headers):
        response = client.post("/api/reports", json=_report_body(seed.c6, seed.k6), headers=auth_headers(seed.l1))
        assert response.status_code == 404

    def test_attendance_cannot_exceed_registration(self, client, seed, auth_headers):
        body = _report_body(seed.c1, seed.k1, actualStudentsPresent=30)
        response = client.post("/api/reports", json=body, headers=auth_headers(seed.l1))
        assert response.status_code == 400

    def test_class_must_share_course_stream(self, client, seed, auth_headers):
        response = client.post("/api/reports", json=_report_body(seed.c1, seed.k6), headers=auth_headers(seed.l1))
        assert response.status_code == 400

    def test_other_lecturer_cannot_edit(self, client, seed, auth_headers):
        response = client.patch(f"/api/reports/{seed.r1}", json={"venue": "Hall 9"}, headers=auth_headers(seed.l2))
        assert response.status_code == 403
        assert response.json()["reason"] == "not_owner"

    def test_feedback_locks_report_for_lecturer(self, client, seed, auth_headers):
        feedback = client.post(
            f"/api/reports/{seed.r1}/feedback",
            json={"feedbackText": "Well structured", "rating": 4},
            headers=auth_headers(seed.p1),
        )
        assert feedback.status_code == 201
        assert feedback.json()["reportStatus"] == "reviewed"
        assert feedback.json()["feedback"]["prlName"] == "Principal One"

        edit = client.patch(f"/api/reports/{seed.r1}", json={"venue": "Hall 3"}, headers=auth_headers(seed.l1))
        assert edit.status_code == 409
        assert edit.json()["reason"] == "invalid_status_for_action"

        detail = client.get(f"/api/reports/{seed.r1}", headers=auth_headers(seed.l1)).json()
        assert detail["venue"] == "Hall 1"
        assert len(detail["feedback"]) == 1

    def test_lecturer_cannot_give_feedback(self, client, seed, auth_headers):
        response = client.post(
            f"/api/reports/{seed.r1}/feedback",
            json={"feedbackText": "Self praise"},
            headers=auth_headers(seed.l1),
        )
        assert response.status_code == 403

    def test_status_moves_forward_only(self, client, seed, auth_headers):
        headers = auth_headers(seed.p1)
        approved = client.patch(f"/api/reports/{seed.r1}/status", json={"status": "approved"}, headers=headers)
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        back = client.patch(f"/api/reports/{seed.r1}/status", json={"status": "reviewed"}, headers=headers)
        assert back.status_code == 409

    def test_lecturer_cannot_change_status(self, client, seed, auth_headers):
        response = client.patch(f"/api/reports/{seed.r1}/status", json={"status": "approved"}, headers=auth_headers(seed.l1))
        assert response.status_code == 403

    def test_owner_deletes_pending_report(self, client, seed, auth_headers):
        response = client.delete(f"/api/reports/{seed.r1}", headers=auth_headers(seed.l1))
        assert response.status_code == 200
        gone = client.get(f"/api/reports/{seed.r1}", headers=auth_headers(seed.pl))
        assert gone.status_code == 404

    def test_program_leader_cannot_author_reports(self, client, seed, auth_headers):
        response = client.post("/api/reports", json=_report_body(seed.c1, seed.k1), headers=auth_headers(seed.pl))
        assert response.status_code == 403
        assert response.json()["reason"] == "role_forbidden"


class TestUsers:
    def test_student_cannot_list_users(self, client, seed, auth_headers):
        response = client.get("/api/users", headers=auth_headers(seed.s))
        assert response.status_code == 403

    def test_principal_lists_stream_users(self, client, seed, auth_headers):
        body = client.get("/api/users", headers=auth_headers(seed.p1)).json()
        assert body["total"] == 4
        assert {u["streamId"] for u in body["data"]} == {seed.it}

    def test_user_reads_own_account(self, client, seed, auth_headers):
        response = client.get(f"/api/users/{seed.s}", headers=auth_headers(seed.s))
        assert response.status_code == 200
        assert response.json()["fullName"] == "Student One"

    def test_user_cannot_change_own_role(self, client, seed, auth_headers):
        response = client.put(f"/api/users/{seed.l1}", json={"role": "program_leader"}, headers=auth_headers(seed.l1))
        assert response.status_code == 403

    def test_program_leader_creates_lecturer(self, client, seed, auth_headers):
        body = {
            "fullName": "New Lecturer",
            "email": "new.lecturer@example.com",
            "password": "Passw0rd!",
            "role": "lecturer",
            "streamId": seed.bm,
        }
        response = client.post("/api/users", json=body, headers=auth_headers(seed.pl))
        assert response.status_code == 201
        assert response.json()["streamId"] == seed.bm

    def test_stream_scoped_role_needs_stream(self, client, seed, auth_headers):
        body = {
            "fullName": "No Stream",
            "email": "no.stream@example.com",
            "password": "Passw0rd!",
            "role": "student",
        }
        response = client.post("/api/users", json=body, headers=auth_headers(seed.pl))
        assert response.status_code == 400

    def test_cannot_delete_self(self, client, seed, auth_headers):
        response = client.delete(f"/api/users/{seed.pl}", headers=auth_headers(seed.pl))
        assert response.status_code == 400


class TestCatalogue:
    def test_lecturer_lists_stream_courses(self, client, seed, auth_headers):
        body = client.get("/api/courses", headers=auth_headers(seed.l2)).json()
        assert [c["courseCode"] for c in body["data"]] == ["IT101"]

    def test_other_stream_course_hidden(self, client, seed, auth_headers):
        response = client.get(f"/api/courses/{seed.c6}", headers=auth_headers(seed.l1))
        assert response.status_code == 404

    def test_principal_cannot_move_course_to_other_stream(self, client, seed, auth_headers):
        response = client.put(f"/api/courses/{seed.c1}", json={"streamId": seed.bm}, headers=auth_headers(seed.p1))
        assert response.status_code == 403

    def test_course_with_reports_cannot_be_deleted(self, client, seed, auth_headers):
        response = client.delete(f"/api/courses/{seed.c1}", headers=auth_headers(seed.pl))
        assert response.status_code == 400

    def test_stream_in_use_cannot_be_deleted(self, client, seed, auth_headers):
        response = client.delete(f"/api/streams/{seed.it}", headers=auth_headers(seed.pl))
        assert response.status_code == 400

    def test_only_program_leader_creates_streams(self, client, seed, auth_headers):
        body = {"streamName": "Engineering", "streamCode": "ENG"}
        assert client.post("/api/streams", json=body, headers=auth_headers(seed.p1)).status_code == 403
        created = client.post("/api/streams", json=body, headers=auth_headers(seed.pl))
        assert created.status_code == 201

    def test_student_sees_only_own_stream(self, client, seed, auth_headers):
        body = client.get("/api/streams", headers=auth_headers(seed.s)).json()
        assert [s["streamCode"] for s in body["data"]] == ["IT"]


class TestAccountProtection:
    def test_principal_cannot_take_over_another_account(self, client, seed, auth_headers):
        body = {"email": "taken.over@example.com", "password": "Hijack#123"}
        response = client.put(f"/api/users/{seed.l1}", json=body, headers=auth_headers(seed.p1))
        assert response.status_code == 403
        assert response.json()["reason"] == "role_forbidden"

        unchanged = client.get(f"/api/users/{seed.l1}", headers=auth_headers(seed.pl)).json()
        assert unchanged["email"] == "lecturer.one@example.com"
        login = client.post("/api/auth/login", json={"email": "lecturer.one@example.com", "password": PASSWORD})
        assert login.status_code == 200

    def test_principal_cannot_delete_users(self, client, seed, auth_headers):
        response = client.delete(f"/api/users/{seed.l2}", headers=auth_headers(seed.p1))
        assert response.status_code == 403
        assert client.get(f"/api/users/{seed.l2}", headers=auth_headers(seed.pl)).status_code == 200

    def test_lecturer_cannot_rename_colleague(self, client, seed, auth_headers):
        response = client.put(f"/api/users/{seed.l1}", json={"fullName": "Renamed"}, headers=auth_headers(seed.l2))
        assert response.status_code == 403

    def test_student_cannot_delete_users(self, client, seed, auth_headers):
        response = client.delete(f"/api/users/{seed.l1}", headers=auth_headers(seed.s))
        assert response.status_code == 403

    def test_user_renames_own_account(self, client, seed, auth_headers):
        response = client.put(f"/api/users/{seed.p1}", json={"fullName": "Principal Uno"}, headers=auth_headers(seed.p1))
        assert response.status_code == 200
        assert response.json()["fullName"] == "Principal Uno"

    def test_program_leader_edits_any_account(self, client, seed, auth_headers):
        response = client.put(f"/api/users/{seed.l6}", json={"fullName": "Lecturer Sixth"}, headers=auth_headers(seed.pl))
        assert response.status_code == 200


class TestReportAuthorship:
    def test_principal_cannot_rewrite_report(self, client, seed, auth_headers):
        response = client.patch(
            f"/api/reports/{seed.r1}", json={"topicTaught": "Rewritten"}, headers=auth_headers(seed.p1)
        )
        assert response.status_code == 403
        assert response.json()["reason"] == "role_forbidden"
        detail = client.get(f"/api/reports/{seed.r1}", headers=auth_headers(seed.l1)).json()
        assert detail["topicTaught"] == "Week 1 topic"

    def test_principal_cannot_delete_report(self, client, seed, auth_headers):
        response = client.delete(f"/api/reports/{seed.r1}", headers=auth_headers(seed.p1))
        assert response.status_code == 403
        assert client.get(f"/api/reports/{seed.r1}", headers=auth_headers(seed.l1)).status_code == 200

    def test_principal_still_sets_status(self, client, seed, auth_headers):
        response = client.patch(f"/api/reports/{seed.r1}/status", json={"status": "reviewed"}, headers=auth_headers(seed.p1))
        assert response.status_code == 200

    def test_other_lecturer_cannot_delete(self, client, seed, auth_headers):
        response = client.delete(f"/api/reports/{seed.r1}", headers=auth_headers(seed.l2))
        assert response.status_code == 403
        assert response.json()["reason"] == "not_owner"


class TestRegistration:
    def _body(self, **overrides):
        body = {
            "fullName": "New Student",
            "email": "new.student@example.com",
            "password": "Passw0rd!",
            "role": "student",
            "streamId": 5,
        }
        body.update(overrides)
        return body

    def test_student_registers_and_signs_in(self, client, seed):
        response = client.post("/api/auth/register", json=self._body())
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "student"
        assert response.json()["user"]["streamId"] == seed.it

        token = response.json()["access_token"]
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["email"] == "new.student@example.com"

    def test_stream_is_required(self, client, seed):
        response = client.post("/api/auth/register", json=self._body(streamId=None))
        assert response.status_code == 400

    def test_unknown_stream_is_rejected(self, client, seed):
        response = client.post("/api/auth/register", json=self._body(streamId=999))
        assert response.status_code == 400

    def test_program_leader_cannot_self_register(self, client, seed):
        response = client.post("/api/auth/register", json=self._body(role="program_leader", streamId=None))
        assert response.status_code == 403

    def test_principal_lecturer_cannot_self_register(self, client, seed):
        response = client.post("/api/auth/register", json=self._body(role="principal_lecturer"))
        assert response.status_code == 403

    def test_duplicate_email_is_rejected(self, client, seed):
        response = client.post("/api/auth/register", json=self._body(email="Lecturer.One@example.com"))
        assert response.status_code == 400

    def test_logout_is_audited(self, client, seed, database, auth_headers):
        response = client.post("/api/auth/logout", headers=auth_headers(seed.l1))
        assert response.status_code == 200
        with database.get_session() as session:
            entry = session.query(AuditLog).filter(AuditLog.action == "user_logout").one()
            assert entry.user_id == seed.l1

    def test_logout_needs_token(self, client, seed):
        assert client.post("/api/auth/logout").status_code == 401


class TestRoleReportLists:
    def test_my_reports_follow_the_role(self, client, seed, auth_headers):
        lecturer = client.get("/api/reports/my/reports", headers=auth_headers(seed.l1)).json()["data"]
        assert [r["id"] for r in lecturer] == [seed.r1]
        assert lecturer[0]["feedbackCount"] == 0
        assert client.get("/api/reports/my/reports", headers=auth_headers(seed.l2)).json()["data"] == []
        principal = client.get("/api/reports/my/reports", headers=auth_headers(seed.p1)).json()["data"]
        assert [r["id"] for r in principal] == [seed.r1]
        assert len(client.get("/api/reports/my/reports", headers=auth_headers(seed.pl)).json()["data"]) == 2

    def test_stream_reports(self, client, seed, auth_headers):
        own = client.get(f"/api/reports/stream/{seed.it}", headers=auth_headers(seed.p1))
        assert [r["id"] for r in own.json()["data"]] == [seed.r1]
        other = client.get(f"/api/reports/stream/{seed.bm}", headers=auth_headers(seed.p1))
        assert other.status_code == 404
        leader = client.get(f"/api/reports/stream/{seed.bm}", headers=auth_headers(seed.pl)).json()
        assert [r["id"] for r in leader["data"]] == [seed.r6]

    def test_stream_reports_need_reviewer(self, client, seed, auth_headers):
        response = client.get(f"/api/reports/stream/{seed.it}", headers=auth_headers(seed.l1))
        assert response.status_code == 403

    def test_stream_lecturers(self, client, seed, auth_headers):
        own = client.get(f"/api/users/stream/{seed.it}/lecturers", headers=auth_headers(seed.p1)).json()
        assert [u["fullName"] for u in own["data"]] == ["Lecturer One", "Lecturer Two"]
        assert client.get(f"/api/users/stream/{seed.bm}/lecturers", headers=auth_headers(seed.p1)).status_code == 404
        assert client.get(f"/api/users/stream/{seed.it}/lecturers", headers=auth_headers(seed.l1)).status_code == 403
        leader = client.get(f"/api/users/stream/{seed.bm}/lecturers", headers=auth_headers(seed.pl)).json()
        assert [u["fullName"] for u in leader["data"]] == ["Lecturer Six"]

    def test_course_stats(self, client, seed, auth_headers):
        principal = client.get("/api/courses/stats/overview", headers=auth_headers(seed.p1)).json()["data"]
        assert principal == [{
            "streamId": seed.it, "streamName": "Information Technology", "streamCode": "IT",
            "totalCourses": 1, "assignedCourses": 1, "unassignedCourses": 0,
        }]
        leader = client.get("/api/courses/stats/overview", headers=auth_headers(seed.pl)).json()["data"]
        assert [row["streamCode"] for row in leader] == ["BM", "IT"]
        assert client.get("/api/courses/stats/overview", headers=auth_headers(seed.s)).status_code == 403

    def test_streamless_principal_gets_no_course_stats(self, client, seed, auth_headers):
        body = client.get("/api/courses/stats/overview", headers=auth_headers(seed.ns)).json()
        assert body["data"] == []


class TestDashboards:
    def test_student_dashboard(self, client, seed, auth_headers):
        body = client.get("/api/dashboard/student", headers=auth_headers(seed.s)).json()
        assert [c["courseCode"] for c in body["courses"]] == ["IT101"]
        assert [r["id"] for r in body["recentReports"]] == [seed.r1]
        assert body["stats"] == {"totalCourses": 1, "totalClasses": 1, "recentReportsCount": 1}

    def test_lecturer_dashboard(self, client, seed, auth_headers):
        body = client.get("/api/dashboard/lecturer", headers=auth_headers(seed.l1)).json()
        assert [c["courseCode"] for c in body["courses"]] == ["IT101"]
        assert [k["className"] for k in body["classes"]] == ["IT Year 1"]
        assert body["stats"]["byStatus"]["pending"] == 1
        assert body["stats"]["avgAttendanceRate"] == 80.0

    def test_lecturer_without_courses(self, client, seed, auth_headers):
        body = client.get("/api/dashboard/lecturer", headers=auth_headers(seed.l2)).json()
        assert body["classes"] == []
        assert body["stats"]["totalReports"] == 0
        assert body["stats"]["avgAttendanceRate"] is None

    def test_principal_lecturer_dashboard(self, client, seed, auth_headers):
        body = client.get("/api/dashboard/principal-lecturer", headers=auth_headers(seed.p1)).json()
        assert body["stream"]["streamCode"] == "IT"
        assert [u["fullName"] for u in body["lecturers"]] == ["Lecturer One", "Lecturer Two"]
        assert [r["id"] for r in body["pendingReports"]] == [seed.r1]
        assert body["stats"]["myFeedbackCount"] == 0

    def test_streamless_principal_dashboard(self, client, seed, auth_headers):
        response = client.get("/api/dashboard/principal-lecturer", headers=auth_headers(seed.ns))
        assert response.status_code == 400

    def test_program_leader_dashboard(self, client, seed, auth_headers):
        body = client.get("/api/dashboard/program-leader", headers=auth_headers(seed.pl)).json()
        assert body["stats"]["totalStreams"] == 2
        assert body["stats"]["totalReports"] == 2
        assert body["stats"]["usersByRole"] == {
            "student": 1, "lecturer": 3, "principal_lecturer": 2, "program_leader": 1,
        }
        assert {s["streamCode"]: s["reportCount"] for s in body["streams"]} == {"BM": 1, "IT": 1}

    def test_dashboards_are_role_gated(self, client, seed, auth_headers):
        response = client.get("/api/dashboard/program-leader", headers=auth_headers(seed.l1))
        assert response.status_code == 403

    def test_default_dashboard_follows_role(self, client, seed, auth_headers):
        body = client.get("/api/dashboard", headers=auth_headers(seed.s)).json()
        assert body["student"]["id"] == seed.s
