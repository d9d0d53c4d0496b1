"""
E2E tests for the HTTP API

Requests go through the real FastAPI app, routers and services; only
Firebase Auth, LINE login and Firestore are replaced (see conftest).
Includes timing for the busiest endpoints.
"""

import base64
import hashlib
import hmac
import json
from unittest.mock import AsyncMock, patch

import pytest

from core.auth import UserRole


@pytest.mark.e2e
class TestHealth:
    def test_health_reports_degraded_cache(self, client, timed_request):
        response, elapsed = timed_request(client, "GET", "/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["firebase"] == "connected"
        assert data["redis"] == "unavailable"
        assert elapsed < 500, f"Health check too slow: {elapsed:.2f}ms"

    def test_cache_clear_needs_super_admin(self, client, session):
        assert client.post("/api/cache/clear").status_code == 200
        session.login(UserRole.BRANCH_ADMIN, ["b1"])
        assert client.post("/api/cache/clear").status_code == 403

    def test_missing_bearer_token(self, school):
        from fastapi.testclient import TestClient
        from server import app

        response = TestClient(app).get("/api/classes")
        assert response.status_code in (401, 403)


@pytest.mark.e2e
class TestBranchScoping:
    def test_branch_admin_sees_own_branch(self, client, session, timed_request):
        session.login(UserRole.BRANCH_ADMIN, ["b1"])
        response, _ = timed_request(client, "GET", "/api/classes")
        assert [c["id"] for c in response.json()] == ["c1"]

    def test_other_branch_is_forbidden(self, client, session):
        session.login(UserRole.BRANCH_ADMIN, ["b2"])
        assert client.get("/api/classes/c1").status_code == 403
        assert client.get("/api/classes", params={"branch_id": "b1"}).status_code == 403

    def test_teacher_cannot_create_class(self, client, session):
        session.login(UserRole.TEACHER, ["b1"])
        response = client.post("/api/classes", json={"name": "X", "branchId": "b1"})
        assert response.status_code == 403


@pytest.mark.e2e
class TestEnrollmentFlow:
    def enroll(self, client, student_id="st1", parent_id="p1"):
        return client.post("/api/enrollments", json={
            "studentId": student_id, "classId": "c1", "parentId": parent_id, "branchId": "b1",
            "pricing": {"originalPrice": 4000, "discount": 500, "discountType": "fixed"},
        })

    def test_enroll_then_duplicate(self, client, school):
        response = self.enroll(client)
        assert response.status_code == 201
        assert response.json()["pricing"]["finalPrice"] == 3500
        assert school.data("classes/c1")["enrolledCount"] == 1

        duplicate = self.enroll(client)
        assert duplicate.status_code == 400

    def test_full_class_is_a_conflict(self, client, school):
        school.seed("classes/c1", {**school.data("classes/c1"), "enrolledCount": 2})
        response = self.enroll(client)
        assert response.status_code == 409
        assert response.json()["detail"]["availableSeats"] == 0

    def test_validation_errors_carry_field_map(self, client):
        response = client.post("/api/enrollments", json={"classId": "c1"})
        assert response.status_code == 400
        assert "studentId" in response.json()["detail"]["errors"]

    def test_seats(self, client):
        response = client.get("/api/enrollments/seats/c1")
        assert response.status_code == 200
        assert response.json()["availableSeats"] == 2


@pytest.mark.e2e
class TestMakeupFlow:
    def test_request_schedule_and_attend(self, client, school):
        created = client.post("/api/makeup", json={
            "studentId": "st1", "originalClassId": "c1", "originalScheduleId": "sch1", "reason": "Sick",
        })
        assert created.status_code == 201
        makeup_id = created.json()["id"]
        assert created.json()["requestedBy"] == "admin1"

        with patch("services.notifications.NotificationService.send_makeup_notification",
                   new_callable=AsyncMock, return_value=True):
            scheduled = client.post(f"/api/makeup/{makeup_id}/schedule", json={
                "date": "2027-01-06", "startTime": "13:00", "endTime": "14:00",
                "teacherId": "t1", "branchId": "b1", "roomId": "r2",
            })
        assert scheduled.status_code == 200
        assert scheduled.json()["status"] == "scheduled"

        attended = client.post(f"/api/makeup/{makeup_id}/attendance", json={"status": "present"})
        assert attended.json()["status"] == "completed"

    def test_room_conflict_is_409(self, client):
        created = client.post("/api/makeup", json={
            "studentId": "st1", "originalClassId": "c1", "originalScheduleId": "sch1", "reason": "Sick",
        }).json()
        response = client.post(f"/api/makeup/{created['id']}/schedule", json={
            "date": "2027-01-09", "startTime": "10:30", "endTime": "11:30",
            "teacherId": "t9", "branchId": "b1", "roomId": "r1",
        })
        assert response.status_code == 409
        assert response.json()["detail"]["conflicts"]

    def test_unknown_makeup(self, client):
        assert client.delete("/api/makeup/nope").status_code == 404


@pytest.mark.e2e
class TestLiff:
    def test_profile(self, client):
        response = client.get("/api/liff/profile")
        assert response.status_code == 200
        assert response.json()["students"][0]["nickname"] == "Mint"

    def test_unlinked_account_is_404(self, client, session):
        session.line_user_id = "U-stranger"
        assert client.get("/api/liff/profile").status_code == 404

    def test_leave_then_cancel(self, client, school):
        leave = client.post("/api/liff/leave", json={
            "studentId": "st1", "classId": "c1", "scheduleId": "sch2", "reason": "Trip",
        })
        assert leave.status_code == 201

        cancel = client.post("/api/liff/leave/cancel", json={
            "makeupId": leave.json()["id"], "studentId": "st1", "classId": "c1", "scheduleId": "sch2",
        })
        assert cancel.json() == {"success": True}
        assert school.data("classes/c1/schedules/sch2")["attendance"] == []


@pytest.mark.e2e
class TestWebhookAndCron:
    def test_signed_webhook(self, client, school):
        school.seed("settings/line", {"messagingChannelSecret": "secret"})
        body = json.dumps({"events": [{"type": "unfollow", "source": {"userId": "U-parent"}}]}).encode()
        signature = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()

        response = client.post("/api/webhooks/line", content=body, headers={"X-Line-Signature": signature})

        assert response.json() == {"success": True, "processed": 1}
        assert school.data("parents/p1")["lineFollowing"] is False

    def test_bad_signature_is_401(self, client, school):
        school.seed("settings/line", {"messagingChannelSecret": "secret"})
        with patch("services.webhook.is_development", return_value=False):
            response = client.post("/api/webhooks/line", content=b"{}", headers={"X-Line-Signature": "bad"})
        assert response.status_code == 401

    def test_non_object_body_is_400(self, client, school):
        school.seed("settings/line", {"messagingChannelSecret": "secret"})
        body = b"[]"
        signature = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()
        response = client.post("/api/webhooks/line", content=body, headers={"X-Line-Signature": signature})
        assert response.status_code == 400

    def test_webhook_reachability_echo(self, client):
        assert client.get("/api/webhooks/line", params={"hub.challenge": "abc"}).json() == "abc"

    def test_cron_requires_secret(self, client):
        with patch("core.auth.CRON_SECRET", "cron-secret"):
            assert client.get("/api/cron/update-class-status").status_code == 401
            response = client.get("/api/cron/update-class-status",
                                  headers={"Authorization": "Bearer cron-secret"})
        assert response.status_code == 200
        assert response.json()["success"] is True
