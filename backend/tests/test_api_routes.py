"""
PROTRAIN CRM - API Routes Tests
FastAPI TestClient, dependencies overridden with the in-memory services.
Tests: scheduler run/status/send, notification settings, notifications inbox, auth.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from email_service import get_email_service
from routes.auth import get_current_user
from scheduler_service import TriggerDriver, get_trigger_driver
from server import app
from services.notification_settings import get_notification_settings_service
from services.notifications import NotificationService, get_notification_service
from tests.fakes import billing_record, build_scheduler, notification_settings_doc

ADMIN = {"id": "u1", "email": "admin@protrain.test", "role": "admin", "active": True}
SALES = {"id": "u2", "email": "sales@protrain.test", "role": "user", "active": True}


class RouteTestBase:

    @pytest.fixture(autouse=True)
    def setup(self):
        self.env = build_scheduler(now=datetime(2024, 1, 15, 10, 0))
        self.env.db.settings.seed(notification_settings_doc())
        self.env.db.billing_records.seed(
            billing_record("due", "2024-01-15", 1),
            billing_record("later", "2024-02-28", 1),
        )
        self.driver = TriggerDriver(self.env.scheduler)
        self.notifications = NotificationService(self.env.db)
        self.user = ADMIN

        app.dependency_overrides[get_current_user] = lambda: self.user
        app.dependency_overrides[get_trigger_driver] = lambda: self.driver
        app.dependency_overrides[get_notification_settings_service] = lambda: self.env.settings
        app.dependency_overrides[get_email_service] = lambda: self.env.email
        app.dependency_overrides[get_notification_service] = lambda: self.notifications
        self.client = TestClient(app)
        yield
        app.dependency_overrides.clear()


class TestSchedulerRoutes(RouteTestBase):

    def test_run(self):
        r = self.client.post("/api/scheduler/run", json={})
        assert r.status_code == 200
        data = r.json()
        assert data["success"] is True
        assert data["result"]["checked"] == 2
        assert data["result"]["notified"] == 1
        assert data["result"]["failed"] == 0
        print(f"✅ {data['message']}")

    def test_run_without_body(self):
        r = self.client.post("/api/scheduler/run")
        assert r.status_code == 200
        assert r.json()["success"] is True

    def test_dry_run(self):
        r = self.client.post("/api/scheduler/run", json={"dryRun": True})
        data = r.json()
        assert data["success"] is True
        assert data["message"].startswith("[dry run]")
        assert data["result"]["notified"] == 1
        assert self.env.email.sent == []

    def test_status(self):
        self.client.post("/api/scheduler/run", json={})

        r = self.client.get("/api/scheduler/status")

        assert r.status_code == 200
        data = r.json()
        assert data["state"] == "idle"
        assert data["lastResult"]["notified"] == 1

    def test_send_record_now(self):
        r = self.client.post("/api/scheduler/records/later/send")

        assert r.status_code == 200
        data = r.json()
        assert data["success"] is True
        assert data["outcome"]["recordId"] == "later"
        assert data["outcome"]["daysUntil"] == 13
        assert data["outcome"]["occurrence"] == "2024-01-28"
        event = self.env.db.event_log.by("action", "billing_send_now")
        assert event["user"] == "admin@protrain.test"
        print("✅ Manual send through the API")

    def test_send_unknown_record(self):
        r = self.client.post("/api/scheduler/records/missing/send")
        assert r.status_code == 404

    def test_non_admin_forbidden(self):
        self.user = SALES
        r = self.client.post("/api/scheduler/run", json={})
        assert r.status_code == 403
        assert self.env.email.sent == []

    def test_unauthenticated(self):
        app.dependency_overrides.pop(get_current_user)
        r = self.client.get("/api/scheduler/status")
        assert r.status_code == 401


class TestNotificationSettingsRoutes(RouteTestBase):

    def test_get(self):
        r = self.client.get("/api/notification-settings")
        assert r.status_code == 200
        data = r.json()
        assert data["advanceDays"] == 7
        assert data["recipients"] == [{"email": "billing@protrain.test", "active": True}]

    def test_put(self):
        payload = {
            "recipients": [{"email": "Ops@Protrain.test", "active": True}],
            "advanceEnabled": True,
            "advanceDays": 3,
            "onDueDateEnabled": False,
            "triggerTime": "08:15",
            "sendToAdmins": True,
            "emailTemplate": "<p>{{companyName}}</p>",
        }

        r = self.client.put("/api/notification-settings", json=payload)

        assert r.status_code == 200
        data = r.json()
        assert data["triggerTime"] == "08:15"
        assert data["recipients"][0]["email"] == "ops@protrain.test"
        stored = self.env.db.settings.by("key", "notification_settings")
        assert stored["advanceDays"] == 3
        assert stored["updated_by"] == "admin@protrain.test"
        assert self.env.db.event_log.by("action", "settings_update") is not None
        print("✅ Settings updated through the API")

    def test_put_rejects_invalid_trigger_time(self):
        r = self.client.put("/api/notification-settings", json={"triggerTime": "25:00"})
        assert r.status_code == 422
        assert self.env.db.settings.by("key", "notification_settings")["triggerTime"] == "09:00"

    def test_put_rejects_negative_advance_days(self):
        r = self.client.put("/api/notification-settings", json={"advanceDays": -2})
        assert r.status_code == 422

    def test_test_email(self):
        r = self.client.post("/api/notification-settings/test-email", json={"email": "ops@protrain.test"})
        assert r.status_code == 200
        assert r.json()["success"] is True
        assert self.env.email.test_emails == ["ops@protrain.test"]

    def test_test_email_failure(self):
        self.env.email.result = False
        r = self.client.post("/api/notification-settings/test-email", json={"email": "ops@protrain.test"})
        assert r.json()["success"] is False


class TestNotificationRoutes(RouteTestBase):

    def test_inbox_and_mark_read(self):
        self.client.post("/api/scheduler/run", json={})
        self.env.db.notifications.seed(
            {"id": "mine", "toEmail": "admin@protrain.test", "title": "Billing Reminder", "read": False,
             "createdAt": "2024-01-15T03:00:00+00:00"},
        )

        r = self.client.get("/api/notifications")
        assert r.status_code == 200
        data = r.json()
        assert [n["id"] for n in data["notifications"]] == ["mine"]
        assert data["unread"] == 1

        r = self.client.patch("/api/notifications/mine/read")
        assert r.status_code == 200
        assert self.env.db.notifications.by("id", "mine")["read"] is True

    def test_cannot_mark_someone_elses_notification(self):
        self.env.db.notifications.seed(
            {"id": "theirs", "toEmail": "billing@protrain.test", "title": "x", "read": False,
             "createdAt": "2024-01-15T03:00:00+00:00"},
        )

        r = self.client.patch("/api/notifications/theirs/read")

        assert r.status_code == 404
