from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from main import app
from models import Notification, Report, ReportImage, User
from reports import ReportStore
from support import ADMIN_INFO, ApiTestCase

REPORT = {
    "title": "Clogged Storm Drain",
    "description": "Storm drain is blocked and floods during rain.",
    "category": "Drainage",
    "location": "Oak Avenue, beside Community Center",
    "status": "pending",
}


class TestService(ApiTestCase):

    def test_root(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("running", response.json()["message"])

    def test_database_check(self):
        info = self.client.get("/test").json()
        self.assertEqual(info["database"], "connected")
        self.assertIn("reports", info["tables"])

    def test_cors_is_open(self):
        response = self.client.get("/reports", headers={"Origin": "http://dashboard.local"})
        self.assertEqual(response.headers["access-control-allow-origin"], "*")

    def test_preflight(self):
        response = self.client.options("/reports", headers={
            "Origin": "http://dashboard.local",
            "Access-Control-Request-Method": "PUT",
        })
        self.assertEqual(response.status_code, 200)

        bare = self.client.options("/notifications/3")
        self.assertEqual(bare.status_code, 200)
        self.assertEqual(bare.content, b"")

    def test_unknown_route_uses_error_body(self):
        response = self.client.get("/nowhere")
        self.assertEqual(response.status_code, 404)
        self.assertIn("error", response.json())

    def test_unknown_route_is_404_for_every_method(self):
        for method in ("POST", "PUT", "DELETE"):
            response = self.client.request(method, "/nowhere/else")
            self.assertEqual(response.status_code, 404, method)
            self.assertIn("error", response.json())

        self.assertEqual(self.client.options("/nowhere/else").status_code, 200)

    def test_store_failure_is_generic_500(self):
        client = TestClient(app, raise_server_exceptions=False)
        failure = OperationalError("SELECT * FROM reports", {}, Exception("disk I/O error at /var/lib/db"))
        with patch.object(ReportStore, "get_all", side_effect=failure):
            response = client.get("/reports")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Internal server error"})


class TestAuthApi(ApiTestCase):

    def test_register_and_login(self):
        response = self.register(barangay="San Roque")
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertTrue(body["user"]["verified"])
        self.assertNotIn("password", body["user"])

        response = self.client.post("/auth?action=login", json={"email": "juan@mail.ph", "password": "secret"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["user"]["verified"])

        me = self.client.get("/me", headers={"Authorization": f"Bearer {response.json()['token']}"})
        self.assertEqual(me.json()["email"], "juan@mail.ph")

    def test_me_requires_token(self):
        self.assertEqual(self.client.get("/me").status_code, 401)

    def test_register_missing_field(self):
        response = self.client.post("/auth?action=register", json={"name": "Juan", "email": "juan@mail.ph",
                                                                    "role": "resident"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing required field: password")

    def test_register_empty_role(self):
        response = self.register(role="")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing required field: role")

    def test_register_duplicate_email(self):
        self.register()
        response = self.register()
        self.assertEqual(response.status_code, 409)
        self.assertEqual(self.count(User, email="juan@mail.ph"), 1)

    def test_email_case_and_local_domains_are_accepted(self):
        first = self.register(email="Juan@Mail.PH")
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["user"]["email"], "Juan@Mail.PH")

        self.assertEqual(self.register(email="Juan@mail.ph").status_code, 201)
        self.assertEqual(self.register(email="juan@barangay.local").status_code, 201)
        self.assertEqual(self.count(User), 3)

    def test_register_empty_email(self):
        response = self.register(email="")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing required field: email")

    def test_admin_registration_flow(self):
        short = self.register(email="captain@lgu.gov.ph", role="admin", verificationInfo="too short")
        self.assertEqual(short.status_code, 400)

        response = self.register(email="captain@lgu.gov.ph", role="admin", verificationInfo=ADMIN_INFO)
        self.assertEqual(response.status_code, 201)
        user_id = response.json()["user"]["id"]
        self.assertFalse(response.json()["user"]["verified"])

        login = self.client.post("/auth?action=login", json={"email": "captain@lgu.gov.ph", "password": "secret"})
        self.assertEqual(login.status_code, 403)
        self.assertEqual(login.json()["status"], "pending")

        status = self.client.get(f"/auth?action=verify-status&userId={user_id}").json()
        self.assertEqual((status["verified"], status["status"]), (False, "pending"))

        verify = self.client.post("/auth?action=verify",
                                  json={"userId": user_id, "status": "approved", "notes": "Confirmed"})
        self.assertEqual(verify.status_code, 200)

        login = self.client.post("/auth?action=login", json={"email": "captain@lgu.gov.ph", "password": "secret"})
        self.assertEqual(login.status_code, 200)
        self.assertTrue(login.json()["user"]["verified"])

    def test_verify_invalid_status(self):
        response = self.client.post("/auth?action=verify", json={"userId": 1, "status": "maybe", "notes": ""})
        self.assertEqual(response.status_code, 400)

    def test_verify_without_pending_request(self):
        user_id = self.register().json()["user"]["id"]
        response = self.client.post("/auth?action=verify",
                                    json={"userId": user_id, "status": "approved", "notes": ""})
        self.assertEqual(response.status_code, 404)

    def test_bad_login(self):
        self.register()
        response = self.client.post("/auth?action=login", json={"email": "juan@mail.ph", "password": "wrong"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Invalid email or password")

    def test_verify_status_requires_user(self):
        self.assertEqual(self.client.get("/auth?action=verify-status").status_code, 400)
        self.assertEqual(self.client.get("/auth?action=verify-status&userId=99").status_code, 404)

    def test_unknown_action(self):
        self.assertEqual(self.client.post("/auth?action=reset", json={}).status_code, 400)
        self.assertEqual(self.client.post("/auth/register", json={"name": "x"}).status_code, 400)


class TestReportsApi(ApiTestCase):

    def create(self, **overrides):
        response = self.client.post("/reports", json={**REPORT, **overrides})
        self.assertEqual(response.status_code, 201)
        return response.json()["id"]

    def test_crud(self):
        report_id = self.create(images=["a.jpg", "b.jpg"])

        report = self.client.get(f"/reports?id={report_id}").json()
        self.assertEqual(report["images"], ["a.jpg", "b.jpg"])
        self.assertEqual(self.client.get(f"/reports/{report_id}").json()["title"], REPORT["title"])
        self.assertEqual(len(self.client.get("/reports").json()), 1)

        response = self.client.put("/reports", json={"id": report_id, "status": "resolved"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["report"]["status"], "resolved")

        response = self.client.request("DELETE", "/reports", json={"id": report_id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(f"/reports?id={report_id}").status_code, 404)
        self.assertEqual(self.count(ReportImage, report_id=report_id), 0)

    def test_create_requires_fields(self):
        body = dict(REPORT)
        del body["location"]
        response = self.client.post("/reports", json=body)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing required field: location")
        self.assertEqual(self.count(Report), 0)

    def test_create_rejects_unknown_status(self):
        response = self.client.post("/reports", json={**REPORT, "status": "closed"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid value for field: status")

    def test_invalid_json(self):
        response = self.client.post("/reports", content=b"{not json", headers={"Content-Type": "application/json"})
        self.assertEqual(response.status_code, 400)

    def test_update_with_only_unknown_fields(self):
        report_id = self.create()
        before = self.client.get(f"/reports/{report_id}").json()["updated_at"]

        response = self.client.put(f"/reports/{report_id}", json={"upvotes": 3, "id": report_id})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get(f"/reports/{report_id}").json()["updated_at"], before)

    def test_update_without_id(self):
        response = self.client.put("/reports", json={"status": "resolved"})
        self.assertEqual(response.status_code, 400)

    def test_status_change_notification(self):
        report_id = self.create()
        before = self.count(Notification, related_issue_id=report_id)

        self.client.put(f"/reports/{report_id}", json={"priority": "high"})
        self.assertEqual(self.count(Notification, related_issue_id=report_id), before)

        self.client.put(f"/reports/{report_id}", json={"status": "in-progress"})
        self.assertEqual(self.count(Notification, related_issue_id=report_id), before + 1)

        latest = self.client.get("/notifications").json()[0]
        self.assertEqual(latest["related_issue_id"], report_id)
        self.assertIn("in-progress", latest["message"])

    def test_missing_report(self):
        self.assertEqual(self.client.put("/reports/77", json={"status": "resolved"}).status_code, 404)
        self.assertEqual(self.client.delete("/reports/77").status_code, 404)

    def test_comments(self):
        user_id = self.register().json()["user"]["id"]
        report_id = self.create(reporter_id=user_id)

        response = self.client.post(f"/reports/{report_id}/comments", json={"user_id": user_id, "text": "Thanks!"})
        self.assertEqual(response.status_code, 201)
        comments = self.client.get(f"/reports/{report_id}/comments").json()
        self.assertEqual([c["text"] for c in comments], ["Thanks!"])


class TestNotificationsApi(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.client.post("/reports", json=REPORT)
        self.notification_id = self.client.get("/notifications").json()[0]["id"]

    def test_mark_read_twice(self):
        for _ in range(2):
            response = self.client.put(f"/notifications/{self.notification_id}", json={"is_read": True})
            self.assertEqual(response.status_code, 200)
        self.assertTrue(self.client.get(f"/notifications/{self.notification_id}").json()["is_read"])

    def test_unread_filter(self):
        self.assertEqual(len(self.client.get("/notifications?unread=true").json()), 1)
        self.client.put(f"/notifications/{self.notification_id}", json={"is_read": True})
        self.assertEqual(self.client.get("/notifications?unread=true").json(), [])

    def test_delete(self):
        self.assertEqual(self.client.delete(f"/notifications/{self.notification_id}").status_code, 200)
        self.assertEqual(self.client.get(f"/notifications/{self.notification_id}").status_code, 404)
        self.assertEqual(self.client.delete(f"/notifications/{self.notification_id}").status_code, 404)


class TestUsersApi(ApiTestCase):

    def test_user_crud(self):
        response = self.client.post("/users", json={"name": "Maria Santos", "email": "maria@mail.ph",
                                                    "password": "secret", "role": "resident"})
        self.assertEqual(response.status_code, 201)
        user_id = response.json()["id"]

        users = self.client.get("/users").json()
        self.assertEqual([u["email"] for u in users], ["maria@mail.ph"])
        self.assertNotIn("password", users[0])

        response = self.client.put("/users", json={"id": user_id, "barangay": "Poblacion"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(f"/users?id={user_id}").json()["barangay"], "Poblacion")

        response = self.client.request("DELETE", "/users", json={"id": user_id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(f"/users/{user_id}").status_code, 404)

    def test_update_nothing(self):
        user_id = self.register().json()["user"]["id"]
        self.assertEqual(self.client.put(f"/users/{user_id}", json={"role": "staff"}).status_code, 400)
