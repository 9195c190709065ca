import unittest
from unittest.mock import patch

from partner_portal import create_app
from partner_portal.auth import _parse_users
from partner_portal.config import Config
from partner_portal.db import close_db, get_db
from partner_portal.errors import AlreadyResolvedError, ValidationError, is_unique_violation
from partner_portal.seed import seed_directory
from partner_portal.ui_strings import error_message
from tests.helpers.temp_db import TempDbSandbox


def _build_temp_app(temp_db: TempDbSandbox, **overrides):
    overrides.setdefault("PROPAGATE_EXCEPTIONS", False)
    return create_app(temp_db.make_config(Config, **overrides))


class ErrorPermissionTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_perm")
        self.app = _build_temp_app(self._temp_db, TESTING=False, AUTH_ENABLED=True, DB_AUTO_INIT=True)
        with self.app.app_context():
            self.seeded = seed_directory(get_db())
        partner_id = self.seeded["partners"][0]
        self.app.config["APP_USERS"] = (
            "admin@demo.com:admin123::Sourcing Admin:admin,"
            f"bids@northwind.example:secret:{partner_id}:Northwind Bids:partner"
        )
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_permission_error_for_unauthenticated_api(self) -> None:
        response = self.client.get("/api/tenders")
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_health_and_metrics_are_public(self) -> None:
        self.assertEqual(self.client.get("/health").status_code, 200)
        self.assertEqual(self.client.get("/metrics").status_code, 200)

    def test_invalid_credentials(self) -> None:
        response = self.client.post("/api/auth/login", json={"email": "admin@demo.com", "password": "nope"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()["error"], "invalid_credentials")

    def test_login_requires_both_fields(self) -> None:
        response = self.client.post("/api/auth/login", json={"email": "admin@demo.com"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "validation_error")

    def test_admin_login_me_and_logout(self) -> None:
        response = self.client.post("/api/auth/login", json={"email": "Admin@Demo.com", "password": "admin123"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.get_json(),
            {"email": "admin@demo.com", "display_name": "Sourcing Admin", "is_admin": True, "partner_id": None},
        )
        self.assertEqual(self.client.get("/api/tenders").status_code, 200)

        self.assertEqual(self.client.post("/api/auth/logout").status_code, 200)
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)

    def test_partner_login_scopes_caller(self) -> None:
        response = self.client.post(
            "/api/auth/login", json={"email": "bids@northwind.example", "password": "secret"}
        )
        self.assertEqual(response.status_code, 200)
        me = self.client.get("/api/auth/me").get_json()
        self.assertFalse(me["is_admin"])
        self.assertEqual(me["partner_id"], self.seeded["partners"][0])

        create = self.client.post("/api/tenders", json={"title": "Not allowed"})
        self.assertEqual(create.status_code, 403)
        self.assertEqual(create.get_json()["error"], "unauthorized")


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = _build_temp_app(self._temp_db, TESTING=True, AUTH_ENABLED=False)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_unexpected_exception_maps_to_system_error(self) -> None:
        with patch(
            "partner_portal.contexts.tendering.application.service.TenderService.list_notifications",
            side_effect=RuntimeError("disk on fire"),
        ):
            with self.assertLogs("partner_portal", level="ERROR") as logs:
                response = self.client.get("/api/notifications")

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload["error"], "unexpected_error")
        self.assertEqual(payload["message"], error_message("unexpected_error"))
        self.assertNotIn("disk on fire", response.get_data(as_text=True))
        self.assertTrue(any("unexpected_exception" in line for line in logs.output))

    def test_not_found_payload_has_request_id(self) -> None:
        response = self.client.get("/api/tenders/4242", headers={"X-Request-Id": "trace-1"})
        self.assertEqual(response.status_code, 404)
        payload = response.get_json()
        self.assertEqual(payload["error"], "not_found")
        self.assertEqual(payload["request_id"], "trace-1")

    def test_unknown_route_stays_http_404(self) -> None:
        response = self.client.get("/api/does-not-exist")
        self.assertEqual(response.status_code, 404)

    def test_ui_bundle_lists_flow_and_messages(self) -> None:
        response = self.client.get("/api/ui-bundle")
        self.assertEqual(response.status_code, 200)
        self.assertIsInstance(response.get_json(), dict)


class AppErrorTest(unittest.TestCase):
    def test_payload_is_merged_into_response_body(self) -> None:
        error = AlreadyResolvedError(payload={"awarded_to": 3, "awarded_project_id": 11})
        body = error.to_response_payload("rid")
        self.assertEqual(body["error"], "already_resolved")
        self.assertEqual(body["awarded_to"], 3)
        self.assertEqual(body["awarded_project_id"], 11)
        self.assertEqual(error.http_status, 409)
        self.assertFalse(error.critical)

    def test_unknown_message_key_falls_back(self) -> None:
        error = ValidationError(message_key="no_such_key")
        self.assertEqual(error.user_message(), error_message("unexpected_error"))

    def test_unique_violation_detection(self) -> None:
        self.assertTrue(is_unique_violation(Exception("UNIQUE constraint failed: projects.tender_id")))
        self.assertTrue(is_unique_violation(Exception('duplicate key value violates unique constraint "x"')))
        self.assertFalse(is_unique_violation(Exception("database is locked")))


class ParseUsersTest(unittest.TestCase):
    def test_partner_entries_need_a_partner_id(self) -> None:
        users = _parse_users("admin@demo.com:pw::Admin:admin; orphan@x.com:pw::Orphan:partner\nok@x.com:pw:7")
        self.assertEqual([user["email"] for user in users], ["admin@demo.com", "ok@x.com"])
        self.assertIsNone(users[0]["partner_id"])
        self.assertEqual(users[1]["partner_id"], 7)
        self.assertEqual(users[1]["display_name"], "ok")
        self.assertEqual(users[1]["role"], "partner")

    def test_non_string_values_are_ignored(self) -> None:
        self.assertEqual(list(_parse_users(None)), [])
        self.assertEqual(list(_parse_users(42)), [])


if __name__ == "__main__":
    unittest.main()
