"""
test_api.py - Device Service Tests
Tests for: REST routes, attempt-state persistence, grant tokens, audit log
"""

import sys
import os
import math
import tempfile
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from heartid_server import api
from heartid_server import database as db


def enrolled_payload(n=300):
    return {"samples": [{"value": 75.0 + 8.0 * math.sin(2 * math.pi * i / 30), "offset": float(i)}
                        for i in range(n)]}


def flat_payload(n=300):
    return {"samples": [{"value": 80.0, "offset": float(i)} for i in range(n)]}


# ─────────────────────────────────────────────
class ApiTestCase(unittest.TestCase):

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = tmp.name

        old_db, old_dir = db.DB_PATH, api.app.config["HEARTID_DATA_DIR"]
        db.DB_PATH = os.path.join(self.dir, "heartid.db")
        api.app.config["HEARTID_DATA_DIR"] = self.dir
        self.addCleanup(setattr, db, "DB_PATH", old_db)
        self.addCleanup(api.app.config.__setitem__, "HEARTID_DATA_DIR", old_dir)

        db.init_db()
        api.used_nonces.clear()
        self.client = api.app.test_client()

    def enroll(self):
        resp = self.client.post("/api/enroll", json=enrolled_payload())
        self.assertEqual(resp.status_code, 201)
        return resp


# ─────────────────────────────────────────────
class TestBasics(ApiTestCase):

    def test_health(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["status"], "ok")

    def test_unknown_route(self):
        resp = self.client.get("/api/nope")
        self.assertEqual(resp.status_code, 404)
        self.assertIn("error", resp.get_json())

    def test_status_not_enrolled(self):
        body = self.client.get("/api/status").get_json()
        self.assertFalse(body["enrolled"])
        self.assertFalse(body["locked"])
        self.assertEqual(body["consecutive_failures"], 0)


# ─────────────────────────────────────────────
class TestEnrollRoute(ApiTestCase):

    def test_enroll(self):
        body = self.enroll().get_json()
        self.assertTrue(body["success"])
        self.assertTrue(body["validation"]["is_valid"])
        self.assertTrue(self.client.get("/api/status").get_json()["enrolled"])
        self.assertTrue(os.path.exists(os.path.join(self.dir, "template.json")))

    def test_enroll_poor_capture(self):
        resp = self.client.post("/api/enroll", json=enrolled_payload(30))
        self.assertEqual(resp.status_code, 422)
        body = resp.get_json()
        self.assertFalse(body["success"])
        self.assertEqual(body["code"], "validation_failed")
        self.assertTrue(body["validation"]["recommendations"])

    def test_malformed_body(self):
        self.assertEqual(self.client.post("/api/enroll", json={"samples": "x"}).status_code, 400)
        self.assertEqual(self.client.post("/api/enroll", json=[1, 2]).status_code, 400)
        self.assertEqual(self.client.post("/api/enroll", json={"samples": [{"value": 70}]}).status_code, 400)
        self.assertEqual(self.client.post("/api/enroll", data="not json").status_code, 400)


# ─────────────────────────────────────────────
class TestAuthenticateRoute(ApiTestCase):

    def test_not_enrolled(self):
        resp = self.client.post("/api/authenticate", json=enrolled_payload())
        self.assertEqual(resp.status_code, 404)
        result = resp.get_json()["result"]
        self.assertEqual(result["status"], "error")
        self.assertEqual(result["code"], "not_enrolled")

    def test_approved_with_grant(self):
        self.enroll()
        resp = self.client.post("/api/authenticate", json={**enrolled_payload(), "security_level": "high"})
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(body["result"]["status"], "approved")
        self.assertEqual(body["security_level"], "HIGH")
        self.assertIn("grant", body)

        headers = {"Authorization": f"Bearer {body['grant']}"}
        redeemed = self.client.post("/api/grant/redeem", headers=headers)
        self.assertEqual(redeemed.status_code, 200)
        grant = redeemed.get_json()
        self.assertEqual(grant["outcome"], "approved")
        self.assertEqual(set(grant), {"outcome", "sub", "issued_at"})
        self.assertNotIn("confidence", grant)

        replay = self.client.post("/api/grant/redeem", headers=headers)
        self.assertEqual(replay.status_code, 401)

    def test_unknown_level(self):
        self.enroll()
        resp = self.client.post("/api/authenticate", json={**enrolled_payload(), "security_level": "ultra"})
        self.assertEqual(resp.status_code, 400)

    def test_retry_on_short_capture(self):
        self.enroll()
        body = self.client.post("/api/authenticate", json=enrolled_payload(10)).get_json()
        self.assertEqual(body["result"]["status"], "retry")
        self.assertNotIn("grant", body)

    def test_lockout_persists(self):
        self.enroll()
        for _ in range(3):
            body = self.client.post("/api/authenticate", json=flat_payload()).get_json()
            self.assertEqual(body["result"]["status"], "denied")
            self.assertNotIn("confidence", body["result"])

        resp = self.client.post("/api/authenticate", json=enrolled_payload())
        self.assertEqual(resp.status_code, 423)
        result = resp.get_json()["result"]
        self.assertEqual(result["code"], "locked_out")
        self.assertIsNotNone(result["locked_until"])

        status = self.client.get("/api/status").get_json()
        self.assertTrue(status["locked"])
        self.assertIn("lockout_remaining", status)

        self.assertEqual(self.client.delete("/api/profile").status_code, 423)
        self.assertEqual(self.client.post("/api/enroll", json=enrolled_payload()).status_code, 423)


# ─────────────────────────────────────────────
class TestGrantAndProfile(ApiTestCase):

    def test_redeem_requires_token(self):
        self.assertEqual(self.client.post("/api/grant/redeem").status_code, 401)
        resp = self.client.post("/api/grant/redeem", headers={"Authorization": "Bearer nonsense"})
        self.assertEqual(resp.status_code, 401)

    def test_delete_profile(self):
        self.enroll()
        resp = self.client.delete("/api/profile")
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(self.client.get("/api/status").get_json()["enrolled"])

    def test_audit_log(self):
        self.enroll()
        self.client.post("/api/authenticate", json=enrolled_payload())
        self.client.post("/api/authenticate", json=flat_payload())

        body = self.client.get("/api/logs?limit=10").get_json()
        events = [entry["event_type"] for entry in body["logs"]]
        self.assertEqual(events, ["auth_denied", "auth_approved", "enroll"])
        for entry in body["logs"]:
            self.assertNotIn("samples", entry)

        filtered = self.client.get("/api/logs?event_type=enroll").get_json()
        self.assertEqual(filtered["count"], 1)

    def test_attempt_lock_per_data_dir(self):
        lock = api.attempt_lock()
        self.assertIs(api.attempt_lock(), lock)
        other = tempfile.TemporaryDirectory()
        self.addCleanup(other.cleanup)
        api.app.config["HEARTID_DATA_DIR"] = other.name
        self.assertIsNot(api.attempt_lock(), lock)

    def test_logs_bad_limit(self):
        self.assertEqual(self.client.get("/api/logs?limit=many").status_code, 400)


if __name__ == "__main__":
    unittest.main()
