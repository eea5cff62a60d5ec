import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from fastapi.testclient import TestClient
from sqlmodel import Session

from hunt.auth import create_token
from hunt.database import get_session
from hunt.dependencies import get_audit_logger, get_verifier
from hunt.main import app
from hunt.services.audit import AuditLogger
from tests.support import BRIDGE, MODERATOR_ID, PLAYER_ID, SQUARE, DatabaseTestCase, FakeVerifier


def user_headers(user_id):
    token = create_token(user_id)
    return {"Authorization": f"Bearer {token}"}


def location(point):
    return {"lat": point.lat, "long": point.lon}


class ApiTests(DatabaseTestCase, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.verifier = FakeVerifier()

        def session_override():
            with Session(self.engine) as session:
                yield session

        app.dependency_overrides[get_session] = session_override
        app.dependency_overrides[get_verifier] = lambda: self.verifier
        app.dependency_overrides[get_audit_logger] = lambda: AuditLogger(self.engine)

        patcher = mock.patch("hunt.routers.waypoints.upload_evidence", side_effect=lambda content, key: key)
        self.upload = patcher.start()
        self.addCleanup(patcher.stop)

        self.client = TestClient(app)
        self.moderator = user_headers(MODERATOR_ID)

    def tearDown(self):
        app.dependency_overrides.clear()
        super().tearDown()

    def create_challenge(self):
        body = {
            "name": "City walk",
            "description": "A walk through the city",
            "planned_start_time": (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat(),
            "duration_minutes": 60,
            "type": "REC",
            "waypoints": [
                {
                    "sequence": 1,
                    "target_location": location(BRIDGE),
                    "radius_meters": 50,
                    "clue": "Where the river is crossed",
                    "expected_subject": "bridge",
                },
                {
                    "sequence": 2,
                    "target_location": location(SQUARE),
                    "clue": "Four lions",
                    "expected_subject": "lion statue",
                },
            ],
        }
        response = self.client.post("/challenges", json=body, headers=self.moderator)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def join_and_start(self):
        challenge = self.create_challenge()
        challenge_id = challenge["challenge_id"]

        response = self.client.post(
            f"/challenges/{challenge_id}/invite/{PLAYER_ID}",
            json={"nickname": "Scout"},
            headers=self.moderator,
        )
        self.assertEqual(response.status_code, 201, response.text)
        token = response.json()["participant_token"]

        response = self.client.post("/challenges/start", json={"challenge-id": challenge_id}, headers=self.moderator)
        self.assertEqual(response.status_code, 200, response.text)

        waypoint_ids = [w["id"] for w in sorted(challenge["payload"]["waypoints"], key=lambda w: w["sequence"])]
        return challenge_id, waypoint_ids, {"Authorization": f"Bearer {token}"}

    def test_create_and_fetch(self):
        challenge = self.create_challenge()
        self.assertEqual(challenge["payload"]["moderator_id"], MODERATOR_ID)
        self.assertIsNone(challenge["validity_end"])

        response = self.client.get(f"/challenges/{challenge['challenge_id']}", headers=self.moderator)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["challenge"]["version_id"], challenge["version_id"])

        response = self.client.get(f"/challenges/versions/{challenge['version_id']}", headers=self.moderator)
        self.assertEqual(response.status_code, 200)

    def test_bad_waypoint_sequence(self):
        body = {
            "name": "Broken",
            "planned_start_time": datetime.now(timezone.utc).isoformat(),
            "duration_minutes": 30,
            "waypoints": [
                {"sequence": 2, "target_location": location(BRIDGE), "clue": "x", "expected_subject": "bridge"},
            ],
        }
        response = self.client.post("/challenges", json=body, headers=self.moderator)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "invalid_waypoint_sequence")

    def test_requires_token(self):
        self.assertEqual(self.client.get("/challenges/1").status_code, 401)

    def test_unknown_challenge(self):
        response = self.client.get("/challenges/999", headers=self.moderator)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "challenge_not_found")

    def test_outsiders_cannot_view(self):
        challenge = self.create_challenge()
        response = self.client.get(f"/challenges/{challenge['challenge_id']}", headers=user_headers(42))
        self.assertEqual(response.status_code, 403)

    def test_start_twice(self):
        challenge_id, _, _ = self.join_and_start()
        response = self.client.post("/challenges/start", json={"challenge-id": challenge_id}, headers=self.moderator)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "challenge_already_started")

    def test_update_and_history(self):
        challenge = self.create_challenge()
        challenge_id = challenge["challenge_id"]

        response = self.client.put(f"/challenges/{challenge_id}", json={"name": "Renamed"}, headers=self.moderator)
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["name"], "Renamed")

        response = self.client.get(f"/challenges/{challenge_id}/versions", headers=self.moderator)
        self.assertEqual([v["name"] for v in response.json()], ["City walk", "Renamed"])

        response = self.client.delete(f"/challenges/{challenge_id}", headers=self.moderator)
        self.assertFalse(response.json()["payload"]["active"])

    def test_full_hunt(self):
        challenge_id, (first, second), player = self.join_and_start()

        response = self.client.post(
            f"/challenges/waypoints/{first}/checkin", json={"location": location(BRIDGE)}, headers=player
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["state"], "CHECKED_IN")
        self.assertEqual(response.json()["proof"], "bridge")

        response = self.client.post(
            f"/challenges/waypoints/{first}/proof",
            files={"image": ("proof.jpg", b"jpeg bytes", "image/jpeg")},
            headers=player,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["next-waypoint-id"], second)
        self.assertFalse(response.json()["hunt-complete"])
        self.upload.assert_called_once()

        key = self.upload.call_args.args[1]
        self.assertTrue(key.startswith(f"{challenge_id}/"))
        self.assertEqual(self.verifier.calls[0][0], key)

        self.client.post(f"/challenges/waypoints/{second}/checkin", json={"location": location(SQUARE)}, headers=player)
        response = self.client.post(
            f"/challenges/waypoints/{second}/proof",
            files={"image": ("lions.png", b"png bytes", "image/png")},
            headers=player,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertIsNone(response.json()["next-waypoint-id"])
        self.assertTrue(response.json()["hunt-complete"])

    def test_check_in_too_far(self):
        _, (first, _), player = self.join_and_start()
        response = self.client.post(
            f"/challenges/waypoints/{first}/checkin", json={"location": location(SQUARE)}, headers=player
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "too_far")
        self.assertEqual(response.json()["max_distance"], 50)

    def test_proof_before_check_in_is_not_uploaded(self):
        _, (first, _), player = self.join_and_start()
        response = self.client.post(
            f"/challenges/waypoints/{first}/proof",
            files={"image": ("proof.jpg", b"jpeg bytes", "image/jpeg")},
            headers=player,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "not_checked_in")
        self.upload.assert_not_called()

    def test_rejected_proof(self):
        self.verifier.resolution = "rejected"
        self.verifier.reasons = ["No bridge", "Too dark"]
        _, (first, _), player = self.join_and_start()
        self.client.post(f"/challenges/waypoints/{first}/checkin", json={"location": location(BRIDGE)}, headers=player)

        response = self.client.post(
            f"/challenges/waypoints/{first}/proof",
            files={"image": ("proof.jpg", b"jpeg bytes", "image/jpeg")},
            headers=player,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Failed to provide a proof. [1] No bridge [2] Too dark")

    def test_unsupported_image(self):
        _, (first, _), player = self.join_and_start()
        self.client.post(f"/challenges/waypoints/{first}/checkin", json={"location": location(BRIDGE)}, headers=player)
        response = self.client.post(
            f"/challenges/waypoints/{first}/proof",
            files={"image": ("proof.tiff", b"tiff bytes", "image/tiff")},
            headers=player,
        )
        self.assertEqual(response.status_code, 400)
        self.upload.assert_not_called()


if __name__ == "__main__":
    unittest.main()
