import unittest
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from giveaway_engine.api import create_app
from giveaway_engine.config import Settings
from giveaway_engine.db.engine import get_sessionmaker
from giveaway_engine.models import Base, Giveaway, User
from giveaway_engine.models.giveaway import ACTIVE, DRAFT


def header_user(request: Request) -> Optional[int]:
    raw = request.headers.get("x-user-id")
    return int(raw) if raw else None


class ApiTestCase(unittest.TestCase):
    csrf_verifier = None

    def setUp(self):
        self.engine = create_engine(
            "sqlite+pysqlite://",
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        self.app = create_app(
            self.Session,
            identity_resolver=header_user,
            csrf_verifier=self.csrf_verifier,
            settings=Settings(),
        )
        self.client = TestClient(self.app)

    def tearDown(self):
        self.client.close()
        self.engine.dispose()

    def _giveaway(self, **overrides) -> int:
        now = datetime.now(timezone.utc)
        fields = dict(
            title="Launch party",
            must_be_logged_in=False,
            start_at=now - timedelta(hours=1),
            end_at=now + timedelta(hours=1),
            status=ACTIVE,
        )
        fields.update(overrides)
        with self.Session.begin() as session:
            giveaway = Giveaway(**fields)
            session.add(giveaway)
            session.flush()
            return giveaway.id

    def _user(self, name="Member") -> int:
        with self.Session.begin() as session:
            user = User(display_name=name)
            session.add(user)
            session.flush()
            return user.id

    def _join(self, giveaway_id, anon_id="anon-1", **body):
        payload = {"acceptTerms": True, "anonId": anon_id}
        payload.update(body)
        return self.client.post(f"/giveaways/{giveaway_id}/entries", json=payload)


class PublicGiveawayApiTests(ApiTestCase):
    def test_get_giveaway(self):
        giveaway_id = self._giveaway()
        res = self.client.get(f"/giveaways/{giveaway_id}")
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["id"], str(giveaway_id))
        self.assertTrue(body["isOpen"])
        self.assertFalse(body["mustBeLoggedIn"])

        missing = self.client.get("/giveaways/9999")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["code"], "not_found")

    def test_malformed_id_is_a_bad_request(self):
        self.assertEqual(self.client.get("/giveaways/abc").status_code, 400)

    def test_create_entry_and_duplicate(self):
        giveaway_id = self._giveaway()
        res = self._join(giveaway_id, finalConfirmations={"photoUsage": True})
        self.assertEqual(res.status_code, 201)
        self.assertTrue(res.json()["ok"])
        self.assertTrue(res.json()["id"])

        self.assertEqual(self._join(giveaway_id).status_code, 409)
        self.assertEqual(self._join(giveaway_id, anon_id="anon-2").status_code, 201)

        count = self.client.get(f"/giveaways/{giveaway_id}/count")
        self.assertEqual(count.json(), {"count": 2})
        check = self.client.get(
            f"/giveaways/{giveaway_id}/entries/check", params={"anonId": "anon-1"}
        )
        self.assertEqual(check.json(), {"registered": True})
        check = self.client.get(
            f"/giveaways/{giveaway_id}/entries/check", params={"anonId": "nobody"}
        )
        self.assertEqual(check.json(), {"registered": False})

    def test_entry_error_statuses(self):
        open_id = self._giveaway()
        login_id = self._giveaway(must_be_logged_in=True)
        draft_id = self._giveaway(status=DRAFT)

        self.assertEqual(self._join(open_id, acceptTerms=False).status_code, 400)
        self.assertEqual(self._join(open_id, anon_id=None).status_code, 400)
        self.assertEqual(self._join(9999).status_code, 404)
        self.assertEqual(self._join(draft_id).status_code, 403)

        res = self._join(login_id)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["code"], "login_required")

    def test_authenticated_user_takes_precedence(self):
        giveaway_id = self._giveaway(must_be_logged_in=True)
        user_id = self._user()
        headers = {"x-user-id": str(user_id)}
        res = self.client.post(
            f"/giveaways/{giveaway_id}/entries",
            json={"acceptTerms": True, "anonId": "ignored"},
            headers=headers,
        )
        self.assertEqual(res.status_code, 201)
        check = self.client.get(f"/giveaways/{giveaway_id}/entries/check", headers=headers)
        self.assertEqual(check.json(), {"registered": True})

    def test_participating_requires_user(self):
        self.assertEqual(self.client.get("/giveaways/participating").status_code, 401)

        giveaway_id = self._giveaway(require_photo_usage_consent=True)
        user_id = self._user()
        headers = {"x-user-id": str(user_id)}
        self.client.post(
            f"/giveaways/{giveaway_id}/entries", json={"acceptTerms": True}, headers=headers
        )
        body = self.client.get("/giveaways/participating", headers=headers).json()
        self.assertTrue(body["participating"])
        self.assertTrue(body["requirePhotoUsageConsent"])
        self.assertEqual(body["participations"][0]["giveaway"]["id"], str(giveaway_id))


class WinnersApiTests(ApiTestCase):
    def test_draw_and_read_winners(self):
        giveaway_id = self._giveaway(max_winners=2)
        for i in range(4):
            self._join(giveaway_id, anon_id=f"anon-{i}")

        res = self.client.post(f"/giveaways/{giveaway_id}/winners")
        self.assertEqual(res.status_code, 200)
        drawn = res.json()
        self.assertEqual(len(drawn["winners"]), 2)
        self.assertEqual(len(drawn["winnerProofs"]), 2)
        self.assertEqual(drawn["drawInputSize"], 4)
        self.assertEqual(len(drawn["winnersDetails"]), 2)

        again = self.client.post(f"/giveaways/{giveaway_id}/winners").json()
        self.assertEqual(again["winners"], drawn["winners"])
        self.assertEqual(again["drawSeed"], drawn["drawSeed"])
        self.assertEqual(
            self.client.get(f"/giveaways/{giveaway_id}/winners").json()["winners"],
            drawn["winners"],
        )

        # The draw closes the giveaway.
        self.assertEqual(self._join(giveaway_id, anon_id="late").status_code, 403)

    def test_reroll(self):
        giveaway_id = self._giveaway(max_winners=2)
        for i in range(3):
            self._join(giveaway_id, anon_id=f"anon-{i}")
        drawn = self.client.post(f"/giveaways/{giveaway_id}/winners").json()

        res = self.client.patch(f"/giveaways/{giveaway_id}/winners", json={"position": 1})
        self.assertEqual(res.status_code, 200)
        rerolled = res.json()
        self.assertEqual(rerolled["winners"][0], drawn["winners"][0])
        self.assertNotIn(rerolled["winners"][1], drawn["winners"])
        self.assertEqual(rerolled["winnerProofs"][0], drawn["winnerProofs"][0])
        self.assertEqual(rerolled["winnerProofs"][1]["kind"], "reroll")
        self.assertEqual(rerolled["drawSeed"], drawn["drawSeed"])

    def test_reroll_without_alternatives(self):
        giveaway_id = self._giveaway(max_winners=2)
        for i in range(2):
            self._join(giveaway_id, anon_id=f"anon-{i}")
        self.client.post(f"/giveaways/{giveaway_id}/winners")

        res = self.client.patch(f"/giveaways/{giveaway_id}/winners", json={"position": 0})
        self.assertEqual(res.status_code, 422)
        self.assertEqual(res.json()["code"], "no_alternative_candidates")

    def test_reroll_rejects_bad_positions(self):
        giveaway_id = self._giveaway()
        self._join(giveaway_id)
        path = f"/giveaways/{giveaway_id}/winners"
        self.assertEqual(self.client.patch(path, json={"position": 0}).status_code, 400)

        self.client.post(path)
        for position in (-1, 5, "x", "-1", True, None, 1.5):
            with self.subTest(position=position):
                res = self.client.patch(path, json={"position": position})
                self.assertEqual(res.status_code, 400)
        self.assertEqual(self.client.patch("/giveaways/9999/winners", json={"position": 0}).status_code, 404)
        self.assertEqual(self.client.patch(path, json={}).status_code, 400)

    def test_reroll_accepts_numeric_string_position(self):
        giveaway_id = self._giveaway(max_winners=2)
        for i in range(3):
            self._join(giveaway_id, anon_id=f"anon-{i}")
        drawn = self.client.post(f"/giveaways/{giveaway_id}/winners").json()

        res = self.client.patch(f"/giveaways/{giveaway_id}/winners", json={"position": "1"})
        self.assertEqual(res.status_code, 200)
        rerolled = res.json()
        self.assertEqual(rerolled["winners"][0], drawn["winners"][0])
        self.assertNotIn(rerolled["winners"][1], drawn["winners"])


class AdminApiTests(ApiTestCase):
    def test_giveaway_lifecycle(self):
        res = self.client.post(
            "/admin/giveaways",
            json={"title": "Admin made", "mustBeLoggedIn": False, "endAt": "2999-01-01T00:00:00Z"},
        )
        self.assertEqual(res.status_code, 201)
        giveaway_id = int(res.json()["id"])
        self.assertEqual(res.json()["status"], "draft")
        self.assertEqual(self._join(giveaway_id).status_code, 403)

        res = self.client.patch(f"/admin/giveaways/{giveaway_id}", json={"status": "active"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["status"], "active")
        entry_id = self._join(giveaway_id).json()["id"]

        listing = self.client.get(f"/admin/giveaways/{giveaway_id}/entries").json()
        self.assertEqual([e["id"] for e in listing["items"]], [entry_id])

        res = self.client.post(f"/admin/entries/{entry_id}/disqualify")
        self.assertTrue(res.json()["disqualified"])
        self.assertEqual(self.client.get(f"/giveaways/{giveaway_id}/count").json()["count"], 0)

        self.assertEqual(self.client.delete(f"/admin/giveaways/{giveaway_id}").json(), {"success": True})
        self.assertEqual(self.client.get(f"/giveaways/{giveaway_id}").status_code, 404)

    def test_invalid_configuration(self):
        res = self.client.post(
            "/admin/giveaways",
            json={"title": "Both", "endAt": "2999-01-01T00:00:00Z", "durationS": 60},
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(self.client.post("/admin/giveaways", json={"title": "x", "maxWinners": 0}).status_code, 400)


class CsrfApiTests(ApiTestCase):
    csrf_verifier = staticmethod(lambda token, user_id: token == "good-token")

    def test_state_changing_routes_need_token(self):
        giveaway_id = self._giveaway()
        res = self._join(giveaway_id)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["code"], "forbidden")

        res = self.client.post(
            f"/giveaways/{giveaway_id}/entries",
            json={"acceptTerms": True, "anonId": "anon-1"},
            headers={"x-csrf-token": "bad"},
        )
        self.assertEqual(res.status_code, 403)

        res = self.client.post(
            f"/giveaways/{giveaway_id}/entries",
            json={"acceptTerms": True, "anonId": "anon-1"},
            headers={"x-csrf-token": "good-token"},
        )
        self.assertEqual(res.status_code, 201)
        self.assertEqual(self.client.get(f"/giveaways/{giveaway_id}/count").json(), {"count": 1})


class RealtimeApiTests(ApiTestCase):
    def test_socket_receives_initial_and_updated_counts(self):
        giveaway_id = self._giveaway()
        self._join(giveaway_id, anon_id="before")

        with self.client.websocket_connect(f"/ws/giveaways/{giveaway_id}") as ws:
            self.assertEqual(ws.receive_json(), {"event": "count", "payload": {"count": 1}})
            self.assertEqual(self._join(giveaway_id, anon_id="after").status_code, 201)
            self.assertEqual(ws.receive_json(), {"event": "count", "payload": {"count": 2}})


if __name__ == "__main__":
    unittest.main()
