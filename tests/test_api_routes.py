"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Integration tests for the intake, ledger reads, the client hero job and
the admin log endpoints using the FastAPI TestClient.

These tests verify:
- The intake contract (200 / 400 / 500 bodies)
- eventId replays
- Ledger and badge reads
- Health endpoint availability
"""

from __future__ import annotations

from unittest.mock import patch

from sqlalchemy.orm import Session

from deskpoints.database.models import BadgeId
from deskpoints.engine.events import LedgerWriteError
from deskpoints.services import badge_service


def _award(client, **overrides):
    body = {
        "eventType": "ATTACHMENT_ADDED",
        "userId": "u1",
        "username": "Alice",
        "data": {"ticketId": 1, "fileName": "trace.log"},
    }
    body.update(overrides)
    return client.post("/api/award-points", json=body)


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Intake
# ===========================================================================
class TestAwardPoints:
    def test_success(self, client):
        resp = _award(client)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "pointsAwarded": 3}

    def test_numeric_user_id_accepted(self, client):
        resp = _award(client, userId=42)
        assert resp.status_code == 200
        assert client.get("/api/users/42/points").json()["balance"] == 3

    def test_missing_event_type(self, client):
        resp = _award(client, eventType=None)
        assert resp.status_code == 400
        assert "eventType" in resp.json()["error"]

    def test_blank_username(self, client):
        resp = _award(client, username="")
        assert resp.status_code == 400
        assert "username" in resp.json()["error"]

    def test_malformed_body(self, client):
        resp = client.post("/api/award-points", json={"eventType": "X", "data": "not-a-dict"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request body"}

    def test_unknown_type_scores_zero(self, client):
        resp = _award(client, eventType="SOMETHING_NEW")
        assert resp.status_code == 200
        assert resp.json()["pointsAwarded"] == 0

    def test_replay_flagged(self, client):
        first = _award(client, eventId="evt-42")
        second = _award(client, eventId="evt-42")
        assert first.json() == {"success": True, "pointsAwarded": 3}
        assert second.json() == {"success": True, "pointsAwarded": 3, "duplicate": True}
        assert len(client.get("/api/users/u1/points").json()["events"]) == 1

    def test_ledger_failure_is_500(self, client):
        with patch(
            "deskpoints.api.routes.events.process_event",
            side_effect=LedgerWriteError("Ledger write failed: disk full"),
        ):
            resp = _award(client)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Ledger write failed: disk full"}


# ===========================================================================
# Ledger reads
# ===========================================================================
class TestLedgerReads:
    def test_points_and_events(self, client):
        _award(client)
        _award(client, eventType="NOTE_DELETED", data={"ticketId": 1})
        body = client.get("/api/users/u1/points").json()
        assert body["balance"] == -1
        assert [e["event_type"] for e in body["events"]] == ["ATTACHMENT_ADDED", "NOTE_DELETED"]
        assert body["events"][0]["details"]["reason"] == "Added attachment: trace.log"

    def test_event_type_filter(self, client):
        _award(client)
        _award(client, eventType="NOTE_DELETED", data={"ticketId": 1})
        body = client.get("/api/users/u1/points", params={"event_type": "NOTE_DELETED"}).json()
        assert [e["points_awarded"] for e in body["events"]] == [-4]

    def test_unknown_user(self, client):
        assert client.get("/api/users/ghost/points").json() == {
            "userId": "ghost", "balance": 0, "events": [],
        }

    def test_delete_event(self, client):
        _award(client)
        event_id = client.get("/api/users/u1/points").json()["events"][0]["id"]
        resp = client.delete(f"/api/ledger/events/{event_id}")
        assert resp.status_code == 200
        assert client.get("/api/users/u1/points").json()["balance"] == 0

    def test_delete_reverted_event_conflicts(self, client):
        _award(client, eventType="TICKET_OPENED", data={"ticketId": 5, "priority": "Low"})
        _award(client, eventType="TICKET_DELETED", data={"ticketId": 5})
        events = client.get("/api/users/u1/points").json()["events"]
        opened_id = events[0]["id"]

        resp = client.delete(f"/api/ledger/events/{opened_id}")

        assert resp.status_code == 409
        assert "has been reversed" in resp.json()["error"]
        assert client.get("/api/users/u1/points").json()["balance"] == 0

    def test_delete_missing_event(self, client):
        resp = client.delete("/api/ledger/events/9999")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Ledger event not found"}

    def test_badges_for_day(self, client, db_engine, now):
        with Session(db_engine) as session:
            badge_service.award_badge(session, "u1", "Alice", BadgeId.SNIPER, now.date(), now)
            session.commit()
        body = client.get("/api/users/u1/badges", params={"day": "2026-03-11"}).json()
        assert body["date"] == "2026-03-11"
        [badge] = body["badges"]
        assert badge["badge_id"] == "sniper"
        assert badge["emoji"] == "🎯"


# ===========================================================================
# Jobs and admin
# ===========================================================================
class TestJobs:
    def test_top_scorer_weekend(self, client):
        resp = client.post("/api/jobs/top-scorer", json={"day": "2026-03-08"})
        assert resp.status_code == 200
        assert resp.json()["skipped"] == "weekend"

    def test_top_scorer_no_points(self, client):
        resp = client.post("/api/jobs/top-scorer", json={"day": "2026-03-10"})
        assert resp.status_code == 200
        assert resp.json()["winner"] is None


class TestAdminLogs:
    def test_read_logs(self, client):
        resp = client.get("/api/admin/logs", params={"tail": 10})
        assert resp.status_code == 200
        assert "entries" in resp.json()

    def test_invalid_level(self, client):
        resp = client.put("/api/admin/logs/level", json={"level": "LOUD"})
        assert resp.status_code == 400

    def test_set_level(self, client):
        resp = client.put("/api/admin/logs/level", json={"level": "warning"})
        assert resp.status_code == 200
        assert resp.json() == {"level": "WARNING"}
