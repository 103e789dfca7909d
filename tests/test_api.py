"""
test_api.py — HTTP surface tests.

Each test gets a fresh in-memory SafetyService injected through
``app.dependency_overrides``. The lifespan (and with it the background
sweeper) is not started.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from backend.app.api.deps import get_service
from backend.app.core.errors import UnauthenticatedError
from backend.app.core.logging_config import JSONFormatter
from backend.app.main import app
from backend.app.safety.service import SafetyService
from backend.app.store.memory import InMemoryRecordStore


USER = {"X-User-ID": "user-1"}
OTHER = {"X-User-ID": "user-2"}


class _Clock:
    """Frozen UTC clock the test moves by hand."""

    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class _JsonCapture(logging.Handler):
    """Renders each record as it is emitted, while its request context is live."""

    def __init__(self):
        super().__init__(logging.INFO)
        self.entries = []

    def emit(self, record: logging.LogRecord) -> None:
        self.entries.append(json.loads(JSONFormatter().format(record)))


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def client(clock):
    service = SafetyService(InMemoryRecordStore(), clock=clock)
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def access_log():
    logger = logging.getLogger("backend.app.core.middleware")
    capture = _JsonCapture()
    previous = logger.level
    logger.addHandler(capture)
    logger.setLevel(logging.INFO)
    yield capture.entries
    logger.removeHandler(capture)
    logger.setLevel(previous)


def _make_contact(client: TestClient, name: str = "Ravi", headers=USER) -> dict:
    resp = client.post("/api/v1/contacts", headers=headers,
                       json={"contact_name": name, "contact_phone": "+919800000000"})
    assert resp.status_code == 201
    return resp.json()


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Root, health, identity
# ═══════════════════════════════════════════════════════════════════════════

class TestRootAndHealth:

    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == "SafeCircle"
        assert "emergency-alerts" in body["modules"]

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_health_reports_store(self, client):
        body = client.get("/health").json()
        names = {c["name"] for c in body["components"]}
        assert {"store", "redis", "check_in_sweeper"} <= names
        store = next(c for c in body["components"] if c["name"] == "store")
        assert store["status"] == "healthy"

    def test_readiness_not_unhealthy(self, client):
        assert client.get("/health/ready").status_code == 200

    def test_request_id_header(self, client):
        resp = client.get("/health/live")
        assert "X-Request-ID" in resp.headers


class TestIdentity:

    def test_missing_user_header(self, client):
        resp = client.get("/api/v1/alerts")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHENTICATED"

    def test_blank_user_header(self, client):
        assert client.get("/api/v1/alerts", headers={"X-User-ID": "  "}).status_code == 401

    def test_unauthenticated_error_shape(self):
        exc = UnauthenticatedError(header="X-User-ID")
        assert exc.status_code == 401
        assert exc.to_body()["error"]["details"] == {"header": "X-User-ID"}


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertRoutes:

    def test_sos_without_body(self, client):
        resp = client.post("/api/v1/alerts/sos", headers=USER)
        assert resp.status_code == 201
        body = resp.json()
        assert body["alert"]["status"] == "active"
        assert body["alert"]["location"] is None
        assert body["fanout"]["mode"] == "none"

    def test_sos_with_location_and_contact(self, client):
        _make_contact(client)
        resp = client.post("/api/v1/alerts/sos", headers=USER, json={
            "location": {"latitude": 13.08, "longitude": 80.27},
            "notes": "near the station",
        })
        body = resp.json()
        assert body["alert"]["location"] == {"latitude": 13.08, "longitude": 80.27}
        assert body["fanout"]["mode"] == "trusted_contacts"
        assert body["fanout"]["recipient_count"] == 1

    def test_sos_with_location_error(self, client):
        resp = client.post("/api/v1/alerts/sos", headers=USER,
                           json={"location": {"error": "permission denied"}})
        assert resp.status_code == 201
        assert resp.json()["alert"]["location"] is None

    def test_second_sos_conflicts(self, client):
        client.post("/api/v1/alerts/sos", headers=USER)
        resp = client.post("/api/v1/alerts/sos", headers=USER)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "CONFLICT"

    def test_resolve_then_invalid_state(self, client):
        alert_id = client.post("/api/v1/alerts/sos", headers=USER).json()["alert"]["id"]
        resp = client.post(f"/api/v1/alerts/{alert_id}/resolve", headers=USER)
        assert resp.status_code == 200
        assert resp.json()["status"] == "resolved"

        again = client.post(f"/api/v1/alerts/{alert_id}/false-alarm", headers=USER)
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "INVALID_STATE"

    def test_false_alarm(self, client):
        alert_id = client.post("/api/v1/alerts/sos", headers=USER).json()["alert"]["id"]
        resp = client.post(f"/api/v1/alerts/{alert_id}/false-alarm", headers=USER)
        assert resp.json()["status"] == "false_alarm"

    def test_other_user_gets_404(self, client):
        alert_id = client.post("/api/v1/alerts/sos", headers=USER).json()["alert"]["id"]
        resp = client.post(f"/api/v1/alerts/{alert_id}/resolve", headers=OTHER)
        assert resp.status_code == 404

    def test_active_and_history(self, client):
        assert client.get("/api/v1/alerts/active", headers=USER).json() == {"alert": None}
        alert_id = client.post("/api/v1/alerts/sos", headers=USER).json()["alert"]["id"]
        assert client.get("/api/v1/alerts/active", headers=USER).json()["alert"]["id"] == alert_id
        history = client.get("/api/v1/alerts", headers=USER).json()
        assert history["count"] == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Check-ins
# ═══════════════════════════════════════════════════════════════════════════

class TestCheckInRoutes:

    def _create(self, client, minutes: int = 30) -> dict:
        resp = client.post("/api/v1/check-ins", headers=USER,
                           json={"destination": "Home", "duration_minutes": minutes})
        assert resp.status_code == 201
        return resp.json()

    def test_create_and_complete(self, client):
        check_in = self._create(client)
        assert check_in["status"] == "pending"
        resp = client.post(f"/api/v1/check-ins/{check_in['id']}/complete", headers=USER)
        assert resp.json()["status"] == "completed"
        assert resp.json()["check_in_time"] is not None

    def test_cancel_then_missed_rejected(self, client):
        check_in = self._create(client)
        client.post(f"/api/v1/check-ins/{check_in['id']}/cancel", headers=USER)
        resp = client.post(f"/api/v1/check-ins/{check_in['id']}/missed", headers=USER)
        assert resp.status_code == 409

    def test_zero_duration_rejected(self, client):
        resp = client.post("/api/v1/check-ins", headers=USER,
                           json={"destination": "Home", "duration_minutes": 0})
        assert resp.status_code == 422

    def test_blank_destination_rejected(self, client):
        resp = client.post("/api/v1/check-ins", headers=USER,
                           json={"destination": "  ", "duration_minutes": 10})
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "destination"

    def test_list_with_status(self, client):
        a = self._create(client)
        self._create(client)
        client.post(f"/api/v1/check-ins/{a['id']}/cancel", headers=USER)
        pending = client.get("/api/v1/check-ins", headers=USER, params={"status": "pending"})
        assert pending.json()["count"] == 1
        assert client.get("/api/v1/check-ins", headers=USER).json()["count"] == 2

    def test_invalid_status_filter(self, client):
        resp = client.get("/api/v1/check-ins", headers=USER, params={"status": "lost"})
        assert resp.status_code == 422

    def test_durations(self, client):
        durations = client.get("/api/v1/check-ins/durations").json()["durations"]
        assert durations[0] == {"minutes": 15, "label": "15 minutes"}
        assert {"minutes": 60, "label": "1 hour"} in durations

    def test_sweep_nothing_due(self, client):
        self._create(client)
        report = client.post("/api/v1/check-ins/sweep", headers=USER).json()
        assert report["examined"] == 1
        assert report["missed"] == []

    def test_sweep_scoped_to_caller(self, client, clock):
        check_in = self._create(client, minutes=15)
        clock.now += timedelta(hours=2)

        report = client.post("/api/v1/check-ins/sweep", headers=OTHER).json()

        assert report["examined"] == 0
        assert report["missed"] == []
        assert report["alerts_raised"] == []
        pending = client.get("/api/v1/check-ins", headers=USER, params={"status": "pending"})
        assert pending.json()["count"] == 1

        own = client.post("/api/v1/check-ins/sweep", headers=USER).json()
        assert own["missed"] == [check_in["id"]]
        assert len(own["alerts_raised"]) == 1

    def test_manual_missed_raises_alert(self, client):
        check_in = self._create(client)
        resp = client.post(f"/api/v1/check-ins/{check_in['id']}/missed", headers=USER)
        assert resp.json()["status"] == "missed"
        assert resp.json()["escalated_at"] is not None
        alert = client.get("/api/v1/alerts/active", headers=USER).json()["alert"]
        assert alert["alert_type"] == "check_in_missed"

    def test_multi_day_duration_accepted(self, client):
        check_in = self._create(client, minutes=3 * 24 * 60)
        assert check_in["status"] == "pending"


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Contacts, reports, safe zones, profile
# ═══════════════════════════════════════════════════════════════════════════

class TestContactRoutes:

    def test_crud(self, client):
        contact = _make_contact(client)
        assert contact["is_active"] is True

        listing = client.get("/api/v1/contacts", headers=USER).json()
        assert listing["count"] == 1
        assert listing["active_count"] == 1

        patched = client.patch(f"/api/v1/contacts/{contact['id']}", headers=USER,
                               json={"is_active": False}).json()
        assert patched["is_active"] is False

        toggled = client.post(f"/api/v1/contacts/{contact['id']}/toggle", headers=USER).json()
        assert toggled["is_active"] is True

        assert client.delete(f"/api/v1/contacts/{contact['id']}", headers=USER).status_code == 204
        assert client.get("/api/v1/contacts", headers=USER).json()["count"] == 0

    def test_eligible_with_profile_fallback(self, client):
        client.put("/api/v1/profile", headers=USER, json={
            "full_name": "Asha", "emergency_contact_phone": "+44 7700",
        })
        plan = client.get("/api/v1/contacts/eligible", headers=USER).json()
        assert plan["mode"] == "profile_fallback"
        assert plan["fallback"]["phone"] == "+44 7700"

    def test_foreign_contact_404(self, client):
        contact = _make_contact(client)
        assert client.delete(f"/api/v1/contacts/{contact['id']}", headers=OTHER).status_code == 404

    def test_missing_phone(self, client):
        resp = client.post("/api/v1/contacts", headers=USER,
                           json={"contact_name": "Ravi", "contact_phone": " "})
        assert resp.status_code == 422


class TestReportRoutes:

    def test_anonymous_report_access_line_omits_caller(self, client, access_log):
        resp = client.post("/api/v1/reports", headers={"X-User-ID": "whistleblower-42"}, json={
            "incident_type": "harassment",
            "description": "Followed from the bus stop",
            "location_description": "Station Rd",
            "is_anonymous": True,
        })
        assert resp.status_code == 201

        line = next(e for e in access_log if e["message"].startswith("POST /api/v1/reports"))
        assert line["context"]["anonymous"] is True
        assert "user_id" not in line["context"]
        assert "user_id" not in line
        assert "whistleblower-42" not in json.dumps(access_log)

    def test_named_report_access_line_keeps_caller(self, client, access_log):
        client.post("/api/v1/reports", headers=USER, json={
            "incident_type": "harassment",
            "description": "d",
            "location_description": "l",
        })
        line = next(e for e in access_log if e["message"].startswith("POST /api/v1/reports"))
        assert line["context"]["user_id"] == "user-1"

    def test_types(self, client):
        values = [t["value"] for t in client.get("/api/v1/reports/types").json()["types"]]
        assert "harassment" in values and "other" in values

    def test_anonymous_report_hidden_from_listing(self, client):
        resp = client.post("/api/v1/reports", headers=USER, json={
            "incident_type": "stalking",
            "description": "Followed home",
            "location_description": "Station Rd",
            "is_anonymous": True,
        })
        assert resp.status_code == 201
        assert resp.json()["is_anonymous"] is True
        assert client.get("/api/v1/reports", headers=USER).json()["count"] == 0

    def test_named_report_listed(self, client):
        client.post("/api/v1/reports", headers=USER, json={
            "incident_type": "something-new",
            "description": "d",
            "location_description": "l",
            "incident_date": "2026-03-01T21:00:00",
        })
        reports = client.get("/api/v1/reports", headers=USER).json()["reports"]
        assert reports[0]["incident_type"] == "other"
        assert reports[0]["incident_date"] == "2026-03-01T21:00:00+00:00"


class TestSafeZoneRoutes:

    def test_register_and_filter(self, client):
        resp = client.post("/api/v1/safe-zones", headers=USER, json={
            "name": "T. Nagar Police Station", "type": "police", "address": "Pondy Bazaar",
            "latitude": 13.04, "longitude": 80.23,
        })
        assert resp.status_code == 201
        assert resp.json()["verified"] is False

        assert client.get("/api/v1/safe-zones", params={"type": "police"}).json()["count"] == 1
        assert client.get("/api/v1/safe-zones", params={"type": "all"}).json()["count"] == 1
        assert client.get("/api/v1/safe-zones", params={"type": "hospital"}).json()["count"] == 0

    def test_invalid_type(self, client):
        assert client.get("/api/v1/safe-zones", params={"type": "bakery"}).status_code == 422

    def test_out_of_range_coordinate(self, client):
        resp = client.post("/api/v1/safe-zones", headers=USER, json={
            "name": "X", "type": "shelter", "address": "Y", "latitude": 95, "longitude": 0,
        })
        assert resp.status_code == 422


class TestProfileRoutes:

    def test_missing_then_created(self, client):
        assert client.get("/api/v1/profile", headers=USER).status_code == 404
        resp = client.put("/api/v1/profile", headers=USER, json={"full_name": " Asha "})
        assert resp.json()["full_name"] == "Asha"
        assert client.get("/api/v1/profile", headers=USER).json()["id"] == "user-1"
