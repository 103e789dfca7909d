"""
test_alert_lifecycle.py — Tests for the emergency alert state machine.

Covers:
    • Activation (single active alert per user, optional location)
    • resolve / mark_false_alarm from active only
    • Exactly one terminal transition per alert
    • Transitions as compare-and-swap patches

Run with:
    pytest tests/test_alert_lifecycle.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.app.core.errors import ConflictError, InvalidStateError
from backend.app.safety import alert_lifecycle
from backend.app.safety.models import AlertStatus, AlertType, Coordinate, EmergencyAlert


NOW = datetime(2026, 3, 14, 22, 5, tzinfo=timezone.utc)


def _make_alert(user_id: str = "u1", status: AlertStatus = AlertStatus.ACTIVE) -> EmergencyAlert:
    return EmergencyAlert(user_id=user_id, status=status, created_at=NOW)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Activation
# ═══════════════════════════════════════════════════════════════════════════

class TestActivate:

    def test_creates_active_sos(self):
        alert = alert_lifecycle.activate("u1", [], now=NOW)
        assert alert.status == AlertStatus.ACTIVE
        assert alert.alert_type == AlertType.SOS
        assert alert.user_id == "u1"
        assert alert.created_at == NOW
        assert alert.resolved_at is None

    def test_without_location(self):
        alert = alert_lifecycle.activate("u1", [], None, now=NOW)
        assert alert.coordinate is None

    def test_with_location(self):
        c = Coordinate(12.97, 77.59)
        assert alert_lifecycle.activate("u1", [], c).coordinate == c

    def test_conflict_when_active_exists(self):
        existing = _make_alert()
        with pytest.raises(ConflictError) as exc:
            alert_lifecycle.activate("u1", [existing])
        assert exc.value.details["active_alert_id"] == existing.id

    def test_closed_alerts_do_not_block(self):
        history = [_make_alert(status=AlertStatus.RESOLVED),
                   _make_alert(status=AlertStatus.FALSE_ALARM)]
        alert = alert_lifecycle.activate("u1", history)
        assert alert.is_active

    def test_other_users_alerts_do_not_block(self):
        alert = alert_lifecycle.activate("u1", [_make_alert(user_id="u2")])
        assert alert.user_id == "u1"

    def test_blank_text_stored_as_none(self):
        alert = alert_lifecycle.activate("u1", [], location_description="  ", notes="")
        assert alert.location_description is None
        assert alert.notes is None

    def test_check_in_missed_type(self):
        alert = alert_lifecycle.activate("u1", [], alert_type=AlertType.CHECK_IN_MISSED)
        assert alert.alert_type == AlertType.CHECK_IN_MISSED


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Closing transitions
# ═══════════════════════════════════════════════════════════════════════════

class TestResolve:

    def test_resolve_active(self):
        alert = _make_alert()
        later = NOW + timedelta(minutes=4)
        updated, transition = alert_lifecycle.resolve(alert, now=later)
        assert updated.status == AlertStatus.RESOLVED
        assert updated.resolved_at == later
        assert transition.record_id == alert.id
        assert transition.expected == {"status": "active"}
        assert transition.patch == {"status": "resolved", "resolved_at": later}

    def test_input_not_mutated(self):
        alert = _make_alert()
        alert_lifecycle.resolve(alert, now=NOW)
        assert alert.status == AlertStatus.ACTIVE
        assert alert.resolved_at is None

    def test_resolve_twice_fails(self):
        resolved, _ = alert_lifecycle.resolve(_make_alert(), now=NOW)
        with pytest.raises(InvalidStateError) as exc:
            alert_lifecycle.resolve(resolved)
        assert exc.value.details["current_status"] == "resolved"
        assert exc.value.error_code == "INVALID_STATE"

    def test_fields_other_than_status_preserved(self):
        alert = alert_lifecycle.activate(
            "u1", [], Coordinate(1.0, 2.0), location_description="Park", now=NOW,
        )
        updated, _ = alert_lifecycle.resolve(alert, now=NOW)
        assert updated.coordinate == alert.coordinate
        assert updated.location_description == "Park"
        assert updated.created_at == alert.created_at


class TestFalseAlarm:

    def test_false_alarm_from_active(self):
        updated, transition = alert_lifecycle.mark_false_alarm(_make_alert(), now=NOW)
        assert updated.status == AlertStatus.FALSE_ALARM
        assert updated.resolved_at == NOW
        assert transition.patch["status"] == "false_alarm"

    def test_false_alarm_after_resolve_fails(self):
        resolved, _ = alert_lifecycle.resolve(_make_alert(), now=NOW)
        with pytest.raises(InvalidStateError):
            alert_lifecycle.mark_false_alarm(resolved)

    def test_resolve_after_false_alarm_fails(self):
        closed, _ = alert_lifecycle.mark_false_alarm(_make_alert(), now=NOW)
        with pytest.raises(InvalidStateError):
            alert_lifecycle.resolve(closed)

    @pytest.mark.parametrize("close", [alert_lifecycle.resolve, alert_lifecycle.mark_false_alarm])
    def test_exactly_one_terminal_transition(self, close):
        closed, _ = close(_make_alert(), now=NOW)
        for other in (alert_lifecycle.resolve, alert_lifecycle.mark_false_alarm):
            with pytest.raises(InvalidStateError):
                other(closed)
