"""
alert_lifecycle.py — Emergency alert state machine.

Pure decision functions over already-fetched state. Nothing here reads
or writes the store; the service layer does the I/O and feeds the
results back in.

═══════════════════════════════════════════════════════════════════════════
STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    (no alert) ──activate──► active ──resolve──────────► resolved
                               │
                               └────mark_false_alarm───► false_alarm

    resolved and false_alarm are terminal.

═══════════════════════════════════════════════════════════════════════════
SINGLE ACTIVE ALERT
═══════════════════════════════════════════════════════════════════════════

At most one alert per user may be ``active``. ``activate`` rejects the
request when the fetched state already holds one, but that read is only
advisory: two devices can both read "nothing active" and both insert.
The store therefore carries a unique constraint on (user_id) among
active alerts and the insert itself raises ConflictError for the loser.
Both rejections surface to the caller as the same ConflictError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Tuple

from backend.app.core.errors import ConflictError, InvalidStateError
from backend.app.safety.models import (
    AlertStatus,
    AlertType,
    Coordinate,
    EmergencyAlert,
    Transition,
    optional_text,
    utcnow,
)


def activate(
    user_id: str,
    active_alerts: Iterable[EmergencyAlert],
    coordinate: Optional[Coordinate] = None,
    *,
    alert_type: AlertType = AlertType.SOS,
    location_description: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EmergencyAlert:
    """
    Create a new active alert for ``user_id``.

    Parameters
    ----------
    user_id : str
    active_alerts : iterable of EmergencyAlert
        Current active alerts of this user, as read from the store.
    coordinate : Coordinate | None
        Best-effort position; None when geolocation failed or was denied.

    Raises
    ------
    ConflictError
        The user already has an active alert.
    """
    existing = [a for a in active_alerts if a.user_id == user_id and a.is_active]
    if existing:
        raise ConflictError(
            "An emergency alert is already active",
            user_id=user_id,
            active_alert_id=existing[0].id,
        )

    return EmergencyAlert(
        user_id=user_id,
        alert_type=alert_type,
        status=AlertStatus.ACTIVE,
        coordinate=coordinate,
        location_description=optional_text(location_description),
        notes=optional_text(notes),
        created_at=now or utcnow(),
    )


def _close(
    alert: EmergencyAlert,
    target: AlertStatus,
    verb: str,
    now: Optional[datetime],
) -> Tuple[EmergencyAlert, Transition]:
    if alert.status != AlertStatus.ACTIVE:
        raise InvalidStateError(
            "EmergencyAlert",
            current=alert.status.value,
            attempted=verb,
            id=alert.id,
        )
    closed_at = now or utcnow()
    transition = Transition(
        record_id=alert.id,
        expected={"status": AlertStatus.ACTIVE.value},
        patch={"status": target.value, "resolved_at": closed_at},
    )
    # Build a fresh instance so the caller's copy stays untouched
    updated = EmergencyAlert(
        id=alert.id,
        user_id=alert.user_id,
        alert_type=alert.alert_type,
        status=target,
        coordinate=alert.coordinate,
        location_description=alert.location_description,
        notes=alert.notes,
        resolved_at=closed_at,
        created_at=alert.created_at,
    )
    return updated, transition


def resolve(
    alert: EmergencyAlert,
    now: Optional[datetime] = None,
) -> Tuple[EmergencyAlert, Transition]:
    """User marked themselves safe. Raises InvalidStateError unless active."""
    return _close(alert, AlertStatus.RESOLVED, "resolved", now)


def mark_false_alarm(
    alert: EmergencyAlert,
    now: Optional[datetime] = None,
) -> Tuple[EmergencyAlert, Transition]:
    """Alert raised by mistake. Same precondition as resolve."""
    return _close(alert, AlertStatus.FALSE_ALARM, "marked false_alarm", now)
