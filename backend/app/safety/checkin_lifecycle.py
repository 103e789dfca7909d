"""
checkin_lifecycle.py — Destination check-in state machine.

═══════════════════════════════════════════════════════════════════════════
STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    create ──► pending ──complete──► completed   (check_in_time = now)
                  ├─────cancel────► cancelled
                  └───mark_missed─► missed

Exactly one of the three transitions can win. Each is expressed as a
compare-and-swap on ``status == pending``; whoever loses the swap (a
second device, or the sweeper racing the user) gets InvalidStateError.

A late ``complete`` still counts as completed: lateness only matters
while nobody has acted. ``is_overdue`` reports it and the sweeper turns
it into ``missed`` plus a ``check_in_missed`` alert.

A missed check-in stays "awaiting escalation" until ``escalated_at`` is
stamped. The stamp is written only after the alert exists (or the user
was already in an active emergency), so an alert that failed to insert
is retried by the next sweep instead of being lost.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Tuple

from backend.app.core.errors import InvalidStateError, ValidationError
from backend.app.safety.models import (
    CheckIn,
    CheckInStatus,
    Coordinate,
    Transition,
    require_text,
    utcnow,
)

_PENDING = {"status": CheckInStatus.PENDING.value}


def create_check_in(
    user_id: str,
    destination: str,
    duration: timedelta,
    coordinate: Optional[Coordinate] = None,
    now: Optional[datetime] = None,
) -> CheckIn:
    """
    Start a check-in that expects arrival ``duration`` from now.

    Any positive duration is accepted; the preset list offered to
    clients is a convenience only.
    """
    place = require_text(destination, "destination")
    if not isinstance(duration, timedelta) or duration <= timedelta(0):
        raise ValidationError(
            "duration must be a positive time span",
            field="duration",
            value=str(duration),
        )
    created = now or utcnow()
    return CheckIn(
        user_id=user_id,
        destination=place,
        expected_arrival=created + duration,
        status=CheckInStatus.PENDING,
        coordinate=coordinate,
        created_at=created,
    )


def _require_pending(check_in: CheckIn, verb: str) -> None:
    if check_in.status != CheckInStatus.PENDING:
        raise InvalidStateError(
            "CheckIn",
            current=check_in.status.value,
            attempted=verb,
            id=check_in.id,
        )


def _apply(check_in: CheckIn, transition: Transition) -> CheckIn:
    fields = check_in.to_record()
    fields.update(transition.patch)
    return CheckIn.from_record(fields)


def complete(check_in: CheckIn, now: Optional[datetime] = None) -> Tuple[CheckIn, Transition]:
    """Arrival confirmed. Valid even after ``expected_arrival``."""
    _require_pending(check_in, "completed")
    arrived = now or utcnow()
    # check_in_time never precedes creation, even under clock skew
    arrived = max(arrived, check_in.created_at)
    transition = Transition(
        record_id=check_in.id,
        expected=dict(_PENDING),
        patch={"status": CheckInStatus.COMPLETED.value, "check_in_time": arrived},
    )
    return _apply(check_in, transition), transition


def cancel(check_in: CheckIn) -> Tuple[CheckIn, Transition]:
    """User aborted the trip."""
    _require_pending(check_in, "cancelled")
    transition = Transition(
        record_id=check_in.id,
        expected=dict(_PENDING),
        patch={"status": CheckInStatus.CANCELLED.value},
    )
    return _apply(check_in, transition), transition


def mark_missed(check_in: CheckIn) -> Tuple[CheckIn, Transition]:
    """
    Record that the user never checked in.

    Normally invoked by the sweeper for overdue check-ins. Not gated on
    ``is_overdue`` so an operator can force it; the pending-only swap is
    the only guard.
    """
    _require_pending(check_in, "marked missed")
    transition = Transition(
        record_id=check_in.id,
        expected=dict(_PENDING),
        patch={"status": CheckInStatus.MISSED.value},
    )
    return _apply(check_in, transition), transition


def is_overdue(check_in: CheckIn, now: Optional[datetime] = None) -> bool:
    """True iff still pending and past ``expected_arrival``. Never mutates."""
    now = now or utcnow()
    return check_in.status == CheckInStatus.PENDING and now > check_in.expected_arrival


def record_escalation(check_in: CheckIn, now: Optional[datetime] = None) -> Tuple[CheckIn, Transition]:
    """Stamp ``escalated_at`` on a missed check-in. Swaps only once."""
    if not check_in.awaiting_escalation:
        raise InvalidStateError(
            "CheckIn",
            current=check_in.status.value,
            attempted="escalated",
            id=check_in.id,
        )
    transition = Transition(
        record_id=check_in.id,
        expected={"status": CheckInStatus.MISSED.value, "escalated_at": None},
        patch={"escalated_at": now or utcnow()},
    )
    return _apply(check_in, transition), transition
