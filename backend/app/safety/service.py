"""
service.py — Async orchestration of the safety lifecycle engine.

Each operation follows the same shape:

    1. read the current records for the caller from the store
    2. ask the pure lifecycle function for a decision
    3. persist it through a conditional store write
    4. return the resulting record (and, for alerts, the fan-out plan)

There is no ambient "current user": every method takes the caller's
``user_id`` explicitly and applies the ownership rules itself.

═══════════════════════════════════════════════════════════════════════════
RACE HANDLING
═══════════════════════════════════════════════════════════════════════════

    Race                                   Guard                       Loser sees
    ────────────────────────────────────   ─────────────────────────   ─────────────────
    two SOS activations for one user       unique active-alert index   ConflictError
    complete / cancel / missed on one      CAS status == pending       InvalidStateError
      check-in (user vs sweeper, 2 devices)
    resolve / false_alarm on one alert     CAS status == active        InvalidStateError

Nothing is retried. An SOS that fails is reported to the caller, never
silently dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from backend.app.core.cache import NamespacedCache
from backend.app.core.config import settings
from backend.app.core.errors import ConflictError, InvalidStateError, NotFoundError
from backend.app.core.logging_config import bind_context, set_request_context, suppress_identity
from backend.app.safety import alert_lifecycle, checkin_lifecycle, contacts as contact_rules
from backend.app.safety.geolocation import GeolocationProvider, acquire_position
from backend.app.safety.incident_ledger import submit_report as build_report
from backend.app.safety.models import (
    AlertStatus,
    AlertType,
    CheckIn,
    CheckInStatus,
    EmergencyAlert,
    IncidentReport,
    SafeZone,
    TrustedContact,
    UserProfile,
    optional_text,
    utcnow,
)
from backend.app.safety.notification import FanOutPlan, resolve_fanout
from backend.app.safety.ownership import require_owner
from backend.app.safety.safe_zones import create_safe_zone, filter_safe_zones, parse_zone_type
from backend.app.store.base import Collection, RecordStore

logger = logging.getLogger(__name__)

_NEWEST_FIRST = [("created_at", True)]
_zone_cache = NamespacedCache("safe_zones", ttl=settings.SAFE_ZONE_CACHE_TTL)


@dataclass
class ActivationResult:
    """A freshly activated alert plus who must be told about it."""
    alert: EmergencyAlert
    fanout: FanOutPlan

    def to_dict(self) -> Dict[str, Any]:
        return {"alert": self.alert.to_dict(), "fanout": self.fanout.to_dict()}


@dataclass
class SweepReport:
    """Outcome of one missed check-in sweep."""
    started_at: datetime
    examined: int = 0
    missed: List[str] = field(default_factory=list)
    alerts_raised: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # lost the race to the user
    failed: List[str] = field(default_factory=list)  # escalation retried next pass

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "examined": self.examined,
            "missed": self.missed,
            "alerts_raised": self.alerts_raised,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return settings.DEFAULT_LIST_LIMIT
    return max(1, min(limit, settings.MAX_LIST_LIMIT))


class SafetyService:
    """
    Entry point for every user-facing safety operation.

    Parameters
    ----------
    store : RecordStore
        Persistence for all collections.
    clock : callable, optional
        Returns the current UTC time; injectable for tests and sweeps.
    """

    def __init__(self, store: RecordStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utcnow

    # ── Profiles ─────────────────────────────────────────────────────────

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        row = await self.store.get(Collection.PROFILES, user_id)
        return UserProfile.from_record(row) if row else None

    async def update_profile(
        self,
        user_id: str,
        *,
        full_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        emergency_contact_name: Optional[str] = None,
        emergency_contact_phone: Optional[str] = None,
    ) -> UserProfile:
        """Create or overwrite the profile attributes the user can edit."""
        now = self.clock()
        patch = {
            "full_name": (full_name or "").strip(),
            "phone_number": optional_text(phone_number),
            "emergency_contact_name": optional_text(emergency_contact_name),
            "emergency_contact_phone": optional_text(emergency_contact_phone),
            "updated_at": now,
        }
        existing = await self.store.get(Collection.PROFILES, user_id)
        if existing is None:
            profile = UserProfile(id=user_id, created_at=now, **patch)
            await self.store.insert(Collection.PROFILES, profile.to_record())
        else:
            row = await self.store.update(Collection.PROFILES, user_id, patch)
            profile = UserProfile.from_record(row)
        logger.info("Profile updated for %s", user_id, extra={"user_id": user_id})
        return profile

    # ── Trusted contacts ─────────────────────────────────────────────────

    async def list_contacts(self, user_id: str) -> List[TrustedContact]:
        """All of the user's contacts, active or not, newest first."""
        rows = await self.store.query(
            Collection.TRUSTED_CONTACTS, {"user_id": user_id}, order_by=_NEWEST_FIRST,
        )
        return [TrustedContact.from_record(r) for r in rows]

    async def add_contact(
        self,
        user_id: str,
        contact_name: str,
        contact_phone: str,
        contact_email: Optional[str] = None,
        relationship: Optional[str] = None,
    ) -> TrustedContact:
        contact = contact_rules.create_contact(
            user_id, contact_name, contact_phone, contact_email, relationship,
            now=self.clock(),
        )
        await self.store.insert(Collection.TRUSTED_CONTACTS, contact.to_record())
        logger.info(
            "Trusted contact %s added for %s", contact.id, user_id,
            extra={"user_id": user_id, "contact_id": contact.id},
        )
        return contact

    async def _owned_contact(self, user_id: str, contact_id: str) -> TrustedContact:
        row = await self.store.get(Collection.TRUSTED_CONTACTS, contact_id)
        contact = TrustedContact.from_record(row) if row else None
        return require_owner(contact, user_id, "TrustedContact", contact_id)

    async def set_contact_active(self, user_id: str, contact_id: str, is_active: bool) -> TrustedContact:
        contact = await self._owned_contact(user_id, contact_id)
        updated, patch = contact_rules.set_active(contact, is_active)
        await self.store.update(Collection.TRUSTED_CONTACTS, contact_id, patch)
        logger.info(
            "Trusted contact %s %s", contact_id, "activated" if is_active else "deactivated",
            extra={"user_id": user_id, "contact_id": contact_id},
        )
        return updated

    async def toggle_contact(self, user_id: str, contact_id: str) -> TrustedContact:
        contact = await self._owned_contact(user_id, contact_id)
        return await self.set_contact_active(user_id, contact_id, not contact.is_active)

    async def delete_contact(self, user_id: str, contact_id: str) -> None:
        await self._owned_contact(user_id, contact_id)
        await self.store.delete(Collection.TRUSTED_CONTACTS, contact_id)
        logger.info(
            "Trusted contact %s deleted", contact_id,
            extra={"user_id": user_id, "contact_id": contact_id},
        )

    async def eligible_contacts(self, user_id: str) -> FanOutPlan:
        """Who would be notified if the user raised an alert right now."""
        contacts = await self.list_contacts(user_id)
        profile = await self.get_profile(user_id)
        return resolve_fanout(contacts, profile)

    # ── Emergency alerts ─────────────────────────────────────────────────

    async def _active_alerts(self, user_id: str) -> List[EmergencyAlert]:
        rows = await self.store.query(
            Collection.EMERGENCY_ALERTS,
            {"user_id": user_id, "status": AlertStatus.ACTIVE.value},
            order_by=_NEWEST_FIRST,
        )
        return [EmergencyAlert.from_record(r) for r in rows]

    async def _raise_alert(
        self,
        user_id: str,
        alert_type: AlertType,
        geolocation: Optional[GeolocationProvider] = None,
        location_description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ActivationResult:
        active = await self._active_alerts(user_id)
        coordinate = await acquire_position(geolocation)

        alert = alert_lifecycle.activate(
            user_id,
            active,
            coordinate,
            alert_type=alert_type,
            location_description=location_description,
            notes=notes,
            now=self.clock(),
        )
        # The unique index is the real guard; a concurrent activation that
        # slipped past the read above fails here with ConflictError.
        await self.store.insert(Collection.EMERGENCY_ALERTS, alert.to_record())
        bind_context(alert_id=alert.id)

        fanout = await self.eligible_contacts(user_id)
        logger.warning(
            "Emergency alert %s activated for %s [%s], location=%s",
            alert.id, user_id, alert_type.value,
            "yes" if coordinate else "unavailable",
            extra={
                "user_id": user_id,
                "alert_id": alert.id,
                "alert_type": alert_type.value,
                "fanout_mode": fanout.mode.value,
                "recipient_count": fanout.recipient_count,
            },
        )
        if fanout.is_degraded:
            logger.warning(
                "Alert %s fan-out degraded: mode=%s recipients=%d",
                alert.id, fanout.mode.value, fanout.recipient_count,
                extra={"alert_id": alert.id, "fanout_mode": fanout.mode.value},
            )
        return ActivationResult(alert=alert, fanout=fanout)

    async def activate_sos(
        self,
        user_id: str,
        geolocation: Optional[GeolocationProvider] = None,
        location_description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ActivationResult:
        """
        Raise an SOS alert.

        Raises ConflictError when the user already has an active alert,
        whether the pre-read or the store's unique constraint caught it.
        """
        return await self._raise_alert(
            user_id, AlertType.SOS, geolocation, location_description, notes,
        )

    async def _owned_alert(self, user_id: str, alert_id: str) -> EmergencyAlert:
        row = await self.store.get(Collection.EMERGENCY_ALERTS, alert_id)
        alert = EmergencyAlert.from_record(row) if row else None
        return require_owner(alert, user_id, "EmergencyAlert", alert_id)

    async def _close_alert(self, user_id: str, alert_id: str, close) -> EmergencyAlert:
        alert = await self._owned_alert(user_id, alert_id)
        updated, transition = close(alert, now=self.clock())
        await self.store.update(
            Collection.EMERGENCY_ALERTS, alert_id, transition.patch, expected=transition.expected,
        )
        logger.info(
            "Emergency alert %s → %s", alert_id, updated.status.value,
            extra={"user_id": user_id, "alert_id": alert_id, "status": updated.status.value},
        )
        return updated

    async def resolve_alert(self, user_id: str, alert_id: str) -> EmergencyAlert:
        """User is safe. InvalidStateError if the alert is no longer active."""
        return await self._close_alert(user_id, alert_id, alert_lifecycle.resolve)

    async def mark_false_alarm(self, user_id: str, alert_id: str) -> EmergencyAlert:
        return await self._close_alert(user_id, alert_id, alert_lifecycle.mark_false_alarm)

    async def list_active_alert(self, user_id: str) -> Optional[EmergencyAlert]:
        active = await self._active_alerts(user_id)
        return active[0] if active else None

    async def list_alerts(self, user_id: str, limit: Optional[int] = None) -> List[EmergencyAlert]:
        rows = await self.store.query(
            Collection.EMERGENCY_ALERTS, {"user_id": user_id},
            order_by=_NEWEST_FIRST, limit=_clamp_limit(limit),
        )
        return [EmergencyAlert.from_record(r) for r in rows]

    # ── Check-ins ────────────────────────────────────────────────────────

    async def create_check_in(
        self,
        user_id: str,
        destination: str,
        duration: timedelta,
        geolocation: Optional[GeolocationProvider] = None,
    ) -> CheckIn:
        coordinate = await acquire_position(geolocation)
        check_in = checkin_lifecycle.create_check_in(
            user_id, destination, duration, coordinate, now=self.clock(),
        )
        await self.store.insert(Collection.CHECK_INS, check_in.to_record())
        logger.info(
            "Check-in %s to %r due %s", check_in.id, check_in.destination,
            check_in.expected_arrival.isoformat(),
            extra={"user_id": user_id, "check_in_id": check_in.id},
        )
        return check_in

    async def _owned_check_in(self, user_id: str, check_in_id: str) -> CheckIn:
        row = await self.store.get(Collection.CHECK_INS, check_in_id)
        check_in = CheckIn.from_record(row) if row else None
        return require_owner(check_in, user_id, "CheckIn", check_in_id)

    async def _transition_check_in(self, check_in: CheckIn, decide) -> CheckIn:
        updated, transition = decide(check_in)
        await self.store.update(
            Collection.CHECK_INS, check_in.id, transition.patch, expected=transition.expected,
        )
        logger.info(
            "Check-in %s → %s", check_in.id, updated.status.value,
            extra={
                "user_id": check_in.user_id,
                "check_in_id": check_in.id,
                "status": updated.status.value,
            },
        )
        return updated

    async def complete_check_in(self, user_id: str, check_in_id: str) -> CheckIn:
        check_in = await self._owned_check_in(user_id, check_in_id)
        now = self.clock()
        return await self._transition_check_in(
            check_in, lambda c: checkin_lifecycle.complete(c, now=now),
        )

    async def cancel_check_in(self, user_id: str, check_in_id: str) -> CheckIn:
        check_in = await self._owned_check_in(user_id, check_in_id)
        return await self._transition_check_in(check_in, checkin_lifecycle.cancel)

    async def mark_check_in_missed(self, user_id: str, check_in_id: str) -> CheckIn:
        """Manual counterpart of the sweep: marks missed and escalates the same way."""
        check_in = await self._owned_check_in(user_id, check_in_id)
        missed = await self._transition_check_in(check_in, checkin_lifecycle.mark_missed)
        try:
            escalated, _ = await self._escalate_missed(missed)
        except Exception:
            # Left awaiting escalation; the next sweep raises the alert
            logger.exception(
                "Escalation of missed check-in %s failed; deferred to the sweep", missed.id,
                extra={"user_id": user_id, "check_in_id": missed.id},
            )
            return missed
        return escalated

    async def _escalate_missed(self, check_in: CheckIn) -> Tuple[CheckIn, Optional[str]]:
        """
        Raise the ``check_in_missed`` alert for a missed check-in, then stamp
        ``escalated_at``. Returns the stamped check-in and the new alert id
        (None when the user already had an active alert).
        """
        alert_id: Optional[str] = None
        try:
            result = await self._raise_alert(
                check_in.user_id,
                AlertType.CHECK_IN_MISSED,
                location_description=f"Missed check-in: {check_in.destination}",
            )
            alert_id = result.alert.id
        except ConflictError:
            logger.warning(
                "User %s already has an active alert; missed check-in %s not re-alerted",
                check_in.user_id, check_in.id,
                extra={"user_id": check_in.user_id, "check_in_id": check_in.id},
            )

        updated, transition = checkin_lifecycle.record_escalation(check_in, now=self.clock())
        await self.store.update(
            Collection.CHECK_INS, check_in.id, transition.patch, expected=transition.expected,
        )
        return updated, alert_id

    async def list_check_ins(
        self,
        user_id: str,
        limit: Optional[int] = None,
        statuses: Optional[Sequence[CheckInStatus]] = None,
    ) -> List[CheckIn]:
        filters: Dict[str, Any] = {"user_id": user_id}
        if statuses:
            filters["status"] = [CheckInStatus(s).value for s in statuses]
        rows = await self.store.query(
            Collection.CHECK_INS, filters, order_by=_NEWEST_FIRST, limit=_clamp_limit(limit),
        )
        return [CheckIn.from_record(r) for r in rows]

    async def sweep_missed_check_ins(
        self,
        now: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> SweepReport:
        """
        Move every overdue pending check-in to ``missed`` and raise a
        ``check_in_missed`` alert for its owner. Missed check-ins whose
        alert failed on an earlier pass are escalated again.

        Idempotent: a check-in the user completed in the meantime loses
        nothing (the swap fails and is skipped), and a user who already
        has an active alert keeps that one. A failure on one check-in is
        logged and reported; the rest of the pass carries on.

        ``user_id`` limits the pass to one user's check-ins.
        """
        now = now or self.clock()
        report = SweepReport(started_at=now)
        scope = {"user_id": user_id} if user_id else {}
        by_due = [("expected_arrival", False)]
        pending = await self.store.query(
            Collection.CHECK_INS, {**scope, "status": CheckInStatus.PENDING.value},
            order_by=by_due,
        )
        backlog = await self.store.query(
            Collection.CHECK_INS,
            {**scope, "status": CheckInStatus.MISSED.value, "escalated_at": None},
            order_by=by_due,
        )

        for row in pending + backlog:
            check_in = CheckIn.from_record(row)
            report.examined += 1
            if check_in.is_pending and not checkin_lifecycle.is_overdue(check_in, now):
                continue
            set_request_context(job="missed_check_in_sweep", user_id=check_in.user_id)
            await self._sweep_one(check_in, report)

        set_request_context()
        logger.info(
            "Missed check-in sweep: examined=%d missed=%d alerts=%d skipped=%d failed=%d",
            report.examined, len(report.missed), len(report.alerts_raised),
            len(report.skipped), len(report.failed),
        )
        return report

    async def _sweep_one(self, check_in: CheckIn, report: SweepReport) -> None:
        try:
            if check_in.is_pending:
                check_in = await self._transition_check_in(check_in, checkin_lifecycle.mark_missed)
                report.missed.append(check_in.id)
            _, alert_id = await self._escalate_missed(check_in)
        except (InvalidStateError, NotFoundError) as e:
            logger.info("Sweep skipped check-in %s: %s", check_in.id, e.message,
                        extra={"check_in_id": check_in.id})
            report.skipped.append(check_in.id)
            return
        except Exception:
            logger.exception(
                "Sweep could not escalate check-in %s; retrying next pass", check_in.id,
                extra={"user_id": check_in.user_id, "check_in_id": check_in.id},
            )
            report.failed.append(check_in.id)
            return
        if alert_id:
            report.alerts_raised.append(alert_id)

    # ── Incident reports ─────────────────────────────────────────────────

    async def submit_report(
        self,
        user_id: str,
        incident_type: str,
        description: str,
        location_description: str,
        incident_date: Optional[datetime] = None,
        is_anonymous: bool = False,
        geolocation: Optional[GeolocationProvider] = None,
    ) -> IncidentReport:
        if is_anonymous:
            suppress_identity()
        coordinate = await acquire_position(geolocation)
        report = build_report(
            user_id, incident_type, description, location_description,
            incident_date=incident_date, is_anonymous=is_anonymous,
            coordinate=coordinate, now=self.clock(),
        )
        await self.store.insert(Collection.INCIDENT_REPORTS, report.to_record())
        # Anonymous reports are logged without the submitter
        extra = {"report_id": report.id}
        if not is_anonymous:
            extra["user_id"] = user_id
        logger.info("Incident report %s submitted [%s]%s", report.id, report.incident_type,
                    " anonymously" if is_anonymous else "", extra=extra)
        return report

    async def list_reports(self, user_id: str, limit: Optional[int] = None) -> List[IncidentReport]:
        """The user's own named reports; anonymous ones cannot be matched back."""
        rows = await self.store.query(
            Collection.INCIDENT_REPORTS,
            {"user_id": user_id, "is_anonymous": False},
            order_by=_NEWEST_FIRST,
            limit=_clamp_limit(limit),
        )
        return [IncidentReport.from_record(r) for r in rows]

    # ── Safe zones ───────────────────────────────────────────────────────

    async def list_safe_zones(self, type_filter: Optional[str] = None) -> List[SafeZone]:
        zone_type = parse_zone_type(type_filter)
        cache_key = zone_type.value if zone_type else "all"

        cached = await _zone_cache.fetch(cache_key)
        if cached is not None:
            return [SafeZone.from_record(_revive_zone(r)) for r in cached]

        filters = {"type": zone_type.value} if zone_type else None
        rows = await self.store.query(
            Collection.SAFE_ZONES, filters, order_by=[("verified", True), ("name", False)],
        )
        zones = filter_safe_zones((SafeZone.from_record(r) for r in rows), zone_type)
        await _zone_cache.put(cache_key, [z.to_record() for z in zones])
        return zones

    async def register_safe_zone(
        self,
        user_id: Optional[str],
        name: str,
        zone_type: str,
        address: str,
        latitude: Optional[float],
        longitude: Optional[float],
        phone_number: Optional[str] = None,
        operating_hours: Optional[str] = None,
    ) -> SafeZone:
        zone = create_safe_zone(
            name, zone_type, address, latitude, longitude,
            phone_number=phone_number, operating_hours=operating_hours,
            created_by=user_id, now=self.clock(),
        )
        await self.store.insert(Collection.SAFE_ZONES, zone.to_record())
        await _zone_cache.invalidate()
        logger.info("Safe zone %s registered (%s, unverified)", zone.id, zone.type.value,
                    extra={"user_id": user_id})
        return zone


def _revive_zone(row: Dict[str, Any]) -> Dict[str, Any]:
    """Cached rows come back from JSON with ISO timestamps."""
    revived = dict(row)
    if isinstance(revived.get("created_at"), str):
        revived["created_at"] = datetime.fromisoformat(revived["created_at"])
    return revived
