"""
models.py — Shared data structures for the safety lifecycle engine.

Defines:
    • AlertType / AlertStatus         — emergency alert vocabulary
    • CheckInStatus                   — destination check-in vocabulary
    • ReportStatus / INCIDENT_TYPES   — incident ledger vocabulary
    • SafeZoneType                    — directory categories
    • Coordinate                      — best-effort location sample
    • UserProfile, TrustedContact, EmergencyAlert, CheckIn,
      IncidentReport, SafeZone        — persisted records

═══════════════════════════════════════════════════════════════════════════
LIFECYCLES
═══════════════════════════════════════════════════════════════════════════

    EmergencyAlert     active ──► resolved
                         └──────► false_alarm          (both terminal)

    CheckIn            pending ──► completed
                          ├──────► cancelled
                          └──────► missed              (all terminal)

    IncidentReport     submitted ─► under_review ─► resolved
                       (advanced by reviewers, never by this engine)

═══════════════════════════════════════════════════════════════════════════
RECORD FORMAT
═══════════════════════════════════════════════════════════════════════════

Every record converts to and from a flat dict (``to_record`` /
``from_record``) whose keys are the persisted column names. Timestamps
stay ``datetime`` objects (UTC, tz-aware); the store decides encoding.
Optional fields that are unset are kept as ``None`` except for the
anonymous incident report, whose owner key is dropped entirely.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from backend.app.core.errors import ValidationError


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    """What raised the alert."""
    SOS             = "sos"
    CHECK_IN_MISSED = "check_in_missed"
    MANUAL          = "manual"


class AlertStatus(str, Enum):
    ACTIVE      = "active"
    RESOLVED    = "resolved"      # user marked self safe
    FALSE_ALARM = "false_alarm"


class CheckInStatus(str, Enum):
    PENDING   = "pending"
    COMPLETED = "completed"
    MISSED    = "missed"
    CANCELLED = "cancelled"


class ReportStatus(str, Enum):
    SUBMITTED    = "submitted"
    UNDER_REVIEW = "under_review"
    RESOLVED     = "resolved"


class SafeZoneType(str, Enum):
    POLICE           = "police"
    HOSPITAL         = "hospital"
    SHELTER          = "shelter"
    COMMUNITY_CENTER = "community_center"


# Incident categories offered to reporters; anything else lands in "other"
INCIDENT_TYPES: Dict[str, str] = {
    "harassment":        "Harassment",
    "stalking":          "Stalking",
    "assault":           "Physical Assault",
    "verbal_abuse":      "Verbal Abuse",
    "domestic_violence": "Domestic Violence",
    "sexual_harassment": "Sexual Harassment",
    "unsafe_area":       "Unsafe Area",
    "other":             "Other",
}
FALLBACK_INCIDENT_TYPE = "other"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def require_text(value: Optional[str], field_name: str) -> str:
    """Trim ``value`` and reject it when nothing is left."""
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field_name} is required", field=field_name)
    return cleaned


def optional_text(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    return cleaned or None


# ═══════════════════════════════════════════════════════════════════════════
# Coordinate
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Coordinate:
    """A single WGS-84 position sample."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValidationError("latitude out of range", field="latitude",
                                  value=self.latitude)
        if not -180.0 <= self.longitude <= 180.0:
            raise ValidationError("longitude out of range", field="longitude",
                                  value=self.longitude)

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> Optional["Coordinate"]:
        """Coordinate from a record's lat/lon columns, None if either is unset."""
        lat, lon = row.get("latitude"), row.get("longitude")
        if lat is None or lon is None:
            return None
        return cls(float(lat), float(lon))

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


def _coordinate_columns(coordinate: Optional[Coordinate]) -> Dict[str, Optional[float]]:
    if coordinate is None:
        return {"latitude": None, "longitude": None}
    return coordinate.to_dict()


# ═══════════════════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class UserProfile:
    """
    Profile attributes owned by the identity provider.

    Treated as an immutable reference during a session; the single
    emergency contact is the fan-out fallback when no trusted contact
    is active.
    """
    id: str
    full_name: str = ""
    phone_number: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_emergency_contact(self) -> bool:
        return bool(self.emergency_contact_phone)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone_number": self.phone_number,
            "emergency_contact_name": self.emergency_contact_name,
            "emergency_contact_phone": self.emergency_contact_phone,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "UserProfile":
        return cls(
            id=row["id"],
            full_name=row.get("full_name") or "",
            phone_number=row.get("phone_number"),
            emergency_contact_name=row.get("emergency_contact_name"),
            emergency_contact_phone=row.get("emergency_contact_phone"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        d = self.to_record()
        d["created_at"] = _iso(self.created_at)
        d["updated_at"] = _iso(self.updated_at)
        return d


@dataclass
class TrustedContact:
    """A person the owner wants notified when an alert activates."""
    user_id: str
    contact_name: str
    contact_phone: str
    contact_email: Optional[str] = None
    relationship: Optional[str] = None
    is_active: bool = True
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "relationship": self.relationship,
            "is_active": self.is_active,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "TrustedContact":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            contact_name=row["contact_name"],
            contact_phone=row["contact_phone"],
            contact_email=row.get("contact_email"),
            relationship=row.get("relationship"),
            is_active=bool(row.get("is_active", True)),
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        d = self.to_record()
        d["created_at"] = _iso(self.created_at)
        return d


@dataclass
class EmergencyAlert:
    """
    One emergency alert. Only ``status`` and ``resolved_at`` ever move
    after creation.
    """
    user_id: str
    alert_type: AlertType = AlertType.SOS
    status: AlertStatus = AlertStatus.ACTIVE
    coordinate: Optional[Coordinate] = None
    location_description: Optional[str] = None
    notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            **_coordinate_columns(self.coordinate),
            "location_description": self.location_description,
            "alert_type": self.alert_type.value,
            "status": self.status.value,
            "notes": self.notes,
            "resolved_at": self.resolved_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "EmergencyAlert":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            alert_type=AlertType(row["alert_type"]),
            status=AlertStatus(row["status"]),
            coordinate=Coordinate.from_record(row),
            location_description=row.get("location_description"),
            notes=row.get("notes"),
            resolved_at=row.get("resolved_at"),
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "alert_type": self.alert_type.value,
            "status": self.status.value,
            "location": self.coordinate.to_dict() if self.coordinate else None,
            "location_description": self.location_description,
            "notes": self.notes,
            "resolved_at": _iso(self.resolved_at),
            "created_at": _iso(self.created_at),
        }


@dataclass
class CheckIn:
    """A promise to arrive at ``destination`` before ``expected_arrival``."""
    user_id: str
    destination: str
    expected_arrival: datetime
    status: CheckInStatus = CheckInStatus.PENDING
    check_in_time: Optional[datetime] = None
    coordinate: Optional[Coordinate] = None
    # Set once the missed check-in has been escalated to an alert
    escalated_at: Optional[datetime] = None
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.status == CheckInStatus.PENDING

    @property
    def awaiting_escalation(self) -> bool:
        return self.status == CheckInStatus.MISSED and self.escalated_at is None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "destination": self.destination,
            "expected_arrival": self.expected_arrival,
            "check_in_time": self.check_in_time,
            "status": self.status.value,
            **_coordinate_columns(self.coordinate),
            "escalated_at": self.escalated_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "CheckIn":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            destination=row["destination"],
            expected_arrival=row["expected_arrival"],
            check_in_time=row.get("check_in_time"),
            status=CheckInStatus(row["status"]),
            coordinate=Coordinate.from_record(row),
            escalated_at=row.get("escalated_at"),
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "destination": self.destination,
            "expected_arrival": _iso(self.expected_arrival),
            "check_in_time": _iso(self.check_in_time),
            "status": self.status.value,
            "escalated_at": _iso(self.escalated_at),
            "location": self.coordinate.to_dict() if self.coordinate else None,
            "created_at": _iso(self.created_at),
        }


@dataclass
class IncidentReport:
    """
    A community incident submission.

    ``user_id`` is None for anonymous reports, and ``to_record`` leaves
    the key out altogether so the stored row never carries an owner.
    """
    incident_type: str
    description: str
    location_description: str
    incident_date: datetime
    is_anonymous: bool = False
    user_id: Optional[str] = None
    coordinate: Optional[Coordinate] = None
    status: ReportStatus = ReportStatus.SUBMITTED
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "id": self.id,
            "incident_type": self.incident_type,
            "description": self.description,
            **_coordinate_columns(self.coordinate),
            "location_description": self.location_description,
            "incident_date": self.incident_date,
            "is_anonymous": self.is_anonymous,
            "status": self.status.value,
            "created_at": self.created_at,
        }
        if not self.is_anonymous:
            record["user_id"] = self.user_id
        return record

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "IncidentReport":
        anonymous = bool(row.get("is_anonymous", False))
        return cls(
            id=row["id"],
            user_id=None if anonymous else row.get("user_id"),
            incident_type=row["incident_type"],
            description=row["description"],
            coordinate=Coordinate.from_record(row),
            location_description=row["location_description"],
            incident_date=row["incident_date"],
            is_anonymous=anonymous,
            status=ReportStatus(row["status"]),
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "incident_type": self.incident_type,
            "incident_type_label": INCIDENT_TYPES.get(self.incident_type, self.incident_type),
            "description": self.description,
            "location": self.coordinate.to_dict() if self.coordinate else None,
            "location_description": self.location_description,
            "incident_date": _iso(self.incident_date),
            "is_anonymous": self.is_anonymous,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
        }


@dataclass
class SafeZone:
    """Directory entry for a verified (or community-submitted) safe place."""
    name: str
    type: SafeZoneType
    address: str
    coordinate: Coordinate
    phone_number: Optional[str] = None
    operating_hours: Optional[str] = None
    verified: bool = False
    created_by: Optional[str] = None
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "address": self.address,
            **self.coordinate.to_dict(),
            "phone_number": self.phone_number,
            "operating_hours": self.operating_hours,
            "verified": self.verified,
            "created_by": self.created_by,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "SafeZone":
        coordinate = Coordinate.from_record(row)
        if coordinate is None:
            raise ValidationError("safe zone coordinate is required",
                                  field="latitude", zone_id=row.get("id"))
        return cls(
            id=row["id"],
            name=row["name"],
            type=SafeZoneType(row["type"]),
            address=row["address"],
            coordinate=coordinate,
            phone_number=row.get("phone_number"),
            operating_hours=row.get("operating_hours"),
            verified=bool(row.get("verified", False)),
            created_by=row.get("created_by"),
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "address": self.address,
            "location": self.coordinate.to_dict(),
            "phone_number": self.phone_number,
            "operating_hours": self.operating_hours,
            "verified": self.verified,
            "created_at": _iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Transition:
    """
    A status change expressed as a compare-and-swap.

    The store applies ``patch`` only while the record still holds
    ``expected`` (e.g. ``{"status": "pending"}``); otherwise the swap
    fails with InvalidStateError and nothing is written.
    """
    record_id: str
    expected: Dict[str, Any]
    patch: Dict[str, Any]
