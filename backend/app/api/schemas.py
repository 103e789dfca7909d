"""
Pydantic request schemas for the safety API.

Separated from the route handlers so they are reusable across the
codebase (background workers, tests). Responses are the records'
``to_dict`` payloads.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from backend.app.safety.geolocation import GeolocationProvider, ReportedPosition


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

class LocationSample(BaseModel):
    """
    One position sample taken on the user's device.

    Either a fix or the reason there is none. Out-of-range values are
    not rejected here: location is best-effort, and a bad sample simply
    means the record is stored without a coordinate.
    """
    latitude: Optional[float] = Field(None, description="Decimal degrees", examples=[13.0827])
    longitude: Optional[float] = Field(None, description="Decimal degrees", examples=[80.2707])
    error: Optional[str] = Field(
        None,
        description="Why the device has no fix (permission denied, timeout, ...)",
        examples=["permission denied"],
    )

    def provider(self) -> GeolocationProvider:
        return ReportedPosition(self.latitude, self.longitude, self.error)


def location_provider(sample: Optional[LocationSample]) -> Optional[GeolocationProvider]:
    return sample.provider() if sample is not None else None


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class SOSRequest(BaseModel):
    """Request body for POST /api/v1/alerts/sos. Every field is optional."""
    location: Optional[LocationSample] = None
    location_description: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=2000)


# ---------------------------------------------------------------------------
# Check-ins
# ---------------------------------------------------------------------------

class CheckInRequest(BaseModel):
    """Request body for POST /api/v1/check-ins."""
    destination: str = Field(..., max_length=500, examples=["Home"])
    duration_minutes: int = Field(
        ..., gt=0,
        description="Minutes until the user is expected to arrive",
        examples=[30],
    )
    location: Optional[LocationSample] = None


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

class ContactCreateRequest(BaseModel):
    contact_name: str = Field(..., max_length=200, examples=["Priya"])
    contact_phone: str = Field(..., max_length=32, examples=["+919876543210"])
    contact_email: Optional[str] = Field(None, max_length=254, examples=["priya@example.com"])
    relationship: Optional[str] = Field(None, max_length=100, examples=["sister"])


class ContactUpdateRequest(BaseModel):
    """PATCH body; only the active flag is mutable after creation."""
    is_active: bool


# ---------------------------------------------------------------------------
# Incident reports
# ---------------------------------------------------------------------------

class IncidentReportRequest(BaseModel):
    """Request body for POST /api/v1/reports."""
    incident_type: str = Field(..., examples=["harassment"])
    description: str = Field(..., max_length=5000)
    location_description: str = Field(..., max_length=500, examples=["Bus stop near Central"])
    incident_date: Optional[datetime] = Field(
        None, description="When it happened; defaults to submission time",
    )
    is_anonymous: bool = Field(False, description="Store the report without the submitter")
    location: Optional[LocationSample] = None


# ---------------------------------------------------------------------------
# Safe zones
# ---------------------------------------------------------------------------

class SafeZoneCreateRequest(BaseModel):
    """Community submission; entries start unverified."""
    name: str = Field(..., max_length=200, examples=["T. Nagar Police Station"])
    type: str = Field(..., examples=["police"])
    address: str = Field(..., max_length=500)
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[13.0418])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[80.2341])
    phone_number: Optional[str] = Field(None, max_length=32)
    operating_hours: Optional[str] = Field(None, max_length=200, examples=["24/7"])


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

class ProfileUpdateRequest(BaseModel):
    full_name: str = Field("", max_length=200)
    phone_number: Optional[str] = Field(None, max_length=32)
    emergency_contact_name: Optional[str] = Field(None, max_length=200)
    emergency_contact_phone: Optional[str] = Field(None, max_length=32)

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()
