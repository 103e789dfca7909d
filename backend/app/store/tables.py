"""
tables.py — ORM tables backing SqlRecordStore.

Column names match the record keys produced by the safety models.
Status and type columns are plain strings; the enums live in Python.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Type

from sqlalchemy import Boolean, DateTime, Float, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base
from backend.app.store.base import ONE_ACTIVE_ALERT, Collection


class ProfileRow(Base):
    __tablename__ = Collection.PROFILES.value

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(200), default="")
    phone_number: Mapped[Optional[str]] = mapped_column(String(32))
    emergency_contact_name: Mapped[Optional[str]] = mapped_column(String(200))
    emergency_contact_phone: Mapped[Optional[str]] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TrustedContactRow(Base):
    __tablename__ = Collection.TRUSTED_CONTACTS.value

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    contact_name: Mapped[str] = mapped_column(String(200))
    contact_phone: Mapped[str] = mapped_column(String(32))
    contact_email: Mapped[Optional[str]] = mapped_column(String(254))
    relationship: Mapped[Optional[str]] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class EmergencyAlertRow(Base):
    __tablename__ = Collection.EMERGENCY_ALERTS.value
    __table_args__ = (
        # At most one active alert per user, enforced by the database
        Index(
            ONE_ACTIVE_ALERT.name,
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    location_description: Mapped[Optional[str]] = mapped_column(Text)
    alert_type: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(32), index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CheckInRow(Base):
    __tablename__ = Collection.CHECK_INS.value

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    destination: Mapped[str] = mapped_column(String(500))
    expected_arrival: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    check_in_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(32), index=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class IncidentReportRow(Base):
    __tablename__ = Collection.INCIDENT_REPORTS.value

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # NULL for anonymous submissions
    user_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    incident_type: Mapped[str] = mapped_column(String(64))
    description: Mapped[str] = mapped_column(Text)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    location_description: Mapped[str] = mapped_column(Text)
    incident_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class SafeZoneRow(Base):
    __tablename__ = Collection.SAFE_ZONES.value

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    type: Mapped[str] = mapped_column(String(32), index=True)
    address: Mapped[str] = mapped_column(String(500))
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32))
    operating_hours: Mapped[Optional[str]] = mapped_column(String(200))
    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


TABLES: Dict[str, Type[Base]] = {
    Collection.PROFILES.value:         ProfileRow,
    Collection.TRUSTED_CONTACTS.value: TrustedContactRow,
    Collection.EMERGENCY_ALERTS.value: EmergencyAlertRow,
    Collection.CHECK_INS.value:        CheckInRow,
    Collection.INCIDENT_REPORTS.value: IncidentReportRow,
    Collection.SAFE_ZONES.value:       SafeZoneRow,
}
