"""
incident_ledger.py — Incident report submission and owner-scoped reads.

Anonymity is a one-way door. An anonymous report is built with no owner
and serialised without a ``user_id`` key, so nothing downstream (store,
logs, API) can recover who filed it. The flip side is deliberate: the
submitter cannot list their own anonymous reports afterwards.

Review status (submitted → under_review → resolved) belongs to a
reviewing authority outside this service; reports are only ever
created here in ``submitted``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from backend.app.safety.models import (
    FALLBACK_INCIDENT_TYPE,
    INCIDENT_TYPES,
    Coordinate,
    IncidentReport,
    ReportStatus,
    require_text,
    utcnow,
)

logger = logging.getLogger(__name__)


def normalise_incident_type(incident_type: str) -> str:
    """Known category as-is, any other non-empty value becomes "other"."""
    value = require_text(incident_type, "incident_type").lower()
    if value not in INCIDENT_TYPES:
        logger.info("Unknown incident type %r recorded as %s", value, FALLBACK_INCIDENT_TYPE)
        return FALLBACK_INCIDENT_TYPE
    return value


def submit_report(
    user_id: str,
    incident_type: str,
    description: str,
    location_description: str,
    incident_date: Optional[datetime] = None,
    is_anonymous: bool = False,
    coordinate: Optional[Coordinate] = None,
    now: Optional[datetime] = None,
) -> IncidentReport:
    """
    Build a new ``submitted`` report.

    ``incident_date`` is not range-checked; it defaults to the
    submission time.
    """
    submitted_at = now or utcnow()
    return IncidentReport(
        user_id=None if is_anonymous else user_id,
        incident_type=normalise_incident_type(incident_type),
        description=require_text(description, "description"),
        location_description=require_text(location_description, "location_description"),
        incident_date=incident_date or submitted_at,
        is_anonymous=is_anonymous,
        coordinate=coordinate,
        status=ReportStatus.SUBMITTED,
        created_at=submitted_at,
    )


def reports_for_user(reports: Iterable[IncidentReport], user_id: str) -> List[IncidentReport]:
    """Reports owned by ``user_id``; anonymous ones have no owner to match."""
    return [r for r in reports if not r.is_anonymous and r.user_id == user_id]
