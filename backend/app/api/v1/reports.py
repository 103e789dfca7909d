"""
FastAPI route: Community incident reports.

    POST /api/v1/reports        — submit a report (optionally anonymous)
    GET  /api/v1/reports        — the caller's own named reports
    GET  /api/v1/reports/types  — incident categories
"""

from __future__ import annotations

from datetime import timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from backend.app.api.deps import get_current_user_id, get_service
from backend.app.api.schemas import IncidentReportRequest, location_provider
from backend.app.core.middleware import mark_anonymous
from backend.app.safety.models import INCIDENT_TYPES
from backend.app.safety.service import SafetyService

router = APIRouter(prefix="/api/v1/reports", tags=["incident-reports"])


@router.post("", status_code=201, summary="Submit an incident report")
async def submit_report(
    body: IncidentReportRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    if body.is_anonymous:
        mark_anonymous(request)
    incident_date = body.incident_date
    if incident_date is not None and incident_date.tzinfo is None:
        # Clients without an offset are taken to mean UTC
        incident_date = incident_date.replace(tzinfo=timezone.utc)

    report = await service.submit_report(
        user_id,
        body.incident_type,
        body.description,
        body.location_description,
        incident_date=incident_date,
        is_anonymous=body.is_anonymous,
        geolocation=location_provider(body.location),
    )
    return report.to_dict()


@router.get("/types", summary="Incident categories")
async def incident_types() -> Dict[str, Any]:
    return {"types": [{"value": k, "label": v} for k, v in INCIDENT_TYPES.items()]}


@router.get("", summary="The caller's named reports, newest first")
async def list_reports(
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    reports = await service.list_reports(user_id, limit)
    return {"count": len(reports), "reports": [r.to_dict() for r in reports]}
