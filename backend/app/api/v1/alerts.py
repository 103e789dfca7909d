"""
FastAPI route: Emergency alert lifecycle.

Provides endpoints to:
    POST /api/v1/alerts/sos                — raise an SOS alert
    POST /api/v1/alerts/{id}/resolve       — user is safe
    POST /api/v1/alerts/{id}/false-alarm   — alert raised by mistake
    GET  /api/v1/alerts/active             — the caller's active alert, if any
    GET  /api/v1/alerts                    — the caller's alert history
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from backend.app.api.deps import get_current_user_id, get_service
from backend.app.api.schemas import SOSRequest, location_provider
from backend.app.safety.service import SafetyService

router = APIRouter(prefix="/api/v1/alerts", tags=["emergency-alerts"])


@router.post(
    "/sos",
    status_code=201,
    summary="Raise an SOS alert",
    description=(
        "Creates an active SOS alert and returns it together with the "
        "notification fan-out. Location is best-effort: a missing or failed "
        "sample never blocks activation. 409 if an alert is already active."
    ),
)
async def activate_sos(
    request: Optional[SOSRequest] = Body(None),
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    request = request or SOSRequest()
    result = await service.activate_sos(
        user_id,
        geolocation=location_provider(request.location),
        location_description=request.location_description,
        notes=request.notes,
    )
    return result.to_dict()


@router.post("/{alert_id}/resolve", summary="Mark the caller safe")
async def resolve_alert(
    alert_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    alert = await service.resolve_alert(user_id, alert_id)
    return alert.to_dict()


@router.post("/{alert_id}/false-alarm", summary="Close an alert raised by mistake")
async def mark_false_alarm(
    alert_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    alert = await service.mark_false_alarm(user_id, alert_id)
    return alert.to_dict()


@router.get("/active", summary="The caller's active alert")
async def active_alert(
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    alert = await service.list_active_alert(user_id)
    return {"alert": alert.to_dict() if alert else None}


@router.get("", summary="Alert history, newest first")
async def list_alerts(
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    alerts = await service.list_alerts(user_id, limit)
    return {"count": len(alerts), "alerts": [a.to_dict() for a in alerts]}
