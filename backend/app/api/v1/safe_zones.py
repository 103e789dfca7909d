"""
FastAPI route: Safe-zone directory.

    GET  /api/v1/safe-zones?type=police   — list zones, verified first
    POST /api/v1/safe-zones               — submit a zone (starts unverified)

The listing is public reference data and needs no caller identity.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from backend.app.api.deps import get_current_user_id, get_service
from backend.app.api.schemas import SafeZoneCreateRequest
from backend.app.safety.service import SafetyService

router = APIRouter(prefix="/api/v1/safe-zones", tags=["safe-zones"])


@router.get("", summary="List safe zones")
async def list_safe_zones(
    type: Optional[str] = Query(
        None, description="police | hospital | shelter | community_center | all",
    ),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    zones = await service.list_safe_zones(type)
    return {"count": len(zones), "safe_zones": [z.to_dict() for z in zones]}


@router.post("", status_code=201, summary="Submit a safe zone")
async def register_safe_zone(
    request: SafeZoneCreateRequest,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    zone = await service.register_safe_zone(
        user_id,
        request.name,
        request.type,
        request.address,
        request.latitude,
        request.longitude,
        phone_number=request.phone_number,
        operating_hours=request.operating_hours,
    )
    return zone.to_dict()
