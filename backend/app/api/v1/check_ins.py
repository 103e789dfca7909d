"""
FastAPI route: Timed destination check-ins.

    POST /api/v1/check-ins                  — start a check-in
    POST /api/v1/check-ins/{id}/complete    — arrived safely
    POST /api/v1/check-ins/{id}/cancel      — trip abandoned
    POST /api/v1/check-ins/{id}/missed      — report a missed check-in
    GET  /api/v1/check-ins                  — the caller's check-ins
    GET  /api/v1/check-ins/durations        — duration presets for the UI
    POST /api/v1/check-ins/sweep            — sweep the caller's overdue check-ins
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from backend.app.api.deps import get_current_user_id, get_service
from backend.app.api.schemas import CheckInRequest, location_provider
from backend.app.core.config import settings
from backend.app.core.errors import ValidationError
from backend.app.safety.models import CheckInStatus
from backend.app.safety.service import SafetyService

router = APIRouter(prefix="/api/v1/check-ins", tags=["check-ins"])


def _parse_statuses(values: Optional[List[str]]) -> Optional[List[CheckInStatus]]:
    if not values:
        return None
    try:
        return [CheckInStatus(v.lower()) for v in values]
    except ValueError:
        valid = [s.value for s in CheckInStatus]
        raise ValidationError(
            f"Invalid status filter {values}. Must be drawn from: {valid}",
            field="status",
        ) from None


def _duration_label(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} minutes"
    hours, rest = divmod(minutes, 60)
    label = f"{hours} hour" + ("s" if hours > 1 else "")
    return f"{label} {rest} minutes" if rest else label


@router.post("", status_code=201, summary="Start a check-in")
async def create_check_in(
    request: CheckInRequest,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    check_in = await service.create_check_in(
        user_id,
        request.destination,
        timedelta(minutes=request.duration_minutes),
        geolocation=location_provider(request.location),
    )
    return check_in.to_dict()


@router.post("/{check_in_id}/complete", summary="Arrived safely")
async def complete_check_in(
    check_in_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    return (await service.complete_check_in(user_id, check_in_id)).to_dict()


@router.post("/{check_in_id}/cancel", summary="Cancel a pending check-in")
async def cancel_check_in(
    check_in_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    return (await service.cancel_check_in(user_id, check_in_id)).to_dict()


@router.post("/{check_in_id}/missed", summary="Mark a pending check-in missed")
async def mark_missed(
    check_in_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    return (await service.mark_check_in_missed(user_id, check_in_id)).to_dict()


@router.get("/durations", summary="Check-in duration presets")
async def duration_presets() -> Dict[str, Any]:
    return {
        "durations": [
            {"minutes": m, "label": _duration_label(m)}
            for m in settings.CHECK_IN_DURATION_PRESETS_MINUTES
        ],
    }


@router.post("/sweep", summary="Sweep the caller's overdue check-ins now")
async def sweep(
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    # The global pass belongs to the background sweeper
    report = await service.sweep_missed_check_ins(user_id=user_id)
    return report.to_dict()


@router.get("", summary="The caller's check-ins, newest first")
async def list_check_ins(
    status: Optional[List[str]] = Query(None, description="Filter by one or more statuses"),
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    check_ins = await service.list_check_ins(user_id, limit, _parse_statuses(status))
    return {"count": len(check_ins), "check_ins": [c.to_dict() for c in check_ins]}
