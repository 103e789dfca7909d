"""
FastAPI route: Caller profile.

    GET /api/v1/profile   — the caller's profile
    PUT /api/v1/profile   — create or replace the editable attributes
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_current_user_id, get_service
from backend.app.api.schemas import ProfileUpdateRequest
from backend.app.core.errors import NotFoundError
from backend.app.safety.service import SafetyService

router = APIRouter(prefix="/api/v1/profile", tags=["profile"])


@router.get("", summary="The caller's profile")
async def get_profile(
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    profile = await service.get_profile(user_id)
    if profile is None:
        raise NotFoundError("UserProfile", id=user_id)
    return profile.to_dict()


@router.put("", summary="Update the caller's profile")
async def update_profile(
    request: ProfileUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    profile = await service.update_profile(
        user_id,
        full_name=request.full_name,
        phone_number=request.phone_number,
        emergency_contact_name=request.emergency_contact_name,
        emergency_contact_phone=request.emergency_contact_phone,
    )
    return profile.to_dict()
