"""
FastAPI route: Trusted contact directory.

    GET    /api/v1/contacts              — list the caller's contacts
    POST   /api/v1/contacts              — add a contact
    PATCH  /api/v1/contacts/{id}         — set the active flag
    POST   /api/v1/contacts/{id}/toggle  — flip the active flag
    DELETE /api/v1/contacts/{id}         — remove a contact
    GET    /api/v1/contacts/eligible     — who an alert would notify now
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response

from backend.app.api.deps import get_current_user_id, get_service
from backend.app.api.schemas import ContactCreateRequest, ContactUpdateRequest
from backend.app.safety.service import SafetyService

router = APIRouter(prefix="/api/v1/contacts", tags=["trusted-contacts"])


@router.get("", summary="List trusted contacts")
async def list_contacts(
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    contacts = await service.list_contacts(user_id)
    return {
        "count": len(contacts),
        "active_count": sum(1 for c in contacts if c.is_active),
        "contacts": [c.to_dict() for c in contacts],
    }


@router.post("", status_code=201, summary="Add a trusted contact")
async def add_contact(
    request: ContactCreateRequest,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    contact = await service.add_contact(
        user_id,
        request.contact_name,
        request.contact_phone,
        contact_email=request.contact_email,
        relationship=request.relationship,
    )
    return contact.to_dict()


@router.get("/eligible", summary="Current notification fan-out")
async def eligible(
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    plan = await service.eligible_contacts(user_id)
    return plan.to_dict()


@router.patch("/{contact_id}", summary="Activate or deactivate a contact")
async def update_contact(
    contact_id: str,
    request: ContactUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    contact = await service.set_contact_active(user_id, contact_id, request.is_active)
    return contact.to_dict()


@router.post("/{contact_id}/toggle", summary="Flip a contact's active flag")
async def toggle_contact(
    contact_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Dict[str, Any]:
    return (await service.toggle_contact(user_id, contact_id)).to_dict()


@router.delete("/{contact_id}", status_code=204, summary="Remove a contact")
async def delete_contact(
    contact_id: str,
    user_id: str = Depends(get_current_user_id),
    service: SafetyService = Depends(get_service),
) -> Response:
    await service.delete_contact(user_id, contact_id)
    return Response(status_code=204)
