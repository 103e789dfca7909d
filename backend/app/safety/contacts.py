"""
contacts.py — Trusted contact directory rules.

Contacts are created active, toggled by their owner and hard-deleted
(there is no tombstone). An inactive contact stays listed for its owner
but is skipped by the notification resolver.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from backend.app.safety.models import (
    TrustedContact,
    optional_text,
    require_text,
    utcnow,
)


def create_contact(
    user_id: str,
    contact_name: str,
    contact_phone: str,
    contact_email: Optional[str] = None,
    relationship: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TrustedContact:
    """Validate and build a new active contact owned by ``user_id``."""
    return TrustedContact(
        user_id=user_id,
        contact_name=require_text(contact_name, "contact_name"),
        contact_phone=require_text(contact_phone, "contact_phone"),
        contact_email=optional_text(contact_email),
        relationship=optional_text(relationship),
        is_active=True,
        created_at=now or utcnow(),
    )


def set_active(contact: TrustedContact, is_active: bool) -> Tuple[TrustedContact, Dict[str, Any]]:
    """Return the updated contact and the store patch."""
    return dataclasses.replace(contact, is_active=is_active), {"is_active": is_active}


def toggle_active(contact: TrustedContact) -> Tuple[TrustedContact, Dict[str, Any]]:
    return set_active(contact, not contact.is_active)
