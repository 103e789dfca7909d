"""
notification.py — Notification eligibility resolver.

Computes WHO must be told when an alert activates. Delivery is someone
else's job; this module never talks to a transport.

═══════════════════════════════════════════════════════════════════════════
FAN-OUT MODES
═══════════════════════════════════════════════════════════════════════════

    Mode               When                                   Recipients
    ────────────────   ────────────────────────────────────   ──────────────────────
    trusted_contacts   ≥1 active trusted contact              active contacts, newest first
    profile_fallback   no active contact, profile has one     the profile emergency contact
    none               nothing to fall back to                nobody (degraded outcome)

An empty fan-out never fails activation. Callers log it as degraded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from backend.app.safety.models import TrustedContact, UserProfile

logger = logging.getLogger(__name__)


class FanOutMode(str, Enum):
    TRUSTED_CONTACTS = "trusted_contacts"
    PROFILE_FALLBACK = "profile_fallback"
    NONE             = "none"


@dataclass(frozen=True)
class FallbackContact:
    """The single profile-level emergency contact."""
    name: Optional[str]
    phone: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "phone": self.phone}


@dataclass
class FanOutPlan:
    """Resolver output: the recipients and how they were chosen."""
    mode: FanOutMode
    contacts: List[TrustedContact] = field(default_factory=list)
    fallback: Optional[FallbackContact] = None

    @property
    def recipient_count(self) -> int:
        if self.mode == FanOutMode.TRUSTED_CONTACTS:
            return len(self.contacts)
        return 1 if self.fallback else 0

    @property
    def is_degraded(self) -> bool:
        return self.mode != FanOutMode.TRUSTED_CONTACTS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "recipient_count": self.recipient_count,
            "contacts": [c.to_dict() for c in self.contacts],
            "fallback": self.fallback.to_dict() if self.fallback else None,
        }


def eligible_contacts(contacts: Iterable[TrustedContact]) -> List[TrustedContact]:
    """Active contacts, most-recently-added first."""
    active = [c for c in contacts if c.is_active]
    # sorted() is stable, so equal timestamps keep the caller's order
    return sorted(active, key=lambda c: c.created_at, reverse=True)


def resolve_fanout(
    contacts: Iterable[TrustedContact],
    profile: Optional[UserProfile] = None,
) -> FanOutPlan:
    """
    Decide the notification fan-out for one user.

    Parameters
    ----------
    contacts : iterable of TrustedContact
        The user's full contact list (active and inactive).
    profile : UserProfile | None
        Profile carrying the fallback emergency contact, if any.
    """
    active = eligible_contacts(contacts)
    if active:
        return FanOutPlan(mode=FanOutMode.TRUSTED_CONTACTS, contacts=active)

    if profile is not None and profile.has_emergency_contact:
        return FanOutPlan(
            mode=FanOutMode.PROFILE_FALLBACK,
            fallback=FallbackContact(
                name=profile.emergency_contact_name,
                phone=profile.emergency_contact_phone,
            ),
        )

    return FanOutPlan(mode=FanOutMode.NONE)
