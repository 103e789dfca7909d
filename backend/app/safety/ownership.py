"""
ownership.py — Visibility rules for user-owned records.

A record belongs to exactly one user. Anyone else asking for it gets the
same answer as for a record that does not exist, so ids of other users'
alerts or check-ins can never be probed.
"""

from __future__ import annotations

import logging
from typing import Optional, TypeVar

from backend.app.core.errors import NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def require_owner(record: Optional[T], user_id: str, resource: str, record_id: str) -> T:
    """Return ``record`` if ``user_id`` owns it, else raise NotFoundError."""
    if record is None:
        raise NotFoundError(resource, id=record_id)
    owner = getattr(record, "user_id", None)
    if owner is None or owner != user_id:
        logger.warning(
            "Ownership check failed: %s %s requested by %s",
            resource, record_id, user_id,
        )
        raise NotFoundError(resource, id=record_id)
    return record
