"""
FastAPI dependencies shared by the v1 routers.

Identity comes from the upstream auth gateway as the ``X-User-ID``
header; this service never authenticates users itself.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Header

from backend.app.core.errors import UnauthenticatedError
from backend.app.safety.service import SafetyService
from backend.app.safety.sweeper import MissedCheckInSweeper
from backend.app.store import build_store

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-ID"

_service: Optional[SafetyService] = None
_sweeper: Optional[MissedCheckInSweeper] = None


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias=USER_HEADER),
) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise UnauthenticatedError(header=USER_HEADER)
    return user_id


def get_service() -> SafetyService:
    """Process-wide SafetyService over the configured store."""
    global _service
    if _service is None:
        _service = SafetyService(build_store())
        logger.info("Safety service ready on %s store", _service.store.backend_name)
    return _service


def set_service(service: Optional[SafetyService]) -> None:
    global _service
    _service = service


def get_sweeper() -> Optional[MissedCheckInSweeper]:
    return _sweeper


def set_sweeper(sweeper: Optional[MissedCheckInSweeper]) -> None:
    global _sweeper
    _sweeper = sweeper
