"""
geolocation.py — Best-effort position acquisition.

A provider returns one coordinate sample or raises LocationError. The
device may deny permission, have no fix, or simply be slow; none of that
is allowed to hold up an SOS. ``acquire_position`` therefore absorbs
LocationError and timeouts and hands back ``None`` instead.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from backend.app.core.config import settings
from backend.app.core.errors import LocationError, ValidationError
from backend.app.safety.models import Coordinate

logger = logging.getLogger(__name__)


class GeolocationProvider(ABC):
    """Source of a single current-position sample."""

    @abstractmethod
    async def current_position(self) -> Coordinate:
        """Return the current coordinate or raise LocationError."""


class ReportedPosition(GeolocationProvider):
    """
    Position sampled on the user's device and sent along with the request.

    The device reports either a fix or the reason it has none
    ("permission denied", "timeout", ...).
    """

    def __init__(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        error: Optional[str] = None,
    ):
        self.latitude = latitude
        self.longitude = longitude
        self.error = error

    async def current_position(self) -> Coordinate:
        if self.error:
            raise LocationError(self.error, source="device")
        if self.latitude is None or self.longitude is None:
            raise LocationError("No position reported", source="device")
        try:
            return Coordinate(self.latitude, self.longitude)
        except ValidationError as e:
            raise LocationError(f"Invalid position reported: {e.message}",
                                source="device") from e


class FixedPosition(GeolocationProvider):
    """Always answers with the same coordinate (kiosks, fixed installations)."""

    def __init__(self, coordinate: Coordinate):
        self.coordinate = coordinate

    async def current_position(self) -> Coordinate:
        return self.coordinate


async def acquire_position(
    provider: Optional[GeolocationProvider],
    timeout: Optional[float] = None,
) -> Optional[Coordinate]:
    """
    Sample ``provider`` once; None when unavailable.

    Only LocationError and the timeout are absorbed. Anything else is a
    programming error and propagates.
    """
    if provider is None:
        return None
    timeout = settings.GEOLOCATION_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        return await asyncio.wait_for(provider.current_position(), timeout=timeout)
    except LocationError as e:
        logger.warning("Location unavailable, continuing without coordinate: %s", e.message)
    except asyncio.TimeoutError:
        logger.warning("Location sample timed out after %.1fs, continuing without coordinate",
                       timeout)
    return None
