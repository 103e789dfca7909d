"""
safe_zones.py — Safe-zone directory filtering and registration.

Display order is verified entries first, then alphabetical by name;
ties keep their incoming order.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Union

from backend.app.core.errors import ValidationError
from backend.app.safety.models import (
    Coordinate,
    SafeZone,
    SafeZoneType,
    optional_text,
    require_text,
    utcnow,
)

ALL_TYPES = "all"


def parse_zone_type(zone_type: Optional[Union[str, SafeZoneType]]) -> Optional[SafeZoneType]:
    """None for "no filter" (absent or "all"); ValidationError for unknown types."""
    if zone_type is None or zone_type == ALL_TYPES or zone_type == "":
        return None
    if isinstance(zone_type, SafeZoneType):
        return zone_type
    try:
        return SafeZoneType(zone_type)
    except ValueError:
        valid = [t.value for t in SafeZoneType]
        raise ValidationError(
            f"Invalid safe zone type '{zone_type}'. Must be one of: {valid}",
            field="type",
        ) from None


def display_order(zone: SafeZone):
    return (not zone.verified, zone.name)


def filter_safe_zones(
    zones: Iterable[SafeZone],
    zone_type: Optional[Union[str, SafeZoneType]] = None,
) -> List[SafeZone]:
    """Exact type match (or everything), in display order."""
    wanted = parse_zone_type(zone_type)
    selected = [z for z in zones if wanted is None or z.type == wanted]
    return sorted(selected, key=display_order)


def create_safe_zone(
    name: str,
    zone_type: Union[str, SafeZoneType],
    address: str,
    latitude: Optional[float],
    longitude: Optional[float],
    phone_number: Optional[str] = None,
    operating_hours: Optional[str] = None,
    created_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SafeZone:
    """Community-submitted entry. Starts unverified until an operator checks it."""
    parsed = parse_zone_type(zone_type)
    if parsed is None:
        raise ValidationError("safe zone type is required", field="type")
    if latitude is None or longitude is None:
        raise ValidationError("safe zone coordinate is required", field="latitude")
    return SafeZone(
        name=require_text(name, "name"),
        type=parsed,
        address=require_text(address, "address"),
        coordinate=Coordinate(latitude, longitude),
        phone_number=optional_text(phone_number),
        operating_hours=optional_text(operating_hours),
        verified=False,
        created_by=created_by,
        created_at=now or utcnow(),
    )
