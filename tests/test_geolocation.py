"""
test_geolocation.py — Tests for best-effort position acquisition.

Run with:
    pytest tests/test_geolocation.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from backend.app.core.errors import LocationError
from backend.app.safety.geolocation import (
    FixedPosition,
    GeolocationProvider,
    ReportedPosition,
    acquire_position,
)
from backend.app.safety.models import Coordinate


class _SlowProvider(GeolocationProvider):
    async def current_position(self) -> Coordinate:
        await asyncio.sleep(10)
        return Coordinate(0.0, 0.0)


class _BrokenProvider(GeolocationProvider):
    async def current_position(self) -> Coordinate:
        raise RuntimeError("driver bug")


class TestReportedPosition:

    async def test_fix(self):
        assert await ReportedPosition(13.0, 80.0).current_position() == Coordinate(13.0, 80.0)

    async def test_reported_error(self):
        with pytest.raises(LocationError) as exc:
            await ReportedPosition(error="permission denied").current_position()
        assert exc.value.message == "permission denied"

    async def test_missing_fix(self):
        with pytest.raises(LocationError):
            await ReportedPosition(13.0, None).current_position()

    async def test_out_of_range(self):
        with pytest.raises(LocationError):
            await ReportedPosition(123.0, 80.0).current_position()


class TestAcquirePosition:

    async def test_no_provider(self):
        assert await acquire_position(None) is None

    async def test_fixed(self):
        c = Coordinate(1.0, 2.0)
        assert await acquire_position(FixedPosition(c)) == c

    async def test_location_error_absorbed(self):
        assert await acquire_position(ReportedPosition(error="timeout")) is None

    async def test_timeout_absorbed(self):
        assert await acquire_position(_SlowProvider(), timeout=0.01) is None

    async def test_other_errors_propagate(self):
        with pytest.raises(RuntimeError):
            await acquire_position(_BrokenProvider())
