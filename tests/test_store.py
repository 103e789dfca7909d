"""
test_store.py — RecordStore contract, run against every backend.

Covers:
    • insert / get / query / delete
    • Filters (equality, IS NULL, membership), ordering, limits
    • The one-active-alert unique constraint
    • Compare-and-swap updates (InvalidStateError / NotFoundError)
    • Concurrent activation races (memory store)

The SQL backend runs on a throwaway SQLite file through aiosqlite.

Run with:
    pytest tests/test_store.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.database import create_engine_for_url, init_db
from backend.app.core.errors import ConflictError, InvalidStateError, NotFoundError
from backend.app.safety.models import AlertStatus, EmergencyAlert, IncidentReport
from backend.app.store.base import Collection
from backend.app.store.memory import InMemoryRecordStore
from backend.app.store.sql import SqlRecordStore


NOW = datetime(2026, 3, 14, 20, 0, tzinfo=timezone.utc)


def _make_alert(user_id: str = "u1", status: AlertStatus = AlertStatus.ACTIVE,
                minutes: int = 0) -> EmergencyAlert:
    return EmergencyAlert(user_id=user_id, status=status,
                          created_at=NOW + timedelta(minutes=minutes))


@pytest.fixture(params=["memory", "sql"])
async def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryRecordStore()
        return

    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await init_db(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield SqlRecordStore(factory)
    await engine.dispose()


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: CRUD
# ═══════════════════════════════════════════════════════════════════════════

class TestCrud:

    async def test_insert_and_get(self, store):
        alert = _make_alert()
        await store.insert(Collection.EMERGENCY_ALERTS, alert.to_record())
        row = await store.get(Collection.EMERGENCY_ALERTS, alert.id)
        assert EmergencyAlert.from_record(row) == alert

    async def test_timestamps_stay_utc(self, store):
        alert = _make_alert()
        await store.insert(Collection.EMERGENCY_ALERTS, alert.to_record())
        row = await store.get(Collection.EMERGENCY_ALERTS, alert.id)
        assert row["created_at"].tzinfo is not None
        assert row["created_at"] == NOW

    async def test_get_missing(self, store):
        assert await store.get(Collection.EMERGENCY_ALERTS, "nope") is None

    async def test_delete(self, store):
        alert = _make_alert()
        await store.insert(Collection.EMERGENCY_ALERTS, alert.to_record())
        await store.delete(Collection.EMERGENCY_ALERTS, alert.id)
        assert await store.get(Collection.EMERGENCY_ALERTS, alert.id) is None

    async def test_delete_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.delete(Collection.EMERGENCY_ALERTS, "nope")

    async def test_ping(self, store):
        assert await store.ping() is True


class TestQuery:

    async def test_filter_order_limit(self, store):
        for i, status in enumerate([AlertStatus.RESOLVED, AlertStatus.FALSE_ALARM,
                                    AlertStatus.RESOLVED]):
            await store.insert(Collection.EMERGENCY_ALERTS,
                               _make_alert(status=status, minutes=i).to_record())
        await store.insert(Collection.EMERGENCY_ALERTS,
                           _make_alert(user_id="u2", status=AlertStatus.RESOLVED).to_record())

        rows = await store.query(Collection.EMERGENCY_ALERTS, {"user_id": "u1"},
                                 order_by=[("created_at", True)], limit=2)
        assert [r["created_at"] for r in rows] == [NOW + timedelta(minutes=2),
                                                   NOW + timedelta(minutes=1)]

    async def test_membership_filter(self, store):
        await store.insert(Collection.EMERGENCY_ALERTS,
                           _make_alert(status=AlertStatus.RESOLVED).to_record())
        await store.insert(Collection.EMERGENCY_ALERTS,
                           _make_alert(status=AlertStatus.FALSE_ALARM, minutes=1).to_record())
        rows = await store.query(Collection.EMERGENCY_ALERTS,
                                 {"status": ["false_alarm", "active"]})
        assert [r["status"] for r in rows] == ["false_alarm"]

    async def test_null_filter(self, store):
        named = IncidentReport(incident_type="other", description="d", location_description="l",
                               incident_date=NOW, user_id="u1", created_at=NOW)
        anon = IncidentReport(incident_type="other", description="d", location_description="l",
                              incident_date=NOW, is_anonymous=True, created_at=NOW)
        await store.insert(Collection.INCIDENT_REPORTS, named.to_record())
        await store.insert(Collection.INCIDENT_REPORTS, anon.to_record())

        rows = await store.query(Collection.INCIDENT_REPORTS, {"user_id": None})
        assert [r["id"] for r in rows] == [anon.id]
        assert rows[0].get("user_id") is None


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Conditional writes
# ═══════════════════════════════════════════════════════════════════════════

class TestOneActiveAlert:

    async def test_second_active_alert_rejected(self, store):
        await store.insert(Collection.EMERGENCY_ALERTS, _make_alert().to_record())
        with pytest.raises(ConflictError):
            await store.insert(Collection.EMERGENCY_ALERTS, _make_alert(minutes=1).to_record())

        rows = await store.query(Collection.EMERGENCY_ALERTS, {"status": "active"})
        assert len(rows) == 1

    async def test_other_user_unaffected(self, store):
        await store.insert(Collection.EMERGENCY_ALERTS, _make_alert().to_record())
        await store.insert(Collection.EMERGENCY_ALERTS, _make_alert(user_id="u2").to_record())

    async def test_closed_alerts_do_not_count(self, store):
        await store.insert(Collection.EMERGENCY_ALERTS,
                           _make_alert(status=AlertStatus.RESOLVED).to_record())
        await store.insert(Collection.EMERGENCY_ALERTS,
                           _make_alert(status=AlertStatus.RESOLVED, minutes=1).to_record())
        await store.insert(Collection.EMERGENCY_ALERTS, _make_alert(minutes=2).to_record())

    async def test_new_alert_after_resolve(self, store):
        first = _make_alert()
        await store.insert(Collection.EMERGENCY_ALERTS, first.to_record())
        await store.update(Collection.EMERGENCY_ALERTS, first.id,
                           {"status": "resolved", "resolved_at": NOW},
                           expected={"status": "active"})
        await store.insert(Collection.EMERGENCY_ALERTS, _make_alert(minutes=1).to_record())


class TestCompareAndSwap:

    async def test_update_when_expected_matches(self, store):
        alert = _make_alert()
        await store.insert(Collection.EMERGENCY_ALERTS, alert.to_record())
        row = await store.update(Collection.EMERGENCY_ALERTS, alert.id,
                                 {"status": "resolved", "resolved_at": NOW},
                                 expected={"status": "active"})
        assert row["status"] == "resolved"
        assert row["resolved_at"] == NOW

    async def test_mismatch_raises_invalid_state(self, store):
        alert = _make_alert(status=AlertStatus.RESOLVED)
        await store.insert(Collection.EMERGENCY_ALERTS, alert.to_record())
        with pytest.raises(InvalidStateError) as exc:
            await store.update(Collection.EMERGENCY_ALERTS, alert.id,
                               {"status": "false_alarm"}, expected={"status": "active"})
        assert exc.value.details["current_status"] == "resolved"

        row = await store.get(Collection.EMERGENCY_ALERTS, alert.id)
        assert row["status"] == "resolved"

    async def test_missing_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            await store.update(Collection.EMERGENCY_ALERTS, "nope", {"status": "resolved"},
                               expected={"status": "active"})

    async def test_unconditional_update(self, store):
        alert = _make_alert()
        await store.insert(Collection.EMERGENCY_ALERTS, alert.to_record())
        row = await store.update(Collection.EMERGENCY_ALERTS, alert.id, {"notes": "ok"})
        assert row["notes"] == "ok"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Concurrency (memory store interleaves at every await)
# ═══════════════════════════════════════════════════════════════════════════

class TestMemoryRaces:

    async def test_concurrent_inserts_one_wins(self):
        store = InMemoryRecordStore()
        results = await asyncio.gather(
            store.insert(Collection.EMERGENCY_ALERTS, _make_alert().to_record()),
            store.insert(Collection.EMERGENCY_ALERTS, _make_alert(minutes=1).to_record()),
            return_exceptions=True,
        )
        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert len(await store.query(Collection.EMERGENCY_ALERTS, {"status": "active"})) == 1

    async def test_concurrent_swaps_one_wins(self):
        store = InMemoryRecordStore()
        alert = _make_alert()
        await store.insert(Collection.EMERGENCY_ALERTS, alert.to_record())
        results = await asyncio.gather(
            store.update(Collection.EMERGENCY_ALERTS, alert.id,
                         {"status": "resolved"}, expected={"status": "active"}),
            store.update(Collection.EMERGENCY_ALERTS, alert.id,
                         {"status": "false_alarm"}, expected={"status": "active"}),
            return_exceptions=True,
        )
        assert sum(isinstance(r, InvalidStateError) for r in results) == 1

    async def test_returned_records_are_copies(self):
        store = InMemoryRecordStore()
        alert = _make_alert()
        row = await store.insert(Collection.EMERGENCY_ALERTS, alert.to_record())
        row["status"] = "resolved"
        assert (await store.get(Collection.EMERGENCY_ALERTS, alert.id))["status"] == "active"

    async def test_clear(self):
        store = InMemoryRecordStore()
        await store.insert(Collection.EMERGENCY_ALERTS, _make_alert().to_record())
        store.clear()
        assert await store.query(Collection.EMERGENCY_ALERTS) == []
