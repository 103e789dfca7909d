"""
store — Record persistence behind the lifecycle engine.

Sub-modules:
    base    — RecordStore contract, collections, unique constraints
    memory  — in-process store (dev / tests)
    tables  — ORM tables for the SQL store
    sql     — SQLAlchemy async store
"""

from __future__ import annotations

from backend.app.core.config import settings
from backend.app.store.base import Collection, RecordStore


def build_store() -> RecordStore:
    """Construct the store selected by STORE_BACKEND."""
    backend = settings.STORE_BACKEND.lower()
    if backend == "memory":
        from backend.app.store.memory import InMemoryRecordStore
        return InMemoryRecordStore()
    if backend == "sql":
        from backend.app.core.database import get_session_factory
        from backend.app.store.sql import SqlRecordStore
        return SqlRecordStore(get_session_factory())
    raise ValueError(f"Unknown STORE_BACKEND '{settings.STORE_BACKEND}' (memory | sql)")


__all__ = ["Collection", "RecordStore", "build_store"]
