"""
sql.py — RecordStore over SQLAlchemy 2.0 async.

Conditional writes map onto the database:

    insert + partial unique index    IntegrityError      → ConflictError
    UPDATE ... WHERE status = :exp   rowcount == 0       → InvalidStateError
                                     (or NotFoundError if the row is gone)

The pre-read done by the lifecycle functions narrows the window but the
database has the last word, so two concurrent activations can never both
leave an active alert behind.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.errors import ConflictError, InvalidStateError, NotFoundError
from backend.app.store.base import (
    CollectionName,
    OrderBy,
    Record,
    RecordStore,
    collection_name,
    resource_name,
)
from backend.app.store.tables import TABLES

logger = logging.getLogger(__name__)


def _table(collection: CollectionName) -> Table:
    name = collection_name(collection)
    try:
        return TABLES[name].__table__
    except KeyError:
        raise ValueError(f"Unknown collection '{name}'") from None


def _normalise(row: Mapping[str, Any]) -> Record:
    """Re-attach UTC to timestamps from backends that drop tzinfo (SQLite)."""
    out: Record = {}
    for key, value in row.items():
        if isinstance(value, datetime) and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        out[key] = value
    return out


def _where(table: Table, filters: Mapping[str, Any]) -> list:
    clauses = []
    for key, wanted in filters.items():
        column = table.c[key]
        if wanted is None:
            clauses.append(column.is_(None))
        elif isinstance(wanted, (list, tuple, set, frozenset)):
            clauses.append(column.in_(list(wanted)))
        else:
            clauses.append(column == wanted)
    return clauses


class SqlRecordStore(RecordStore):
    """RecordStore backed by the ORM tables in ``tables.py``."""

    backend_name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _fetch(self, session: AsyncSession, table: Table, record_id: str) -> Optional[Record]:
        result = await session.execute(select(table).where(table.c.id == record_id))
        row = result.mappings().first()
        return _normalise(row) if row is not None else None

    async def insert(self, collection: CollectionName, record: Record) -> Record:
        table = _table(collection)
        values = {k: v for k, v in record.items() if k in table.c}
        async with self._session_factory() as session:
            try:
                await session.execute(insert(table).values(**values))
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.warning(
                    "Insert into %s rejected by constraint: %s",
                    table.name, e.orig,
                )
                raise ConflictError(
                    f"{resource_name(collection)} violates a uniqueness constraint",
                    collection=table.name,
                ) from e
        return dict(record)

    async def update(
        self,
        collection: CollectionName,
        record_id: str,
        patch: Record,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Record:
        table = _table(collection)
        stmt = update(table).where(table.c.id == record_id, *_where(table, expected or {}))
        stmt = stmt.values(**patch)

        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError(
                    f"{resource_name(collection)} violates a uniqueness constraint",
                    collection=table.name,
                    id=record_id,
                ) from e

            if result.rowcount == 0:
                current = await self._fetch(session, table, record_id)
                await session.rollback()
                if current is None:
                    raise NotFoundError(resource_name(collection), id=record_id)
                raise InvalidStateError(
                    resource_name(collection),
                    current=current.get("status"),
                    attempted=patch.get("status"),
                    id=record_id,
                )

            await session.commit()
            updated = await self._fetch(session, table, record_id)

        if updated is None:
            raise NotFoundError(resource_name(collection), id=record_id)
        return updated

    async def get(self, collection: CollectionName, record_id: str) -> Optional[Record]:
        table = _table(collection)
        async with self._session_factory() as session:
            return await self._fetch(session, table, record_id)

    async def query(
        self,
        collection: CollectionName,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        table = _table(collection)
        stmt = select(table).where(*_where(table, filters or {}))
        for field_name, descending in order_by or ():
            column = table.c[field_name]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_normalise(row) for row in result.mappings().all()]

    async def delete(self, collection: CollectionName, record_id: str) -> None:
        table = _table(collection)
        async with self._session_factory() as session:
            result = await session.execute(delete(table).where(table.c.id == record_id))
            if result.rowcount == 0:
                await session.rollback()
                raise NotFoundError(resource_name(collection), id=record_id)
            await session.commit()

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(select(1))
        return True
