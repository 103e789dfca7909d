"""
memory.py — In-process record store.

Used for development, tests and single-process deployments. Every call
yields to the event loop once before touching data, the same suspension
point a networked store has, so check-then-act races between concurrent
tasks behave here as they would against a real database. Each write is
then applied without further awaits, which makes the unique-constraint
check and the compare-and-swap atomic within one event loop.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

from backend.app.core.errors import ConflictError, InvalidStateError, NotFoundError
from backend.app.store.base import (
    UNIQUE_CONSTRAINTS,
    CollectionName,
    OrderBy,
    Record,
    RecordStore,
    UniqueConstraint,
    collection_name,
    resource_name,
)

logger = logging.getLogger(__name__)


def _matches(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for key, wanted in filters.items():
        value = record.get(key)
        if wanted is None:
            if value is not None:
                return False
        elif isinstance(wanted, (list, tuple, set, frozenset)):
            if value not in wanted:
                return False
        elif value != wanted:
            return False
    return True


def _sort_key(field_name: str):
    # Unset values sort last in ascending order
    return lambda r: (r.get(field_name) is None, r.get(field_name))


class InMemoryRecordStore(RecordStore):
    """Dict-backed RecordStore enforcing the same constraints as the SQL schema."""

    backend_name = "memory"

    def __init__(self, constraints: Optional[Dict[str, List[UniqueConstraint]]] = None):
        self._tables: Dict[str, Dict[str, Record]] = {}
        self._constraints = UNIQUE_CONSTRAINTS if constraints is None else constraints

    def _table(self, collection: CollectionName) -> Dict[str, Record]:
        return self._tables.setdefault(collection_name(collection), {})

    def _check_unique(self, name: str, candidate: Record, exclude_id: Optional[str]) -> None:
        for constraint in self._constraints.get(name, []):
            if not constraint.applies_to(candidate):
                continue
            key = constraint.key(candidate)
            for other_id, other in self._tables.get(name, {}).items():
                if other_id == exclude_id:
                    continue
                if constraint.applies_to(other) and constraint.key(other) == key:
                    logger.warning(
                        "Unique constraint %s rejected write on %s (existing id=%s)",
                        constraint.name, name, other_id,
                    )
                    raise ConflictError(
                        f"{resource_name(name)} violates {constraint.name}",
                        constraint=constraint.name,
                        existing_id=other_id,
                    )

    async def insert(self, collection: CollectionName, record: Record) -> Record:
        await asyncio.sleep(0)
        name = collection_name(collection)
        table = self._table(name)
        record_id = record.get("id")
        if not record_id:
            raise ValueError(f"{name} record has no id")
        if record_id in table:
            raise ConflictError(f"{resource_name(name)} {record_id} already exists",
                                existing_id=record_id)
        self._check_unique(name, record, exclude_id=None)
        table[record_id] = copy.deepcopy(record)
        return copy.deepcopy(record)

    async def update(
        self,
        collection: CollectionName,
        record_id: str,
        patch: Record,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Record:
        await asyncio.sleep(0)
        name = collection_name(collection)
        table = self._table(name)
        current = table.get(record_id)
        if current is None:
            raise NotFoundError(resource_name(name), id=record_id)

        if expected and not _matches(current, expected):
            raise InvalidStateError(
                resource_name(name),
                current=current.get("status"),
                attempted=patch.get("status"),
                id=record_id,
            )

        candidate = {**current, **patch}
        self._check_unique(name, candidate, exclude_id=record_id)
        table[record_id] = candidate
        return copy.deepcopy(candidate)

    async def get(self, collection: CollectionName, record_id: str) -> Optional[Record]:
        await asyncio.sleep(0)
        record = self._table(collection).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def query(
        self,
        collection: CollectionName,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        await asyncio.sleep(0)
        rows = [r for r in self._table(collection).values() if _matches(r, filters or {})]

        if order_by:
            # Newest insert first among ties when the primary key is descending
            if order_by[0][1]:
                rows.reverse()
            for field_name, descending in reversed(list(order_by)):
                rows.sort(key=_sort_key(field_name), reverse=descending)

        if limit is not None:
            rows = rows[:limit]
        return [copy.deepcopy(r) for r in rows]

    async def delete(self, collection: CollectionName, record_id: str) -> None:
        await asyncio.sleep(0)
        name = collection_name(collection)
        table = self._table(name)
        if record_id not in table:
            raise NotFoundError(resource_name(name), id=record_id)
        del table[record_id]

    def clear(self) -> None:
        self._tables.clear()
