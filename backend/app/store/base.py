"""
base.py — Record store contract.

The lifecycle engine never touches persistence directly. It talks to a
RecordStore: a small CRUD surface over named collections of flat dict
records, plus the two conditional-write guarantees the engine depends
on for correctness under concurrent callers.

═══════════════════════════════════════════════════════════════════════════
WRITE GUARANTEES
═══════════════════════════════════════════════════════════════════════════

    insert   unique constraints are checked at write time
             violation → ConflictError

    update   optional ``expected`` field values form a compare-and-swap
             mismatch at write time → InvalidStateError
             missing record        → NotFoundError

The only unique constraint today is "one active alert per user":

    emergency_alerts  UNIQUE (user_id) WHERE status = 'active'
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union


class Collection(str, Enum):
    PROFILES         = "profiles"
    TRUSTED_CONTACTS = "trusted_contacts"
    EMERGENCY_ALERTS = "emergency_alerts"
    CHECK_INS        = "check_ins"
    INCIDENT_REPORTS = "incident_reports"
    SAFE_ZONES       = "safe_zones"


# Human-readable record names used in error payloads
RESOURCE_NAMES: Dict[str, str] = {
    Collection.PROFILES.value:         "UserProfile",
    Collection.TRUSTED_CONTACTS.value: "TrustedContact",
    Collection.EMERGENCY_ALERTS.value: "EmergencyAlert",
    Collection.CHECK_INS.value:        "CheckIn",
    Collection.INCIDENT_REPORTS.value: "IncidentReport",
    Collection.SAFE_ZONES.value:       "SafeZone",
}


@dataclass(frozen=True)
class UniqueConstraint:
    """Uniqueness of ``fields`` among records matching ``where``."""
    name: str
    fields: Tuple[str, ...]
    where: Mapping[str, Any] = field(default_factory=dict)

    def applies_to(self, record: Mapping[str, Any]) -> bool:
        return all(record.get(k) == v for k, v in self.where.items())

    def key(self, record: Mapping[str, Any]) -> Tuple[Any, ...]:
        return tuple(record.get(f) for f in self.fields)


ONE_ACTIVE_ALERT = UniqueConstraint(
    name="uq_emergency_alerts_one_active",
    fields=("user_id",),
    where={"status": "active"},
)

UNIQUE_CONSTRAINTS: Dict[str, List[UniqueConstraint]] = {
    Collection.EMERGENCY_ALERTS.value: [ONE_ACTIVE_ALERT],
}


CollectionName = Union[Collection, str]
Record = Dict[str, Any]
# (field, descending)
OrderBy = Sequence[Tuple[str, bool]]


def collection_name(collection: CollectionName) -> str:
    return collection.value if isinstance(collection, Collection) else str(collection)


def resource_name(collection: CollectionName) -> str:
    name = collection_name(collection)
    return RESOURCE_NAMES.get(name, name)


class RecordStore(ABC):
    """
    Async CRUD over named collections.

    Filters are field → value maps: a plain value means equality,
    ``None`` means "unset", and a list/tuple/set means membership.
    """

    backend_name = "abstract"

    @abstractmethod
    async def insert(self, collection: CollectionName, record: Record) -> Record:
        """Persist a new record. Raises ConflictError on a unique violation."""

    @abstractmethod
    async def update(
        self,
        collection: CollectionName,
        record_id: str,
        patch: Record,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Record:
        """Apply ``patch`` if the record still matches ``expected``; return the new record."""

    @abstractmethod
    async def get(self, collection: CollectionName, record_id: str) -> Optional[Record]:
        """Fetch one record by id, None when absent."""

    @abstractmethod
    async def query(
        self,
        collection: CollectionName,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Records matching ``filters`` in ``order_by`` order."""

    @abstractmethod
    async def delete(self, collection: CollectionName, record_id: str) -> None:
        """Hard delete. Raises NotFoundError when absent."""

    async def ping(self) -> bool:
        """Connectivity probe for health checks."""
        return True

    async def close(self) -> None:
        return None
