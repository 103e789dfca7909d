"""
Deep health probe: record store, cache, missed check-in sweeper.

Severity follows what each subsystem means for a person in trouble:

    store      unhealthy when unreachable (no SOS can be recorded)
    redis      degraded when configured but failing (safe-zone listings
               fall back to the store); healthy when disabled
    sweeper    degraded when enabled but stopped or its last pass
               failed (check-ins can still be swept on demand)

The overall status is the worst component status. /health/ready turns
UNHEALTHY into a 503.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from backend.app.core.cache import cache_enabled, ping_redis
from backend.app.core.config import settings

logger = logging.getLogger(__name__)

_BOOTED_AT = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def rank(self) -> int:
        return ("healthy", "degraded", "unhealthy").index(self.value)


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    latency_ms: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = {"name": self.name, "status": self.status.value,
               "latency_ms": round(self.latency_ms, 2)}
        if self.message:
            out["message"] = self.message
        if self.details:
            out["details"] = self.details
        return out


@dataclass
class HealthReport:
    components: List[ComponentHealth]
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> HealthStatus:
        worst = max((c.status for c in self.components), key=lambda s: s.rank,
                    default=HealthStatus.HEALTHY)
        return worst

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.checked_at.isoformat(),
            "uptime_seconds": round(time.monotonic() - _BOOTED_AT, 1),
            "components": [c.to_dict() for c in self.components],
        }


def _redact(url: str) -> str:
    """Strip credentials from a connection URL."""
    return url.split("@")[-1] if "@" in url else url


async def _probe(name: str, probe: Callable[[], Awaitable[Any]],
                 on_failure: HealthStatus) -> ComponentHealth:
    comp = ComponentHealth(name=name)
    started = time.perf_counter()
    try:
        await probe()
    except Exception as e:
        logger.warning("Health probe %s failed: %s", name, e)
        comp.status = on_failure
        comp.message = str(e) or type(e).__name__
    comp.latency_ms = (time.perf_counter() - started) * 1000
    return comp


async def check_store(store) -> ComponentHealth:
    comp = await _probe("store", store.ping, HealthStatus.UNHEALTHY)
    comp.details["backend"] = store.backend_name
    if store.backend_name == "sql":
        comp.details["url"] = _redact(settings.DATABASE_URL)
    return comp


async def check_redis() -> ComponentHealth:
    if not cache_enabled():
        return ComponentHealth(name="redis", message="Caching disabled")

    async def ping() -> None:
        if not await ping_redis():
            raise ConnectionError("no PONG from Redis")

    comp = await _probe("redis", ping, HealthStatus.DEGRADED)
    comp.details["url"] = _redact(settings.REDIS_URL)
    return comp


def check_sweeper(sweeper) -> ComponentHealth:
    comp = ComponentHealth(name="check_in_sweeper")
    if not settings.CHECK_IN_SWEEP_ENABLED:
        comp.message = "Sweeper disabled"
    elif sweeper is None or not sweeper.is_running:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Sweeper not running"
    else:
        comp.details = sweeper.status()
        if sweeper.last_error:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Last sweep failed: {sweeper.last_error}"
        else:
            comp.message = f"{sweeper.runs} sweeps completed"
    return comp


async def run_health_check(store, sweeper: Optional[Any] = None) -> HealthReport:
    store_health, redis_health = await asyncio.gather(check_store(store), check_redis())
    return HealthReport(components=[store_health, redis_health, check_sweeper(sweeper)])
