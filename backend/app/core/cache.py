"""
Optional Redis read-through cache for directory listings.

Only the safe-zone directory is cached. Alert, check-in and contact state
is never served from cache: every lifecycle decision reads the store's
current record.

With REDIS_URL unset the cache is a no-op and every lookup misses. A
Redis outage degrades the same way, logged once per failing call.

Usage:
    from backend.app.core.cache import NamespacedCache

    zones = NamespacedCache("safe_zones", ttl=300)
    await zones.put("police", rows)
    rows = await zones.fetch("police")
    await zones.invalidate()
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[aioredis.Redis] = None


def cache_enabled() -> bool:
    return bool(settings.REDIS_URL)


def get_redis() -> Optional[aioredis.Redis]:
    """Shared client, created on first use. None when caching is off."""
    global _client
    if not cache_enabled():
        return None
    if _client is None:
        _client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("Redis client created for %s", settings.REDIS_URL.split("@")[-1])
    return _client


async def ping_redis() -> bool:
    client = get_redis()
    if client is None:
        return False
    return bool(await client.ping())


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


class NamespacedCache:
    """JSON values under ``<namespace>:<key>`` with a fixed TTL."""

    def __init__(self, namespace: str, ttl: int):
        self.namespace = namespace
        self.ttl = ttl

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def fetch(self, key: str) -> Optional[Any]:
        client = get_redis()
        if client is None:
            return None
        try:
            raw = await client.get(self._key(key))
        except aioredis.RedisError as e:
            logger.warning("Cache read failed for %s: %s", self._key(key), e)
            return None
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, value: Any) -> bool:
        client = get_redis()
        if client is None:
            return False
        try:
            await client.set(self._key(key), json.dumps(value, default=str), ex=self.ttl)
        except aioredis.RedisError as e:
            logger.warning("Cache write failed for %s: %s", self._key(key), e)
            return False
        return True

    async def invalidate(self) -> int:
        """Drop every key in the namespace; returns how many went."""
        client = get_redis()
        if client is None:
            return 0
        try:
            keys = [k async for k in client.scan_iter(match=f"{self.namespace}:*")]
            if keys:
                await client.delete(*keys)
        except aioredis.RedisError as e:
            logger.warning("Cache invalidation failed for %s: %s", self.namespace, e)
            return 0
        return len(keys)
