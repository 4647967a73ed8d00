"""
Balance read cache.

An explicit cache object with a TTL, created once per application from
settings and passed to callers. Two backends: in-process memory, or Redis.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from redis.exceptions import RedisError
from finance_backend.app.core.config import settings
from finance_backend.app.core.redis_client import create_redis_client

logger = logging.getLogger(__name__)


class MemoryBackend:
    """Dict-backed store with per-key expiry."""

    def __init__(self):
        self._store: Dict[str, dict] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._store.get(key)
        if not entry:
            return None

        if datetime.now(timezone.utc) > entry["expires_at"]:
            del self._store[key]
            return None

        return entry["data"]

    async def set(self, key: str, data: str, ttl_seconds: int) -> None:
        self._store[key] = {
            "data": data,
            "expires_at": datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        }

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)

    async def clear(self, prefix: str) -> None:
        for key in [k for k in self._store if k.startswith(prefix)]:
            del self._store[key]


class RedisBackend:
    """Store on a `redis.asyncio` client."""

    def __init__(self, client):
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, data: str, ttl_seconds: int) -> None:
        await self.client.setex(key, ttl_seconds, data)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self.client.delete(*keys)

    async def clear(self, prefix: str) -> None:
        keys = [key async for key in self.client.scan_iter(match=f"{prefix}*")]
        if keys:
            await self.client.delete(*keys)


class BalanceCache:
    """
    TTL cache of read-path balances keyed by account id.

    Cache failures never fail a request: a broken backend behaves like a miss
    and is logged.
    """

    KEY_PREFIX = "balance:"

    def __init__(self, backend, ttl_seconds: int = 60):
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    def _key(self, account_id: str) -> str:
        return f"{self.KEY_PREFIX}{account_id}"

    async def get(self, account_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.backend.get(self._key(account_id))
        except (RedisError, OSError) as e:
            logger.warning("Balance cache read failed for %s: %s", account_id, e)
            return None
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return json.loads(raw)

    async def set(self, account_id: str, value: Dict[str, Any]) -> None:
        if self.ttl_seconds <= 0:
            return
        try:
            await self.backend.set(self._key(account_id), json.dumps(value, default=str), self.ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning("Balance cache write failed for %s: %s", account_id, e)

    async def invalidate(self, *account_ids: str) -> None:
        keys = [self._key(a) for a in account_ids if a]
        if not keys:
            return
        try:
            await self.backend.delete(*keys)
        except (RedisError, OSError) as e:
            logger.warning("Balance cache invalidation failed for %s: %s", account_ids, e)

    async def clear(self) -> None:
        try:
            await self.backend.clear(self.KEY_PREFIX)
        except (RedisError, OSError) as e:
            logger.warning("Balance cache clear failed: %s", e)


def build_balance_cache(redis_client=None) -> BalanceCache:
    """Create the cache selected by `settings.balance_cache_backend`."""
    if settings.balance_cache_backend == "redis":
        if redis_client is None:
            redis_client = create_redis_client()
        backend = RedisBackend(redis_client)
    else:
        backend = MemoryBackend()

    logger.info("Balance cache backend: %s (ttl=%ss)", settings.balance_cache_backend, settings.balance_cache_ttl_seconds)
    return BalanceCache(backend, ttl_seconds=settings.balance_cache_ttl_seconds)
