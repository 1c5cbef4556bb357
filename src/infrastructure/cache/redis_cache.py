"""Redis-backed cache store for analytics results.

Values are stored as JSON strings with a per-key expiry. Prefix
invalidation walks the keyspace with ``SCAN`` so it never blocks the
server the way ``KEYS`` would.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from domain.exceptions import CacheError
from infrastructure.observability.metrics import record_cache_lookup

logger = logging.getLogger(__name__)

SCAN_BATCH_SIZE = 500


class RedisCacheStore:
    """Implements the ``CacheStore`` port on top of ``redis.asyncio``.

    Every Redis failure is re-raised as :class:`CacheError`; whether that
    error reaches callers is decided by the cache-aside layer.
    """

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCacheStore:
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(key)
        except RedisError as exc:
            raise CacheError("cache-get", str(exc), exc) from exc
        record_cache_lookup(key, hit=raw is not None)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise CacheError("cache-get", f"corrupt entry for {key}", exc) from exc

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self._client.set(key, json.dumps(value), ex=ttl_seconds or None)
        except (RedisError, TypeError) as exc:
            raise CacheError("cache-set", str(exc), exc) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            raise CacheError("cache-delete", str(exc), exc) from exc

    async def invalidate_by_prefix(self, prefix: str) -> int:
        removed = 0
        batch: list[str] = []
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*", count=SCAN_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= SCAN_BATCH_SIZE:
                    removed += await self._client.delete(*batch)
                    batch.clear()
            if batch:
                removed += await self._client.delete(*batch)
        except RedisError as exc:
            raise CacheError("cache-invalidate", str(exc), exc) from exc
        logger.info("Cache invalidated: prefix=%s count=%d", prefix, removed)
        return removed

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            logger.warning("Redis ping failed", exc_info=True)
            return False

    async def close(self) -> None:
        await self._client.aclose()
