"""Best-effort, TTL based exclusivity markers backed by Redis.

A lease is not a consensus lock: a stalled holder can lose it once the TTL
lapses. Work guarded by a lease must therefore be idempotent downstream.
"""

from __future__ import annotations

import logging
from uuid import uuid4

from redis.asyncio import Redis

from app.utils.redis_client import get_redis_client, redis_key

logger = logging.getLogger(__name__)


def watcher_lease_key(blockchain_key: str) -> str:
    return redis_key("indexer", blockchain_key, "running")


class Lease:
    def __init__(self, key: str, *, ttl_seconds: int, redis: Redis | None = None) -> None:
        if ttl_seconds <= 0:
            raise ValueError("Lease TTL must be positive")
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.token = uuid4().hex
        self._redis = redis
        self.held = False

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis_client()

    async def acquire(self) -> bool:
        acquired = await self.redis.set(self.key, self.token, nx=True, ex=self.ttl_seconds)
        self.held = bool(acquired)
        if not self.held:
            logger.warning("Lease %s is held by another instance", self.key)
        return self.held

    async def renew(self) -> bool:
        """Extend the TTL if this instance still owns the lease."""
        current = await self.redis.get(self.key)
        if current != self.token:
            self.held = False
            logger.warning("Lease %s lost before renewal", self.key)
            return False
        self.held = bool(await self.redis.set(self.key, self.token, xx=True, ex=self.ttl_seconds))
        return self.held

    async def release(self) -> None:
        current = await self.redis.get(self.key)
        if current == self.token:
            await self.redis.delete(self.key)
        self.held = False
