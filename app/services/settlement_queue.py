"""At-least-once delivery of detected transactions to the settlement matcher.

Redis layout:

- ``settlement:pending``: list, producers LPUSH and consumers BLMOVE from the right
- ``settlement:processing``: list of messages currently being handled
- ``settlement:delayed``: sorted set of messages waiting out a retry backoff
- ``settlement:dead``: list of messages that exhausted their attempts
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable
from uuid import uuid4

from redis.asyncio import Redis

from app.core.settings import settings
from app.schemas.indexer import SettlementMessage, SettlementPayload
from app.utils.redis_client import get_redis_client, redis_key

logger = logging.getLogger(__name__)

PENDING_KEY = redis_key("settlement", "pending")
PROCESSING_KEY = redis_key("settlement", "processing")
DELAYED_KEY = redis_key("settlement", "delayed")
DEAD_KEY = redis_key("settlement", "dead")


def backoff_seconds(attempt: int, *, base: float, maximum: float) -> float:
    if attempt <= 0:
        return 0.0
    return min(base * (2 ** (attempt - 1)), maximum)


class SettlementQueue:
    def __init__(
        self,
        *,
        redis: Redis | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self.max_attempts = max_attempts or settings.settlement_max_attempts
        self.backoff_base = backoff_base or settings.settlement_backoff_base_seconds
        self.backoff_max = backoff_max or settings.settlement_backoff_max_seconds
        self._clock = clock

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis_client()

    @staticmethod
    def _encode(message: SettlementMessage) -> str:
        return message.model_dump_json(by_alias=True)

    @staticmethod
    def _decode(raw: str) -> SettlementMessage:
        return SettlementMessage.model_validate_json(raw)

    async def enqueue(self, payload: SettlementPayload) -> str:
        message = SettlementMessage(id=uuid4().hex, attempts=0, payload=payload)
        await self.redis.lpush(PENDING_KEY, self._encode(message))
        logger.info(
            "Queued settlement message id=%s chain=%s tx=%s",
            message.id,
            payload.blockchain_key,
            payload.transaction_hash,
        )
        return message.id

    async def reserve(self, timeout: float | None = None) -> tuple[SettlementMessage, str] | None:
        raw = await self.redis.blmove(
            PENDING_KEY,
            PROCESSING_KEY,
            timeout if timeout is not None else settings.settlement_pop_timeout_seconds,
            "RIGHT",
            "LEFT",
        )
        if raw is None:
            return None
        try:
            return self._decode(raw), raw
        except ValueError:
            logger.error("Discarding undecodable settlement message to dead letter: %s", raw)
            await self.redis.lrem(PROCESSING_KEY, 1, raw)
            await self.redis.lpush(DEAD_KEY, json.dumps({"raw": raw, "error": "undecodable"}))
            return None

    async def ack(self, raw: str) -> None:
        await self.redis.lrem(PROCESSING_KEY, 1, raw)

    async def retry(self, raw: str, message: SettlementMessage, error: str) -> bool:
        """Schedule a redelivery; returns False once the message is dead-lettered."""
        await self.redis.lrem(PROCESSING_KEY, 1, raw)
        attempts = message.attempts + 1
        updated = message.model_copy(update={"attempts": attempts})
        if attempts >= self.max_attempts:
            await self.redis.lpush(
                DEAD_KEY,
                json.dumps({"message": json.loads(self._encode(updated)), "error": error}),
            )
            logger.error(
                "Settlement message id=%s dead-lettered after %d attempts: %s",
                message.id,
                attempts,
                error,
            )
            return False
        delay = backoff_seconds(attempts, base=self.backoff_base, maximum=self.backoff_max)
        await self.redis.zadd(DELAYED_KEY, {self._encode(updated): self._clock() + delay})
        logger.warning(
            "Settlement message id=%s attempt %d failed, retrying in %.1fs: %s",
            message.id,
            attempts,
            delay,
            error,
        )
        return True

    async def promote_due(self) -> int:
        due = await self.redis.zrangebyscore(DELAYED_KEY, "-inf", self._clock())
        promoted = 0
        for raw in due:
            # Only the worker that removes the entry may requeue it.
            if await self.redis.zrem(DELAYED_KEY, raw):
                await self.redis.lpush(PENDING_KEY, raw)
                promoted += 1
        return promoted

    async def recover_inflight(self) -> int:
        recovered = 0
        while await self.redis.lmove(PROCESSING_KEY, PENDING_KEY, "LEFT", "RIGHT") is not None:
            recovered += 1
        if recovered:
            logger.warning("Requeued %d in-flight settlement messages from a previous run", recovered)
        return recovered

    async def dead_letter_count(self) -> int:
        return int(await self.redis.llen(DEAD_KEY))

    async def depths(self) -> dict[str, int]:
        return {
            "pending": int(await self.redis.llen(PENDING_KEY)),
            "processing": int(await self.redis.llen(PROCESSING_KEY)),
            "delayed": int(await self.redis.zcard(DELAYED_KEY)),
            "dead": await self.dead_letter_count(),
        }
