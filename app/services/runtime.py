"""Background settlement runtime: invoice cache, settlement worker and chain watchers."""

from __future__ import annotations

import logging
from typing import Any, Callable

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import AsyncSessionLocal
from app.services.active_invoices import ActiveInvoiceCache
from app.services.settlement import SettlementWorker
from app.services.settlement_queue import SettlementQueue
from app.services.watchers import ChainWatcher, build_watchers

logger = logging.getLogger(__name__)


class SettlementRuntime:
    def __init__(
        self,
        *,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        redis: Redis | None = None,
        watchers: list[ChainWatcher] | None = None,
    ) -> None:
        self.cache = ActiveInvoiceCache(session_factory)
        self.queue = SettlementQueue(redis=redis)
        self.worker = SettlementWorker(self.queue, self.cache, session_factory)
        self.watchers = (
            watchers if watchers is not None else build_watchers(self.queue, self.cache, redis=redis)
        )
        self.started_watchers: list[ChainWatcher] = []

    async def start(self) -> None:
        await self.cache.start()
        await self.worker.start()
        for watcher in self.watchers:
            # One chain failing to start must not keep the others down.
            try:
                if await watcher.start():
                    self.started_watchers.append(watcher)
            except Exception:
                logger.exception("Watcher for %s failed to start", watcher.blockchain_key)
        logger.info(
            "Settlement runtime started watchers=%d/%d",
            len(self.started_watchers),
            len(self.watchers),
        )

    async def stop(self) -> None:
        for watcher in reversed(self.started_watchers):
            try:
                await watcher.stop()
            except Exception:
                logger.exception("Watcher for %s failed to stop cleanly", watcher.blockchain_key)
        self.started_watchers = []
        await self.worker.stop()
        await self.cache.stop()
        logger.info("Settlement runtime stopped")

    def status(self) -> dict[str, Any]:
        return {
            "enabled": True,
            "watchers": {watcher.blockchain_key: watcher.running for watcher in self.watchers},
            "tracked_blockchains": self.cache.tracked_blockchains(),
        }
