"""Per-chain deposit watcher skeleton.

A watcher owns three tasks while it runs: lease renewal, the address
registry subscription and the detection loop implemented by ``poll_once``.
Losing the lease stops the watcher; a sibling instance may already have
taken over the chain.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from redis.asyncio import Redis
from redis.asyncio.client import PubSub

from app.core.context import set_worker
from app.core.settings import settings
from app.schemas.indexer import AddressChanged, DetectedTransaction, SettlementPayload, make_watch_key
from app.services import address_registry
from app.services.active_invoices import ActiveInvoiceCache
from app.services.leases import Lease, watcher_lease_key
from app.services.settlement_queue import SettlementQueue

logger = logging.getLogger(__name__)


class ChainWatcher:
    family = "chain"

    def __init__(
        self,
        blockchain_key: str,
        queue: SettlementQueue,
        cache: ActiveInvoiceCache | None = None,
        *,
        poll_interval: float,
        redis: Redis | None = None,
        call_timeout: float | None = None,
        backoff_max: float | None = None,
        lease_ttl: int | None = None,
        lease_renew: float | None = None,
    ) -> None:
        self.blockchain_key = blockchain_key
        self.queue = queue
        self.cache = cache
        self.poll_interval = poll_interval
        self.call_timeout = call_timeout or settings.watcher_call_timeout_seconds
        self.backoff_max = backoff_max or settings.watcher_backoff_max_seconds
        self.lease_renew = lease_renew or settings.watcher_lease_renew_seconds
        self.lease = Lease(
            watcher_lease_key(blockchain_key),
            ttl_seconds=lease_ttl or settings.watcher_lease_ttl_seconds,
            redis=redis,
        )
        self._redis = redis
        self.watched: dict[str, AddressChanged] = {}
        self._pubsub: PubSub | None = None
        self._tasks: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self._halt_task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        return f"watcher:{self.blockchain_key}"

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    # Watched set

    def add_address(self, change: AddressChanged) -> None:
        self.watched[change.watch_key()] = change

    def remove_address(self, change: AddressChanged) -> None:
        self.watched.pop(change.watch_key(), None)

    def match(self, token_id: str, address: str | None) -> AddressChanged | None:
        if not address:
            return None
        return self.watched.get(make_watch_key(token_id, address))

    def watched_tokens(self) -> set[str]:
        return {change.token_id.lower() for change in self.watched.values()}

    def seed_from_cache(self) -> int:
        if self.cache is None:
            return 0
        for invoice in self.cache.list_invoices(self.blockchain_key):
            self.add_address(
                AddressChanged(
                    token_id=invoice.token_id,
                    address=invoice.wallet_address,
                    derived_path=invoice.wallet_derivation_path,
                )
            )
        return len(self.watched)

    def handle_registry_message(self, channel: str | bytes, data: str | bytes) -> None:
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        try:
            change = address_registry.parse_change(data)
        except ValueError as exc:
            logger.warning("Ignoring malformed registry message on %s: %s", channel, exc)
            return
        if channel == address_registry.channel_for(self.blockchain_key, "added"):
            self.add_address(change)
            logger.info("Watching %s %s on %s", change.token_id, change.address, self.blockchain_key)
        elif channel == address_registry.channel_for(self.blockchain_key, "removed"):
            self.remove_address(change)
            logger.info("Stopped watching %s %s on %s", change.token_id, change.address, self.blockchain_key)
        else:
            logger.debug("Ignoring registry message on unrelated channel %s", channel)

    # Provider access

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run one provider call with the per-call timeout."""
        if inspect.iscoroutinefunction(fn):
            return await asyncio.wait_for(fn(*args, **kwargs), timeout=self.call_timeout)
        return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=self.call_timeout)

    async def dispatch(self, tx: DetectedTransaction) -> str:
        logger.info(
            "Detected deposit chain=%s token=%s address=%s tx=%s amount=%s",
            tx.blockchain_key,
            tx.token_id,
            tx.address,
            tx.tx_hash,
            tx.amount,
        )
        return await self.queue.enqueue(SettlementPayload.from_detected(tx))

    async def poll_once(self) -> int:
        """Scan new blocks and dispatch matching transfers. Returns the number dispatched."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release provider resources."""

    # Lifecycle

    async def start(self) -> bool:
        if self.running:
            return True
        if not await self.lease.acquire():
            logger.warning("Watcher for %s already running elsewhere; not starting", self.blockchain_key)
            return False
        self._stop_event.clear()
        seeded = self.seed_from_cache()
        self._pubsub = await address_registry.subscribe(self.blockchain_key, redis=self._redis)
        self._tasks = [
            asyncio.create_task(self._lease_loop(), name=f"{self.name}:lease"),
            asyncio.create_task(self._registry_loop(), name=f"{self.name}:registry"),
            asyncio.create_task(self._detect_loop(), name=f"{self.name}:detect"),
        ]
        logger.info("Watcher %s started with %d watched addresses", self.name, seeded)
        return True

    async def stop(self) -> None:
        self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        if self._pubsub is not None:
            await address_registry.unsubscribe(self._pubsub)
            self._pubsub = None
        if self.lease.held:
            await self.lease.release()
        await self.close()
        logger.info("Watcher %s stopped", self.name)

    async def _sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; True when stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def backoff_for(self, failures: int) -> float:
        if failures <= 0:
            return self.poll_interval
        return min(self.poll_interval * (2 ** failures), self.backoff_max)

    async def _lease_loop(self) -> None:
        set_worker(self.name)
        while not await self._sleep(self.lease_renew):
            try:
                renewed = await self.lease.renew()
            except Exception:
                logger.exception("Lease renewal for %s failed", self.blockchain_key)
                continue
            if not renewed:
                logger.error("Watcher %s lost its lease; halting", self.name)
                self._stop_event.set()
                # stop() awaits this task, so the teardown runs in its own task.
                self._halt_task = asyncio.create_task(self.stop(), name=f"{self.name}:halt")
                return

    async def _registry_loop(self) -> None:
        set_worker(self.name)
        failures = 0
        while not self._stop_event.is_set():
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                failures = 0
            except Exception:
                failures += 1
                logger.exception("Address registry read failed for %s", self.blockchain_key)
                if await self._sleep(self.backoff_for(failures)):
                    return
                continue
            if message and message.get("type") == "message":
                self.handle_registry_message(message["channel"], message["data"])

    async def _detect_loop(self) -> None:
        set_worker(self.name)
        failures = 0
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
                failures = 0
            except Exception:
                failures += 1
                logger.exception("Detection cycle failed for %s (consecutive failures=%d)", self.blockchain_key, failures)
            if await self._sleep(self.backoff_for(failures)):
                return
