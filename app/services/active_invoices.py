from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import settings
from app.models.invoice import Invoice
from app.services import invoices as invoice_service

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    return address.strip().lower()


@dataclass(frozen=True)
class CachedInvoice:
    id: int
    user_id: UUID
    blockchain_key: str
    token_id: str
    invoice_type: str
    invoiced_amount: int
    wallet_address: str
    wallet_derivation_path: str

    @classmethod
    def from_model(cls, invoice: Invoice) -> "CachedInvoice":
        return cls(
            id=invoice.id,
            user_id=invoice.user_id,
            blockchain_key=invoice.currency_blockchain_key,
            token_id=invoice.currency_token_id,
            invoice_type=invoice.invoice_type,
            invoiced_amount=int(invoice.invoiced_amount),
            wallet_address=invoice.wallet_address,
            wallet_derivation_path=invoice.wallet_derivation_path,
        )


class ActiveInvoiceCache:
    """In-memory index of Pending invoices keyed by chain and lower-cased address.

    Reads may be stale by up to one refresh interval; the settlement matcher
    re-reads the invoice row under lock before acting on a hit.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        *,
        refresh_interval: float | None = None,
        page_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.refresh_interval = refresh_interval or settings.active_invoice_refresh_seconds
        self.page_size = page_size or settings.active_invoice_page_size
        self._store: dict[str, dict[str, CachedInvoice]] = {}
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    def get_invoice(self, blockchain_key: str, address: str) -> CachedInvoice | None:
        return self._store.get(blockchain_key, {}).get(normalize_address(address))

    def list_invoices(self, blockchain_key: str) -> list[CachedInvoice]:
        return list(self._store.get(blockchain_key, {}).values())

    def tracked_blockchains(self) -> list[str]:
        return sorted(self._store)

    def put(self, invoice: Invoice) -> None:
        cached = CachedInvoice.from_model(invoice)
        self._store.setdefault(cached.blockchain_key, {})[normalize_address(cached.wallet_address)] = cached

    def discard(self, blockchain_key: str, address: str) -> None:
        chain = self._store.get(blockchain_key)
        if chain is not None:
            chain.pop(normalize_address(address), None)

    async def _load(self, blockchain_key: str | None = None) -> dict[str, dict[str, CachedInvoice]]:
        loaded: dict[str, dict[str, CachedInvoice]] = {}
        after_id: int | None = None
        async with self._session_factory() as db:
            while True:
                page = await invoice_service.list_pending_invoices_page(
                    db,
                    limit=self.page_size,
                    after_id=after_id,
                    blockchain_key=blockchain_key,
                )
                for invoice in page:
                    cached = CachedInvoice.from_model(invoice)
                    loaded.setdefault(cached.blockchain_key, {})[
                        normalize_address(cached.wallet_address)
                    ] = cached
                if len(page) < self.page_size:
                    break
                after_id = page[-1].id
        return loaded

    async def refresh(self) -> int:
        loaded = await self._load()
        self._store = loaded
        count = sum(len(chain) for chain in loaded.values())
        logger.debug("Active invoice cache refreshed invoices=%d chains=%d", count, len(loaded))
        return count

    async def refresh_chain(self, blockchain_key: str) -> int:
        loaded = await self._load(blockchain_key)
        self._store[blockchain_key] = loaded.get(blockchain_key, {})
        return len(self._store[blockchain_key])

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        await self.refresh()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="active-invoice-cache")

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Active invoice cache refresh task cancelled.")
        finally:
            self._task = None

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.refresh_interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.refresh()
            except Exception:
                logger.exception("Active invoice cache refresh failed; keeping previous snapshot.")
