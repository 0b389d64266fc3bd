from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any

import httpx
from redis.asyncio import Redis

from app.core.settings import settings
from app.schemas.indexer import AddressChanged, DetectedTransaction
from app.services.active_invoices import ActiveInvoiceCache
from app.services.settlement_queue import SettlementQueue
from app.services.watchers.base import ChainWatcher

logger = logging.getLogger(__name__)

BTC_TOKEN_ID = "slip44:0"
SATOSHI_PER_BTC = Decimal("100000000")
MAX_BLOCKS_PER_POLL = 6


class BitcoinRpcError(RuntimeError):
    def __init__(self, method: str, error: Any) -> None:
        super().__init__(f"bitcoind {method} failed: {error}")
        self.method = method
        self.error = error


def btc_to_satoshi(value: Any) -> int:
    amount = Decimal(str(value)) * SATOSHI_PER_BTC
    if amount != amount.to_integral_value():
        raise ValueError(f"BTC amount {value} has more than 8 decimal places")
    return int(amount)


def output_address(vout: dict[str, Any]) -> str | None:
    script = vout.get("scriptPubKey") or {}
    if script.get("address"):
        return script["address"]
    # Pre-22.0 nodes report a list.
    addresses = script.get("addresses") or []
    return addresses[0] if len(addresses) == 1 else None


class BitcoinRpcClient:
    def __init__(self, url: str, *, timeout: float, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def call(self, method: str, *params: Any) -> Any:
        self._request_id += 1
        response = await self._client.post(
            self.url,
            json={"jsonrpc": "1.0", "id": self._request_id, "method": method, "params": list(params)},
        )
        try:
            # Decimal keeps BTC values exact.
            body = json.loads(response.text, parse_float=Decimal)
        except ValueError:
            response.raise_for_status()
            raise
        if body.get("error"):
            raise BitcoinRpcError(method, body["error"])
        response.raise_for_status()
        return body.get("result")

    async def aclose(self) -> None:
        await self._client.aclose()


class BitcoinWatcher(ChainWatcher):
    """Polls bitcoind for new blocks and matches outputs paying watched addresses."""

    family = "bitcoin"

    def __init__(
        self,
        queue: SettlementQueue,
        cache: ActiveInvoiceCache | None = None,
        *,
        blockchain_key: str | None = None,
        rpc: BitcoinRpcClient | None = None,
        rpc_url: str | None = None,
        redis: Redis | None = None,
        poll_interval: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            blockchain_key or settings.bitcoin_blockchain_key,
            queue,
            cache,
            poll_interval=poll_interval or settings.bitcoin_poll_interval_seconds,
            redis=redis,
            **kwargs,
        )
        url = rpc_url or settings.bitcoin_rpc_url
        if rpc is None and not url:
            raise ValueError("Bitcoin watcher requires BITCOIN_RPC_URL")
        self.rpc = rpc or BitcoinRpcClient(url, timeout=self.call_timeout)
        self.next_height: int | None = None

    async def close(self) -> None:
        await self.rpc.aclose()

    async def poll_once(self) -> int:
        height = int(await self._call(self.rpc.call, "getblockcount"))
        if self.next_height is None:
            self.next_height = height
        if self.next_height > height:
            return 0
        last = min(height, self.next_height + MAX_BLOCKS_PER_POLL - 1)
        dispatched = 0
        for number in range(self.next_height, last + 1):
            dispatched += await self.scan_height(number)
            self.next_height = number + 1
        return dispatched

    async def scan_height(self, height: int) -> int:
        # Heights passed over while nothing is watched are never rescanned.
        if not self.watched:
            return 0
        block_hash = await self._call(self.rpc.call, "getblockhash", height)
        block = await self._call(self.rpc.call, "getblock", block_hash, 2)
        timestamp = int(block["time"])
        dispatched = 0
        for tx in block.get("tx", []):
            dispatched += await self._scan_transaction(tx, timestamp)
        return dispatched

    async def _scan_transaction(self, tx: dict[str, Any], timestamp: int) -> int:
        # Outputs to the same address within one transaction settle as one payment.
        totals: dict[str, tuple[AddressChanged, int]] = {}
        for vout in tx.get("vout", []):
            address = output_address(vout)
            watch = self.match(BTC_TOKEN_ID, address)
            if watch is None:
                continue
            _, running = totals.get(watch.watch_key(), (watch, 0))
            totals[watch.watch_key()] = (watch, running + btc_to_satoshi(vout["value"]))

        dispatched = 0
        for watch, amount in totals.values():
            if amount <= 0:
                continue
            await self.dispatch(
                DetectedTransaction(
                    blockchain_key=self.blockchain_key,
                    token_id=watch.token_id,
                    derived_path=watch.derived_path,
                    address=watch.address,
                    tx_hash=tx["txid"],
                    sender=self._first_sender(tx),
                    amount=str(amount),
                    timestamp=timestamp,
                )
            )
            dispatched += 1
        return dispatched

    @staticmethod
    def _first_sender(tx: dict[str, Any]) -> str:
        for vin in tx.get("vin", []):
            prevout = vin.get("prevout") or {}
            address = output_address(prevout)
            if address:
                return address
        return ""
