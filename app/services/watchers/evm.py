from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis
from web3 import Web3

from app.core.settings import EvmChainSettings, settings
from app.schemas.indexer import DetectedTransaction
from app.services.active_invoices import ActiveInvoiceCache
from app.services.settlement_queue import SettlementQueue
from app.services.watchers.base import ChainWatcher

logger = logging.getLogger(__name__)

TRANSFER_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))
MAX_BLOCKS_PER_POLL = 50


def as_hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return Web3.to_hex(value)


def topic_to_address(topic: Any) -> str:
    return "0x" + as_hex(topic)[-40:].lower()


def log_data_to_int(data: Any) -> int:
    if isinstance(data, (bytes, bytearray)):
        return int.from_bytes(bytes(data), "big") if data else 0
    text = str(data)
    return int(text, 16) if text not in ("", "0x") else 0


class EvmWatcher(ChainWatcher):
    """Polls an EVM JSON-RPC node block by block.

    Native transfers match on the transaction's ``to``; ERC-20 deposits match
    ``Transfer`` logs whose indexed recipient is a watched address.
    """

    family = "evm"

    def __init__(
        self,
        chain: EvmChainSettings,
        queue: SettlementQueue,
        cache: ActiveInvoiceCache | None = None,
        *,
        web3: Web3 | None = None,
        redis: Redis | None = None,
        poll_interval: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            chain.blockchain_key,
            queue,
            cache,
            poll_interval=poll_interval or settings.evm_poll_interval_seconds,
            redis=redis,
            **kwargs,
        )
        self.native_token_id = chain.native_token_id
        self.token_prefix = chain.token_prefix
        self.w3 = web3 or Web3(
            Web3.HTTPProvider(chain.rpc_url, request_kwargs={"timeout": self.call_timeout})
        )
        self.next_block: int | None = None

    def token_id_for_contract(self, contract: str) -> str:
        return f"{self.token_prefix}:{contract.lower()}"

    def watched_contracts(self) -> list[str]:
        prefix = f"{self.token_prefix}:"
        return sorted(
            Web3.to_checksum_address(token_id[len(prefix):])
            for token_id in self.watched_tokens()
            if token_id.startswith(prefix)
        )

    async def poll_once(self) -> int:
        latest = int(await self._call(lambda: self.w3.eth.block_number))
        if self.next_block is None:
            self.next_block = latest
        if self.next_block > latest:
            return 0
        last = min(latest, self.next_block + MAX_BLOCKS_PER_POLL - 1)
        dispatched = 0
        for number in range(self.next_block, last + 1):
            dispatched += await self.scan_block(number)
            self.next_block = number + 1
        if last < latest:
            logger.info("Watcher %s is %d blocks behind the tip", self.name, latest - last)
        return dispatched

    async def scan_block(self, number: int) -> int:
        # Blocks passed over while nothing is watched are never rescanned.
        if not self.watched:
            return 0
        block = await self._call(self.w3.eth.get_block, number, full_transactions=True)
        timestamp = int(block["timestamp"])
        dispatched = 0
        for tx in block.get("transactions", []):
            dispatched += await self._scan_native(tx, timestamp)
        dispatched += await self._scan_token_logs(number, timestamp)
        return dispatched

    async def _scan_native(self, tx: Any, timestamp: int) -> int:
        watch = self.match(self.native_token_id, tx.get("to"))
        value = int(tx.get("value", 0))
        if watch is None or value <= 0:
            return 0
        await self.dispatch(
            DetectedTransaction(
                blockchain_key=self.blockchain_key,
                token_id=watch.token_id,
                derived_path=watch.derived_path,
                address=watch.address,
                tx_hash=as_hex(tx["hash"]),
                sender=str(tx.get("from") or ""),
                amount=str(value),
                timestamp=timestamp,
            )
        )
        return 1

    async def _scan_token_logs(self, number: int, timestamp: int) -> int:
        contracts = self.watched_contracts()
        if not contracts:
            return 0
        logs = await self._call(
            self.w3.eth.get_logs,
            {"fromBlock": number, "toBlock": number, "address": contracts, "topics": [TRANSFER_TOPIC]},
        )
        dispatched = 0
        for entry in logs:
            topics = entry.get("topics", [])
            if len(topics) < 3:
                continue
            token_id = self.token_id_for_contract(str(entry["address"]))
            watch = self.match(token_id, topic_to_address(topics[2]))
            amount = log_data_to_int(entry.get("data"))
            if watch is None or amount <= 0:
                continue
            await self.dispatch(
                DetectedTransaction(
                    blockchain_key=self.blockchain_key,
                    token_id=watch.token_id,
                    derived_path=watch.derived_path,
                    address=watch.address,
                    tx_hash=as_hex(entry["transactionHash"]),
                    sender=topic_to_address(topics[1]),
                    amount=str(amount),
                    timestamp=timestamp,
                )
            )
            dispatched += 1
        return dispatched
