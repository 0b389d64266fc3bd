from __future__ import annotations

import logging

from redis.asyncio import Redis

from app.core.settings import Settings, settings as default_settings
from app.services.active_invoices import ActiveInvoiceCache
from app.services.settlement_queue import SettlementQueue
from app.services.watchers.base import ChainWatcher
from app.services.watchers.bitcoin import BitcoinWatcher
from app.services.watchers.evm import EvmWatcher

logger = logging.getLogger(__name__)

__all__ = ["ChainWatcher", "EvmWatcher", "BitcoinWatcher", "build_watchers"]


def build_watchers(
    queue: SettlementQueue,
    cache: ActiveInvoiceCache | None = None,
    *,
    redis: Redis | None = None,
    config: Settings | None = None,
) -> list[ChainWatcher]:
    config = config or default_settings
    watchers: list[ChainWatcher] = [
        EvmWatcher(chain, queue, cache, redis=redis) for chain in config.evm_chains
    ]
    if config.bitcoin_rpc_url:
        watchers.append(
            BitcoinWatcher(
                queue,
                cache,
                blockchain_key=config.bitcoin_blockchain_key,
                rpc_url=config.bitcoin_rpc_url,
                redis=redis,
            )
        )
    if not watchers:
        logger.warning("No chain watchers configured")
    return watchers
