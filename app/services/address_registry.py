from __future__ import annotations

import asyncio
import logging
from typing import Literal

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from app.models.invoice import Invoice
from app.schemas.indexer import AddressChanged
from app.utils.redis_client import get_redis_client, redis_key

logger = logging.getLogger(__name__)

ChangeKind = Literal["added", "removed"]


def channel_for(blockchain_key: str, kind: ChangeKind) -> str:
    return redis_key("indexer", blockchain_key, "address", kind)


def change_for_invoice(invoice: Invoice) -> AddressChanged:
    return AddressChanged(
        token_id=invoice.currency_token_id,
        address=invoice.wallet_address,
        derived_path=invoice.wallet_derivation_path,
    )


async def publish_change(
    blockchain_key: str,
    kind: ChangeKind,
    change: AddressChanged,
    *,
    redis: Redis | None = None,
) -> None:
    client = redis or get_redis_client()
    await client.publish(channel_for(blockchain_key, kind), change.model_dump_json(by_alias=True))


async def announce_invoice_opened(invoice: Invoice, *, redis: Redis | None = None) -> None:
    await publish_change(invoice.currency_blockchain_key, "added", change_for_invoice(invoice), redis=redis)


async def announce_invoice_closed(invoice: Invoice, *, redis: Redis | None = None) -> None:
    await publish_change(invoice.currency_blockchain_key, "removed", change_for_invoice(invoice), redis=redis)


def parse_change(raw: str | bytes) -> AddressChanged:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return AddressChanged.model_validate_json(raw)


async def subscribe(blockchain_key: str, *, redis: Redis | None = None) -> PubSub:
    client = redis or get_redis_client()
    pubsub = client.pubsub()
    await pubsub.subscribe(channel_for(blockchain_key, "added"), channel_for(blockchain_key, "removed"))
    return pubsub


async def unsubscribe(pubsub: PubSub) -> None:
    try:
        # Redis/network blips should not block watcher shutdown.
        await asyncio.wait_for(pubsub.unsubscribe(), timeout=2.0)
    except (RedisError, TimeoutError, asyncio.TimeoutError) as exc:
        logger.warning("Address registry unsubscribe failed: %s", exc)
    finally:
        try:
            await asyncio.wait_for(pubsub.aclose(), timeout=2.0)
        except (RedisError, TimeoutError, asyncio.TimeoutError) as exc:
            logger.warning("Address registry pubsub close failed: %s", exc)
