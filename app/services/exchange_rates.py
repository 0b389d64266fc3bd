from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import EntityNotFoundError, LedgerError
from app.models.exchange_rate import ExchangeRate, PriceFeed
from app.services.versioned import latest_as_of


async def get_or_create_price_feed(
    db: AsyncSession,
    *,
    blockchain_key: str,
    base_token_id: str,
    quote_token_id: str,
    source: str,
) -> PriceFeed:
    conditions = (
        PriceFeed.blockchain_key == blockchain_key,
        PriceFeed.base_token_id == base_token_id,
        PriceFeed.quote_token_id == quote_token_id,
        PriceFeed.source == source,
    )
    feed = (await db.execute(select(PriceFeed).where(*conditions))).scalar_one_or_none()
    if feed is not None:
        return feed

    await db.execute(
        insert(PriceFeed)
        .values(
            blockchain_key=blockchain_key,
            base_token_id=base_token_id,
            quote_token_id=quote_token_id,
            source=source,
        )
        .on_conflict_do_nothing(constraint="uq_price_feeds_pair_source")
    )
    return (await db.execute(select(PriceFeed).where(*conditions))).scalar_one()


async def record_exchange_rate(
    db: AsyncSession,
    *,
    price_feed_id,
    bid_price: Decimal,
    ask_price: Decimal,
    retrieval_date: datetime,
    source_date: datetime,
) -> ExchangeRate:
    if bid_price <= 0 or ask_price <= 0:
        raise LedgerError("Exchange rate prices must be positive", entity="ExchangeRate")
    feed = await db.get(PriceFeed, price_feed_id)
    if feed is None:
        raise EntityNotFoundError("PriceFeed", price_feed_id)
    rate = ExchangeRate(
        price_feed_id=feed.id,
        bid_price=bid_price,
        ask_price=ask_price,
        retrieval_date=retrieval_date,
        source_date=source_date,
    )
    db.add(rate)
    await db.flush()
    return rate


async def get_latest_exchange_rate(
    db: AsyncSession,
    *,
    blockchain_key: str,
    base_token_id: str,
    quote_token_id: str,
    as_of: datetime,
) -> ExchangeRate | None:
    feed_ids = select(PriceFeed.id).where(
        PriceFeed.blockchain_key == blockchain_key,
        PriceFeed.base_token_id == base_token_id,
        PriceFeed.quote_token_id == quote_token_id,
    )
    return await latest_as_of(
        db,
        ExchangeRate,
        ExchangeRate.source_date,
        as_of,
        ExchangeRate.price_feed_id.in_(feed_ids),
    )
