import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class PriceFeed(Base):
    __tablename__ = "price_feeds"
    __table_args__ = (
        UniqueConstraint(
            "blockchain_key",
            "base_token_id",
            "quote_token_id",
            "source",
            name="uq_price_feeds_pair_source",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    blockchain_key = Column(String(100), nullable=False)
    base_token_id = Column(String(255), nullable=False)
    quote_token_id = Column(String(255), nullable=False)
    source = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ExchangeRate(Base):
    __tablename__ = "exchange_rates"
    __table_args__ = (
        CheckConstraint("bid_price > 0", name="ck_exchange_rates_bid_positive"),
        CheckConstraint("ask_price > 0", name="ck_exchange_rates_ask_positive"),
        Index("ix_exchange_rates_feed_source_date", "price_feed_id", "source_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    price_feed_id = Column(
        UUID(as_uuid=True), ForeignKey("price_feeds.id", ondelete="CASCADE"), nullable=False
    )
    bid_price = Column(Numeric(36, 18), nullable=False)
    ask_price = Column(Numeric(36, 18), nullable=False)
    retrieval_date = Column(DateTime(timezone=True), nullable=False)
    source_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
