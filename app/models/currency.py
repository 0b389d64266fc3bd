from sqlalchemy import CheckConstraint, Column, DateTime, Integer, PrimaryKeyConstraint, String, func

from app.db.base import Base


class Currency(Base):
    __tablename__ = "currencies"
    __table_args__ = (
        PrimaryKeyConstraint("blockchain_key", "token_id", name="pk_currencies"),
        CheckConstraint("decimals >= 0", name="ck_currencies_decimals_nonneg"),
    )

    blockchain_key = Column(String(100), nullable=False)
    token_id = Column(String(255), nullable=False)
    decimals = Column(Integer, nullable=False)
    symbol = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
