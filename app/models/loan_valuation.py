from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, PrimaryKeyConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import RATIO, TokenAmount


class LoanValuation(Base):
    __tablename__ = "loan_valuations"
    __table_args__ = (
        PrimaryKeyConstraint("loan_id", "exchange_rate_id", name="pk_loan_valuations"),
        CheckConstraint("ltv_ratio >= 0", name="ck_loan_valuations_ltv_nonneg"),
        CheckConstraint(
            "collateral_valuation_amount >= 0",
            name="ck_loan_valuations_collateral_nonneg",
        ),
        Index("ix_loan_valuations_loan_date", "loan_id", "valuation_date"),
    )

    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id", ondelete="CASCADE"), nullable=False)
    exchange_rate_id = Column(UUID(as_uuid=True), ForeignKey("exchange_rates.id"), nullable=False)
    valuation_date = Column(DateTime(timezone=True), nullable=False)
    ltv_ratio = Column(RATIO, nullable=False)
    collateral_valuation_amount = Column(TokenAmount(), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
