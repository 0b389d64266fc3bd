from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import RATIO, TokenAmount


class LoanLiquidation(Base):
    __tablename__ = "loan_liquidations"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "liquidation_initiator IN ('Platform', 'Borrower')",
            name="ck_loan_liquidations_initiator",
        ),
        CheckConstraint(
            "status IN ('Pending', 'Fulfilled', 'Failed')",
            name="ck_loan_liquidations_status",
        ),
        CheckConstraint("liquidation_target_amount >= 0", name="ck_loan_liquidations_target_nonneg"),
        CheckConstraint(
            "status <> 'Failed' OR failure_reason IS NOT NULL",
            name="ck_loan_liquidations_failure_reason",
        ),
    )

    # One row per loan; a second request must fail rather than upsert.
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id", ondelete="CASCADE"), primary_key=True)
    liquidation_initiator = Column(String(20), nullable=False)
    liquidation_target_amount = Column(TokenAmount(), nullable=False)
    market_provider = Column(String(100), nullable=False)
    market_symbol = Column(String(50), nullable=False)
    order_ref = Column(String(255), nullable=False, unique=True)
    order_quantity = Column(RATIO, nullable=True)
    order_price = Column(RATIO, nullable=True)
    status = Column(String(20), nullable=False, default="Pending")
    order_date = Column(DateTime(timezone=True), nullable=False)
    acknowledgment = Column(Boolean, nullable=True)
    fulfilled_date = Column(DateTime(timezone=True), nullable=True)
    fulfilled_amount = Column(TokenAmount(), nullable=True)
    failure_date = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
