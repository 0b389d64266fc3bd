import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import RATIO, TokenAmount


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("principal_amount > 0", name="ck_loan_apps_principal_positive"),
        CheckConstraint("provision_amount >= 0", name="ck_loan_apps_provision_nonneg"),
        CheckConstraint("collateral_deposit_amount > 0", name="ck_loan_apps_collateral_positive"),
        CheckConstraint("term_in_months > 0", name="ck_loan_apps_term_positive"),
        CheckConstraint("min_ltv_ratio <= max_ltv_ratio", name="ck_loan_apps_ltv_bounds"),
        CheckConstraint(
            "liquidation_mode IN ('Partial', 'Full')",
            name="ck_loan_apps_liquidation_mode",
        ),
        CheckConstraint(
            "status IN ('PendingCollateral', 'Published', 'Matched', 'Cancelled', 'Closed', 'Expired')",
            name="ck_loan_apps_status",
        ),
        CheckConstraint(
            "status <> 'Matched' OR matched_loan_offer_id IS NOT NULL",
            name="ck_loan_apps_matched_offer",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    borrower_user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    loan_offer_id = Column(UUID(as_uuid=True), ForeignKey("loan_offers.id"), nullable=True)
    principal_blockchain_key = Column(String(100), nullable=False)
    principal_token_id = Column(String(255), nullable=False)
    principal_amount = Column(TokenAmount(), nullable=False)
    provision_amount = Column(TokenAmount(), nullable=False, default=0)
    max_interest_rate = Column(RATIO, nullable=False)
    min_ltv_ratio = Column(RATIO, nullable=False)
    max_ltv_ratio = Column(RATIO, nullable=False)
    term_in_months = Column(Integer, nullable=False)
    liquidation_mode = Column(String(20), nullable=False, default="Partial")
    collateral_blockchain_key = Column(String(100), nullable=False)
    collateral_token_id = Column(String(255), nullable=False)
    collateral_deposit_amount = Column(TokenAmount(), nullable=False)
    collateral_deposit_exchange_rate_id = Column(
        UUID(as_uuid=True), ForeignKey("exchange_rates.id"), nullable=False
    )
    collateral_prepaid_amount = Column(TokenAmount(), nullable=True)
    status = Column(String(30), nullable=False, default="PendingCollateral", index=True)
    applied_date = Column(DateTime(timezone=True), nullable=False)
    expired_date = Column(DateTime(timezone=True), nullable=False)
    published_date = Column(DateTime(timezone=True), nullable=True)
    matched_date = Column(DateTime(timezone=True), nullable=True)
    matched_loan_offer_id = Column(UUID(as_uuid=True), ForeignKey("loan_offers.id"), nullable=True)
    matched_ltv_ratio = Column(RATIO, nullable=True)
    matched_collateral_valuation_amount = Column(TokenAmount(), nullable=True)
    closed_date = Column(DateTime(timezone=True), nullable=True)
    closure_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
