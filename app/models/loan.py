import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import RATIO, TokenAmount


class Loan(Base):
    __tablename__ = "loans"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("principal_amount > 0", name="ck_loans_principal_positive"),
        CheckConstraint("interest_amount >= 0", name="ck_loans_interest_nonneg"),
        CheckConstraint("repayment_amount > 0", name="ck_loans_repayment_positive"),
        CheckConstraint("collateral_amount > 0", name="ck_loans_collateral_positive"),
        CheckConstraint("mc_ltv_ratio > 0", name="ck_loans_mc_ltv_positive"),
        CheckConstraint(
            "status IN ('Originated', 'Active', 'Repaid', 'Liquidated', 'Defaulted')",
            name="ck_loans_status",
        ),
        UniqueConstraint("loan_application_id", name="uq_loans_loan_application_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_offer_id = Column(UUID(as_uuid=True), ForeignKey("loan_offers.id"), nullable=False, index=True)
    loan_application_id = Column(
        UUID(as_uuid=True), ForeignKey("loan_applications.id"), nullable=False
    )
    borrower_user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    lender_user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    principal_blockchain_key = Column(String(100), nullable=False)
    principal_token_id = Column(String(255), nullable=False)
    principal_amount = Column(TokenAmount(), nullable=False)
    interest_amount = Column(TokenAmount(), nullable=False)
    repayment_amount = Column(TokenAmount(), nullable=False)
    redelivery_fee_amount = Column(TokenAmount(), nullable=False, default=0)
    redelivery_amount = Column(TokenAmount(), nullable=False, default=0)
    premi_amount = Column(TokenAmount(), nullable=False, default=0)
    liquidation_fee_amount = Column(TokenAmount(), nullable=False, default=0)
    min_collateral_valuation = Column(TokenAmount(), nullable=False)
    mc_ltv_ratio = Column(RATIO, nullable=False)
    mc_ltv_ratio_date = Column(DateTime(timezone=True), nullable=True)
    current_ltv_ratio = Column(RATIO, nullable=True)
    collateral_blockchain_key = Column(String(100), nullable=False)
    collateral_token_id = Column(String(255), nullable=False)
    collateral_amount = Column(TokenAmount(), nullable=False)
    legal_document_path = Column(String(1024), nullable=True)
    legal_document_hash = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="Originated", index=True)
    origination_date = Column(DateTime(timezone=True), nullable=False)
    maturity_date = Column(DateTime(timezone=True), nullable=False)
    disbursement_date = Column(DateTime(timezone=True), nullable=True)
    concluded_date = Column(DateTime(timezone=True), nullable=True)
    conclusion_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
