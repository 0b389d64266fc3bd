import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base
from app.models.types import RATIO, TokenAmount


class LoanOffer(Base):
    __tablename__ = "loan_offers"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("offered_principal_amount > 0", name="ck_loan_offers_offered_positive"),
        CheckConstraint("available_principal_amount >= 0", name="ck_loan_offers_available_nonneg"),
        CheckConstraint("reserved_principal_amount >= 0", name="ck_loan_offers_reserved_nonneg"),
        CheckConstraint("disbursed_principal_amount >= 0", name="ck_loan_offers_disbursed_nonneg"),
        CheckConstraint(
            "offered_principal_amount = available_principal_amount"
            " + reserved_principal_amount + disbursed_principal_amount",
            name="ck_loan_offers_principal_balance",
        ),
        CheckConstraint(
            "min_loan_principal_amount > 0 AND min_loan_principal_amount <= max_loan_principal_amount",
            name="ck_loan_offers_principal_bounds",
        ),
        CheckConstraint("interest_rate >= 0", name="ck_loan_offers_interest_nonneg"),
        CheckConstraint(
            "status IN ('Funding', 'Published', 'Closed', 'Expired')",
            name="ck_loan_offers_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lender_user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    principal_blockchain_key = Column(String(100), nullable=False)
    principal_token_id = Column(String(255), nullable=False)
    offered_principal_amount = Column(TokenAmount(), nullable=False)
    available_principal_amount = Column(TokenAmount(), nullable=False)
    reserved_principal_amount = Column(TokenAmount(), nullable=False, default=0)
    disbursed_principal_amount = Column(TokenAmount(), nullable=False, default=0)
    min_loan_principal_amount = Column(TokenAmount(), nullable=False)
    max_loan_principal_amount = Column(TokenAmount(), nullable=False)
    interest_rate = Column(RATIO, nullable=False)
    term_in_months_options = Column(JSONB, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="Funding", index=True)
    created_date = Column(DateTime(timezone=True), nullable=False)
    expired_date = Column(DateTime(timezone=True), nullable=False)
    published_date = Column(DateTime(timezone=True), nullable=True)
    closed_date = Column(DateTime(timezone=True), nullable=True)
    closure_reason = Column(String(255), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}
