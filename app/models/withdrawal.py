import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import TokenAmount


class WithdrawalBeneficiary(Base):
    __tablename__ = "beneficiaries"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "currency_blockchain_key",
            "currency_token_id",
            "address",
            name="uq_beneficiaries_user_currency_address",
        ),
        CheckConstraint("length(address) > 0", name="ck_beneficiaries_address_nonempty"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    currency_blockchain_key = Column(String(100), nullable=False)
    currency_token_id = Column(String(255), nullable=False)
    address = Column(String(255), nullable=False)
    label = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Withdrawal(Base):
    __tablename__ = "withdrawals"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawals_amount_positive"),
        CheckConstraint("request_amount > 0", name="ck_withdrawals_request_amount_positive"),
        CheckConstraint(
            "status IN ('Requested', 'Sent', 'Confirmed', 'Failed', 'RefundApproved', 'RefundRejected')",
            name="ck_withdrawals_status",
        ),
        CheckConstraint(
            "status NOT IN ('Sent', 'Confirmed') OR (sent_amount IS NOT NULL AND sent_hash IS NOT NULL)",
            name="ck_withdrawals_sent_fields",
        ),
        CheckConstraint(
            "status <> 'RefundRejected' OR failure_refund_rejection_reason IS NOT NULL",
            name="ck_withdrawals_rejection_reason",
        ),
        UniqueConstraint("sent_hash", name="uq_withdrawals_sent_hash"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    beneficiary_id = Column(
        UUID(as_uuid=True), ForeignKey("beneficiaries.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    amount = Column(TokenAmount(), nullable=False)
    request_amount = Column(TokenAmount(), nullable=False)
    status = Column(String(20), nullable=False, default="Requested", index=True)
    request_date = Column(DateTime(timezone=True), nullable=False)
    sent_amount = Column(TokenAmount(), nullable=True)
    sent_hash = Column(String(255), nullable=True)
    sent_date = Column(DateTime(timezone=True), nullable=True)
    confirmed_date = Column(DateTime(timezone=True), nullable=True)
    failed_date = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)
    failure_refund_reviewer_user_id = Column(UUID(as_uuid=True), nullable=True)
    failure_refund_approved_date = Column(DateTime(timezone=True), nullable=True)
    failure_refund_rejected_date = Column(DateTime(timezone=True), nullable=True)
    failure_refund_rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
