import uuid

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import TokenAmount


class Account(Base):
    __tablename__ = "accounts"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "currency_blockchain_key",
            "currency_token_id",
            "account_type",
            name="uq_accounts_owner_currency_type",
        ),
        ForeignKeyConstraint(
            ["currency_blockchain_key", "currency_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        CheckConstraint(
            "account_type IN ('User', 'PlatformEscrow', 'PlatformFees')",
            name="ck_accounts_account_type",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    currency_blockchain_key = Column(String(100), nullable=False)
    currency_token_id = Column(String(255), nullable=False)
    account_type = Column(String(30), nullable=False, default="User")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AccountMutationEntry(Base):
    """Append-only ledger line. Never updated or deleted once written."""

    __tablename__ = "account_mutations"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_account_mutations_amount_nonzero"),
        Index("ix_account_mutations_account_date", "account_id", "mutation_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    mutation_type = Column(String(50), nullable=False)
    mutation_date = Column(DateTime(timezone=True), nullable=False)
    amount = Column(TokenAmount(), nullable=False)
    invoice_id = Column(BigInteger, ForeignKey("invoices.id"), nullable=True)
    invoice_payment_id = Column(UUID(as_uuid=True), ForeignKey("invoice_payments.id"), nullable=True)
    withdrawal_id = Column(UUID(as_uuid=True), ForeignKey("withdrawals.id"), nullable=True)
    loan_offer_id = Column(UUID(as_uuid=True), ForeignKey("loan_offers.id"), nullable=True)
    loan_application_id = Column(
        UUID(as_uuid=True), ForeignKey("loan_applications.id"), nullable=True
    )
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id"), nullable=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
