import uuid

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import TokenAmount


class Invoice(Base):
    __tablename__ = "invoices"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("invoiced_amount > 0", name="ck_invoices_invoiced_positive"),
        CheckConstraint("paid_amount >= 0", name="ck_invoices_paid_nonneg"),
        CheckConstraint(
            "wallet_derivation_path ~ '^m(/[0-9]+''?)+$'",
            name="ck_invoices_derivation_path",
        ),
        CheckConstraint(
            "invoice_type IN ('LoanCollateral', 'LoanPrincipal', 'LoanRepayment', 'LoanEarlyRepayment')",
            name="ck_invoices_type",
        ),
        CheckConstraint(
            "status IN ('Pending', 'Paid', 'Expired', 'Cancelled')",
            name="ck_invoices_status",
        ),
        CheckConstraint(
            "status <> 'Paid' OR paid_amount >= invoiced_amount",
            name="ck_invoices_paid_covers_invoiced",
        ),
        UniqueConstraint("wallet_derivation_path", name="uq_invoices_wallet_derivation_path"),
        Index("ix_invoices_status_due", "status", "due_date"),
        Index("ix_invoices_wallet", "currency_blockchain_key", "wallet_address"),
    )

    # Generated ahead of insert so the deposit address can be derived from it.
    id = Column(BigInteger, primary_key=True, autoincrement=False)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    currency_blockchain_key = Column(String(100), nullable=False)
    currency_token_id = Column(String(255), nullable=False)
    invoice_type = Column(String(30), nullable=False)
    invoiced_amount = Column(TokenAmount(), nullable=False)
    paid_amount = Column(TokenAmount(), nullable=False, default=0)
    wallet_address = Column(String(255), nullable=False)
    wallet_derivation_path = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="Pending")
    invoice_date = Column(DateTime(timezone=True), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    expired_date = Column(DateTime(timezone=True), nullable=True)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    cancelled_date = Column(DateTime(timezone=True), nullable=True)
    loan_offer_id = Column(UUID(as_uuid=True), ForeignKey("loan_offers.id"), nullable=True)
    loan_application_id = Column(
        UUID(as_uuid=True), ForeignKey("loan_applications.id"), nullable=True
    )
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InvoicePayment(Base):
    __tablename__ = "invoice_payments"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_invoice_payments_amount_positive"),
        CheckConstraint("length(payment_hash) > 0", name="ck_invoice_payments_hash_nonempty"),
        UniqueConstraint("invoice_id", "payment_hash", name="uq_invoice_payments_invoice_hash"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id = Column(BigInteger, ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False)
    payment_hash = Column(String(255), nullable=False)
    sender = Column(String(255), nullable=True)
    amount = Column(TokenAmount(), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
