from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class LoanRepayment(Base):
    __tablename__ = "loan_repayments"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "repayment_initiator IN ('Borrower', 'Platform')",
            name="ck_loan_repayments_initiator",
        ),
    )

    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id", ondelete="CASCADE"), primary_key=True)
    repayment_initiator = Column(String(20), nullable=False)
    repayment_invoice_id = Column(BigInteger, ForeignKey("invoices.id"), nullable=False)
    repayment_invoice_date = Column(DateTime(timezone=True), nullable=False)
    is_early = Column(Boolean, nullable=False, default=False)
    acknowledgment = Column(Boolean, nullable=True)
    concluded_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
