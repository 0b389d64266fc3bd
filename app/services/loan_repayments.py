from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AcknowledgmentRequiredError,
    EntityNotFoundError,
    InvalidStatusTransitionError,
    LedgerError,
)
from app.core.settings import settings
from app.models.invoice import Invoice
from app.models.loan import Loan
from app.models.loan_repayment import LoanRepayment
from app.schemas.finance import InvoiceStatus, InvoiceType
from app.schemas.loan import LoanStatus, RepaymentInitiator
from app.services import invoices as invoice_service
from app.services.loans import get_loan

logger = logging.getLogger(__name__)


async def get_repayment(db: AsyncSession, loan_id: UUID) -> LoanRepayment | None:
    stmt = select(LoanRepayment).where(LoanRepayment.loan_id == loan_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def _open_repayment(
    db: AsyncSession,
    loan: Loan,
    *,
    invoice_type: InvoiceType,
    due_in_days: int,
    request_date: datetime,
    wallet_address: str,
    wallet_derivation_path: str,
    acknowledgment: bool | None,
) -> tuple[LoanRepayment, Invoice]:
    if loan.status != LoanStatus.ACTIVE.value:
        raise InvalidStatusTransitionError("Loan", loan.id, loan.status, LoanStatus.REPAID.value)

    previous = await get_repayment(db, loan.id)
    if previous is not None:
        if previous.concluded_date is not None:
            raise LedgerError(
                f"Loan {loan.id} repayment already concluded",
                entity="Loan",
                entity_id=loan.id,
                current_status=loan.status,
            )
        superseded = await invoice_service.get_invoice_for_update(db, previous.repayment_invoice_id)
        if superseded.status == InvoiceStatus.PENDING.value:
            superseded.status = InvoiceStatus.CANCELLED.value
            superseded.cancelled_date = request_date
            logger.info("Cancelled superseded repayment invoice %s for loan %s", superseded.id, loan.id)

    invoice = await invoice_service.create_invoice(
        db,
        user_id=loan.borrower_user_id,
        blockchain_key=loan.principal_blockchain_key,
        token_id=loan.principal_token_id,
        invoice_type=invoice_type,
        invoiced_amount=int(loan.repayment_amount),
        wallet_address=wallet_address,
        wallet_derivation_path=wallet_derivation_path,
        invoice_date=request_date,
        due_date=request_date + timedelta(days=due_in_days),
        loan_id=loan.id,
    )

    values = {
        "repayment_initiator": RepaymentInitiator.BORROWER.value,
        "repayment_invoice_id": invoice.id,
        "repayment_invoice_date": request_date,
        "is_early": invoice_type == InvoiceType.LOAN_EARLY_REPAYMENT,
        "acknowledgment": acknowledgment,
    }
    stmt = insert(LoanRepayment).values(loan_id=loan.id, **values)
    stmt = stmt.on_conflict_do_update(index_elements=[LoanRepayment.loan_id], set_=values)
    await db.execute(stmt)

    repayment = await get_repayment(db, loan.id)
    if repayment is None:
        raise EntityNotFoundError("LoanRepayment", loan.id)
    logger.info(
        "Repayment invoice %s (%s) opened for loan %s amount=%s",
        invoice.id,
        invoice_type.value,
        loan.id,
        invoice.invoiced_amount,
    )
    return repayment, invoice


async def borrower_repay_loan(
    db: AsyncSession,
    loan_id: UUID,
    *,
    borrower_user_id: UUID,
    request_date: datetime,
    wallet_address: str,
    wallet_derivation_path: str,
) -> tuple[LoanRepayment, Invoice]:
    loan = await get_loan(db, loan_id, for_update=True)
    if loan.borrower_user_id != borrower_user_id:
        raise EntityNotFoundError("Loan", loan_id)
    return await _open_repayment(
        db,
        loan,
        invoice_type=InvoiceType.LOAN_REPAYMENT,
        due_in_days=settings.repayment_invoice_due_days,
        request_date=request_date,
        wallet_address=wallet_address,
        wallet_derivation_path=wallet_derivation_path,
        acknowledgment=None,
    )


async def borrower_early_repay_loan(
    db: AsyncSession,
    loan_id: UUID,
    *,
    borrower_user_id: UUID,
    request_date: datetime,
    wallet_address: str,
    wallet_derivation_path: str,
    acknowledgment: bool,
) -> tuple[LoanRepayment, Invoice]:
    """Invoice the full repayment amount before maturity.

    Early payoff carries no interest discount, so the invoice is for the
    loan's whole ``repayment_amount`` and settles on a shorter window.
    """
    if not acknowledgment:
        raise AcknowledgmentRequiredError(
            "Early repayment requires borrower acknowledgment", entity="Loan", entity_id=loan_id
        )
    loan = await get_loan(db, loan_id, for_update=True)
    if loan.borrower_user_id != borrower_user_id:
        raise EntityNotFoundError("Loan", loan_id)
    if request_date >= loan.maturity_date:
        raise LedgerError(
            "Early repayment must be requested before maturity",
            entity="Loan",
            entity_id=loan.id,
            current_status=loan.status,
        )
    return await _open_repayment(
        db,
        loan,
        invoice_type=InvoiceType.LOAN_EARLY_REPAYMENT,
        due_in_days=settings.early_repayment_invoice_due_days,
        request_date=request_date,
        wallet_address=wallet_address,
        wallet_derivation_path=wallet_derivation_path,
        acknowledgment=True,
    )


async def conclude_repayment(db: AsyncSession, loan_id: UUID, *, concluded_date: datetime) -> LoanRepayment | None:
    repayment = await get_repayment(db, loan_id)
    if repayment is not None and repayment.concluded_date is None:
        repayment.concluded_date = concluded_date
    return repayment
