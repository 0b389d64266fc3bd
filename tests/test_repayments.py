from datetime import timedelta
from uuid import uuid4

import pytest

from app.core.exceptions import (
    AcknowledgmentRequiredError,
    EntityNotFoundError,
    InvalidStatusTransitionError,
    LedgerError,
)
from app.models.invoice import Invoice
from app.models.loan import Loan
from app.models.loan_repayment import LoanRepayment
from app.services import loan_repayments
from conftest import BASE_DATE, FakeResult, entity_handler, make_invoice, make_loan

REQUESTED_AT = BASE_DATE + timedelta(days=60)


def _repayment(loan: Loan, **overrides) -> LoanRepayment:
    values = dict(
        loan_id=loan.id,
        repayment_initiator="Borrower",
        repayment_invoice_id=700,
        repayment_invoice_date=BASE_DATE,
        is_early=False,
    )
    values.update(overrides)
    return LoanRepayment(**values)


def _repayment_lookups(*results):
    """Answer successive LoanRepayment selects with *results*."""
    pending = list(results)

    def _handler(stmt):
        descriptions = getattr(stmt, "column_descriptions", None)
        if descriptions and descriptions[0].get("entity") is LoanRepayment:
            return FakeResult(scalar=pending.pop(0)) if pending else FakeResult()
        return None

    return _handler


@pytest.mark.asyncio
async def test_repay_opens_invoice_for_full_repayment_amount(fake_db) -> None:
    loan = make_loan(status="Active")
    repayment = _repayment(loan)
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    fake_db.on_execute(_repayment_lookups(None, repayment))

    opened, invoice = await loan_repayments.borrower_repay_loan(
        fake_db,
        loan.id,
        borrower_user_id=loan.borrower_user_id,
        request_date=REQUESTED_AT,
        wallet_address="0xrepay",
        wallet_derivation_path="m/44'/60'/0'/0/11",
    )
    assert opened is repayment
    assert invoice.invoice_type == "LoanRepayment"
    assert invoice.invoiced_amount == 525
    assert invoice.loan_id == loan.id
    assert invoice.user_id == loan.borrower_user_id
    assert invoice.due_date == REQUESTED_AT + timedelta(days=7)
    upsert = next(str(stmt) for stmt in fake_db.executed if "INSERT INTO loan_repayments" in str(stmt))
    assert "ON CONFLICT (loan_id) DO UPDATE" in upsert


@pytest.mark.asyncio
async def test_repeat_request_cancels_superseded_pending_invoice(fake_db) -> None:
    loan = make_loan(status="Active")
    previous = _repayment(loan, repayment_invoice_id=700)
    superseded = make_invoice(id=700, invoice_type="LoanRepayment", loan_id=loan.id)
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    fake_db.on_execute(entity_handler(Invoice, FakeResult(scalar=superseded)))
    fake_db.on_execute(_repayment_lookups(previous, previous))

    _, invoice = await loan_repayments.borrower_repay_loan(
        fake_db,
        loan.id,
        borrower_user_id=loan.borrower_user_id,
        request_date=REQUESTED_AT,
        wallet_address="0xrepay",
        wallet_derivation_path="m/44'/60'/0'/0/12",
    )
    assert superseded.status == "Cancelled"
    assert superseded.cancelled_date == REQUESTED_AT
    assert invoice.id != superseded.id
    assert invoice.status == "Pending"


@pytest.mark.asyncio
async def test_concluded_repayment_cannot_be_reopened(fake_db) -> None:
    loan = make_loan(status="Active")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    fake_db.on_execute(_repayment_lookups(_repayment(loan, concluded_date=BASE_DATE)))

    with pytest.raises(LedgerError):
        await loan_repayments.borrower_repay_loan(
            fake_db,
            loan.id,
            borrower_user_id=loan.borrower_user_id,
            request_date=REQUESTED_AT,
            wallet_address="0xrepay",
            wallet_derivation_path="m/44'/60'/0'/0/13",
        )
    assert fake_db.added_of(Invoice) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["Originated", "Repaid", "Liquidated", "Defaulted"])
async def test_only_active_loans_can_be_repaid(fake_db, status) -> None:
    loan = make_loan(status=status)
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    with pytest.raises(InvalidStatusTransitionError):
        await loan_repayments.borrower_repay_loan(
            fake_db,
            loan.id,
            borrower_user_id=loan.borrower_user_id,
            request_date=REQUESTED_AT,
            wallet_address="0xrepay",
            wallet_derivation_path="m/44'/60'/0'/0/14",
        )


@pytest.mark.asyncio
async def test_repay_someone_elses_loan_is_hidden(fake_db) -> None:
    loan = make_loan(status="Active")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    with pytest.raises(EntityNotFoundError):
        await loan_repayments.borrower_repay_loan(
            fake_db,
            loan.id,
            borrower_user_id=uuid4(),
            request_date=REQUESTED_AT,
            wallet_address="0xrepay",
            wallet_derivation_path="m/44'/60'/0'/0/15",
        )


@pytest.mark.asyncio
async def test_early_repayment_uses_shorter_window(fake_db) -> None:
    loan = make_loan(status="Active")
    repayment = _repayment(loan, is_early=True, acknowledgment=True)
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    fake_db.on_execute(_repayment_lookups(None, repayment))

    opened, invoice = await loan_repayments.borrower_early_repay_loan(
        fake_db,
        loan.id,
        borrower_user_id=loan.borrower_user_id,
        request_date=REQUESTED_AT,
        wallet_address="0xrepay",
        wallet_derivation_path="m/44'/60'/0'/0/16",
        acknowledgment=True,
    )
    assert opened.is_early is True
    assert invoice.invoice_type == "LoanEarlyRepayment"
    assert invoice.invoiced_amount == loan.repayment_amount
    assert invoice.due_date == REQUESTED_AT + timedelta(days=3)


@pytest.mark.asyncio
async def test_early_repayment_requires_acknowledgment(fake_db) -> None:
    with pytest.raises(AcknowledgmentRequiredError):
        await loan_repayments.borrower_early_repay_loan(
            fake_db,
            uuid4(),
            borrower_user_id=uuid4(),
            request_date=REQUESTED_AT,
            wallet_address="0xrepay",
            wallet_derivation_path="m/44'/60'/0'/0/17",
            acknowledgment=False,
        )


@pytest.mark.asyncio
async def test_early_repayment_after_maturity_is_rejected(fake_db) -> None:
    loan = make_loan(status="Active")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    with pytest.raises(LedgerError):
        await loan_repayments.borrower_early_repay_loan(
            fake_db,
            loan.id,
            borrower_user_id=loan.borrower_user_id,
            request_date=loan.maturity_date,
            wallet_address="0xrepay",
            wallet_derivation_path="m/44'/60'/0'/0/18",
            acknowledgment=True,
        )


@pytest.mark.asyncio
async def test_conclude_repayment_sets_date_once(fake_db) -> None:
    loan = make_loan()
    repayment = _repayment(loan)
    fake_db.on_execute(_repayment_lookups(repayment, repayment))

    await loan_repayments.conclude_repayment(fake_db, loan.id, concluded_date=REQUESTED_AT)
    await loan_repayments.conclude_repayment(fake_db, loan.id, concluded_date=REQUESTED_AT + timedelta(days=1))
    assert repayment.concluded_date == REQUESTED_AT
