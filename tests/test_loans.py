from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.exceptions import (
    EntityNotFoundError,
    InvalidStatusTransitionError,
    LedgerError,
    OriginationMismatchError,
    StaleValuationError,
)
from app.models.audit_log import AuditLog
from app.models.exchange_rate import ExchangeRate
from app.models.loan import Loan
from app.models.loan_application import LoanApplication
from app.models.loan_offer import LoanOffer
from app.schemas.loan import LoanTerms
from app.services import loan_applications, loan_offers, loans
from conftest import (
    BASE_DATE,
    FakeResult,
    entity_handler,
    make_application,
    make_exchange_rate,
    make_loan,
    make_offer,
    sql_handler,
)

ORIGINATED_AT = BASE_DATE + timedelta(days=3)


def _terms(**overrides) -> LoanTerms:
    values = dict(
        interest_amount=25,
        repayment_amount=525,
        redelivery_fee_amount=2,
        redelivery_amount=523,
        premi_amount=10,
        liquidation_fee_amount=10,
        min_collateral_valuation=700,
        mc_ltv_ratio=Decimal("0.75"),
        collateral_amount=100_000,
        maturity_date=ORIGINATED_AT + timedelta(days=180),
    )
    values.update(overrides)
    return LoanTerms(**values)


def _matched_pair():
    offer = make_offer(offered=1000, reserved=500)
    application = make_application(
        status="Matched",
        matched_loan_offer_id=offer.id,
        matched_ltv_ratio=Decimal("0.55"),
        matched_collateral_valuation_amount=900,
    )
    return offer, application


def test_origination_moves_reserved_principal_to_disbursed() -> None:
    offer, application = _matched_pair()

    loan = loans.build_originated_loan(offer, application, _terms(), origination_date=ORIGINATED_AT)

    assert loan.status == "Originated"
    assert loan.principal_amount == 500
    assert loan.repayment_amount == 525
    assert loan.borrower_user_id == application.borrower_user_id
    assert loan.lender_user_id == offer.lender_user_id
    assert loan.current_ltv_ratio == Decimal("0.55")
    assert loan.mc_ltv_ratio_date == ORIGINATED_AT
    assert offer.reserved_principal_amount == 0
    assert offer.disbursed_principal_amount == 500
    assert offer.available_principal_amount == 500
    assert loan_offers.principal_is_balanced(offer)


@pytest.mark.asyncio
async def test_originated_application_cannot_be_closed(fake_db) -> None:
    offer, application = _matched_pair()
    loan = loans.build_originated_loan(offer, application, _terms(), origination_date=ORIGINATED_AT)
    loan.id = uuid4()
    fake_db.on_execute(entity_handler(LoanOffer, FakeResult(scalar=offer)))
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan.id)))

    with pytest.raises(OriginationMismatchError):
        await loan_applications.close_loan_application(
            fake_db, application.id, closed_date=ORIGINATED_AT, closure_reason="Borrower withdrew"
        )

    assert application.status == "Matched"
    assert offer.reserved_principal_amount == 0
    assert offer.available_principal_amount == 500
    assert offer.disbursed_principal_amount == 500
    assert loan_offers.principal_is_balanced(offer)


def test_origination_requires_matched_application() -> None:
    offer, application = _matched_pair()
    application.status = "Published"
    with pytest.raises(OriginationMismatchError):
        loans.build_originated_loan(offer, application, _terms(), origination_date=ORIGINATED_AT)
    assert offer.reserved_principal_amount == 500


def test_origination_requires_published_offer() -> None:
    offer, application = _matched_pair()
    offer.status = "Closed"
    with pytest.raises(OriginationMismatchError):
        loans.build_originated_loan(offer, application, _terms(), origination_date=ORIGINATED_AT)


def test_origination_requires_the_matched_offer() -> None:
    offer, application = _matched_pair()
    application.matched_loan_offer_id = uuid4()
    with pytest.raises(OriginationMismatchError):
        loans.build_originated_loan(offer, application, _terms(), origination_date=ORIGINATED_AT)


def test_origination_requires_reserved_principal() -> None:
    offer, application = _matched_pair()
    offer.reserved_principal_amount = 100
    offer.available_principal_amount = 900
    with pytest.raises(OriginationMismatchError):
        loans.build_originated_loan(offer, application, _terms(), origination_date=ORIGINATED_AT)


def test_origination_requires_maturity_after_origination() -> None:
    offer, application = _matched_pair()
    with pytest.raises(LedgerError):
        loans.build_originated_loan(
            offer, application, _terms(maturity_date=ORIGINATED_AT), origination_date=ORIGINATED_AT
        )
    assert offer.disbursed_principal_amount == 0


@pytest.mark.asyncio
async def test_originate_loan_persists_and_audits(fake_db) -> None:
    offer, application = _matched_pair()
    fake_db.on_execute(entity_handler(LoanOffer, FakeResult(scalar=offer)))
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    loan = await loans.originate_loan(
        fake_db,
        offer_id=offer.id,
        application_id=application.id,
        terms=_terms(),
        origination_date=ORIGINATED_AT,
    )
    assert fake_db.added_of(Loan) == [loan]
    audit = fake_db.added_of(AuditLog)
    assert audit and audit[0].action == "loan.originated"


@pytest.mark.asyncio
async def test_originate_loan_twice_is_rejected(fake_db) -> None:
    offer, application = _matched_pair()
    fake_db.on_execute(entity_handler(LoanOffer, FakeResult(scalar=offer)))
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=make_loan())))

    with pytest.raises(OriginationMismatchError):
        await loans.originate_loan(
            fake_db,
            offer_id=offer.id,
            application_id=application.id,
            terms=_terms(),
            origination_date=ORIGINATED_AT,
        )
    assert offer.reserved_principal_amount == 500


@pytest.mark.asyncio
async def test_disburse_originated_loan(fake_db) -> None:
    loan = make_loan(status="Originated")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    disbursed = await loans.disburse_loan(fake_db, loan.id, disbursement_date=ORIGINATED_AT)
    assert disbursed.status == "Active"
    assert disbursed.disbursement_date == ORIGINATED_AT


@pytest.mark.asyncio
async def test_disburse_active_loan_is_rejected(fake_db) -> None:
    loan = make_loan(status="Active")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    with pytest.raises(InvalidStatusTransitionError):
        await loans.disburse_loan(fake_db, loan.id, disbursement_date=ORIGINATED_AT)


@pytest.mark.asyncio
async def test_unknown_loan(fake_db) -> None:
    with pytest.raises(EntityNotFoundError):
        await loans.get_loan(fake_db, uuid4())


def _valuation_db(fake_db, loan, rate, latest):
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    fake_db.on_execute(sql_handler("max(loan_valuations.valuation_date)", FakeResult(scalar=latest)))
    fake_db.on_get(ExchangeRate, rate.id, rate)


@pytest.mark.asyncio
async def test_valuation_updates_current_ltv(fake_db) -> None:
    loan = make_loan(current_ltv_ratio=Decimal("0.55"))
    rate = make_exchange_rate()
    _valuation_db(fake_db, loan, rate, BASE_DATE)

    updated = await loans.record_loan_valuation(
        fake_db,
        loan_id=loan.id,
        exchange_rate_id=rate.id,
        valuation_date=BASE_DATE + timedelta(days=1),
        ltv_ratio=Decimal("0.62"),
        collateral_valuation_amount=806,
    )
    assert updated.current_ltv_ratio == Decimal("0.62")
    upsert = str(fake_db.executed[-1])
    assert "INSERT INTO loan_valuations" in upsert
    assert "ON CONFLICT (loan_id, exchange_rate_id) DO UPDATE" in upsert


@pytest.mark.asyncio
async def test_valuation_on_same_date_is_accepted(fake_db) -> None:
    loan = make_loan()
    rate = make_exchange_rate()
    _valuation_db(fake_db, loan, rate, BASE_DATE)

    updated = await loans.record_loan_valuation(
        fake_db,
        loan_id=loan.id,
        exchange_rate_id=rate.id,
        valuation_date=BASE_DATE,
        ltv_ratio=Decimal("0.58"),
        collateral_valuation_amount=860,
    )
    assert updated.current_ltv_ratio == Decimal("0.58")


@pytest.mark.asyncio
async def test_stale_valuation_is_rejected(fake_db) -> None:
    loan = make_loan(current_ltv_ratio=Decimal("0.70"))
    rate = make_exchange_rate()
    _valuation_db(fake_db, loan, rate, BASE_DATE + timedelta(days=5))

    with pytest.raises(StaleValuationError):
        await loans.record_loan_valuation(
            fake_db,
            loan_id=loan.id,
            exchange_rate_id=rate.id,
            valuation_date=BASE_DATE + timedelta(days=1),
            ltv_ratio=Decimal("0.40"),
            collateral_valuation_amount=1300,
        )
    assert loan.current_ltv_ratio == Decimal("0.70")
    assert not any("INSERT INTO loan_valuations" in str(stmt) for stmt in fake_db.executed)


@pytest.mark.asyncio
async def test_valuation_requires_known_exchange_rate(fake_db) -> None:
    loan = make_loan()
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    with pytest.raises(EntityNotFoundError):
        await loans.record_loan_valuation(
            fake_db,
            loan_id=loan.id,
            exchange_rate_id=uuid4(),
            valuation_date=BASE_DATE,
            ltv_ratio=Decimal("0.5"),
            collateral_valuation_amount=1,
        )


@pytest.mark.asyncio
async def test_negative_valuation_is_rejected(fake_db) -> None:
    with pytest.raises(LedgerError):
        await loans.record_loan_valuation(
            fake_db,
            loan_id=uuid4(),
            exchange_rate_id=uuid4(),
            valuation_date=BASE_DATE,
            ltv_ratio=Decimal("-0.1"),
            collateral_valuation_amount=1,
        )
    assert fake_db.executed == []


def test_conclude_repaid_loan_only_from_active() -> None:
    loan = make_loan(status="Active")
    assert loans.conclude_repaid_loan(loan, concluded_date=ORIGINATED_AT) is True
    assert loan.status == "Repaid"
    assert loan.conclusion_reason == "Repaid"
    assert loans.conclude_repaid_loan(loan, concluded_date=ORIGINATED_AT) is False


@pytest.mark.asyncio
async def test_mark_defaulted_is_audited(fake_db) -> None:
    loan = make_loan(status="Active")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    actor = uuid4()

    await loans.mark_loan_defaulted(
        fake_db, loan.id, defaulted_date=ORIGINATED_AT, reason="Missed maturity", actor_id=actor
    )
    assert loan.status == "Defaulted"
    audit = fake_db.added_of(AuditLog)
    assert audit[0].action == "loan.defaulted"
    assert audit[0].actor_id == actor


@pytest.mark.asyncio
async def test_originated_loan_cannot_default(fake_db) -> None:
    loan = make_loan(status="Originated")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    with pytest.raises(InvalidStatusTransitionError):
        await loans.mark_loan_defaulted(fake_db, loan.id, defaulted_date=ORIGINATED_AT, reason="x")
