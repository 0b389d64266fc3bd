from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.exceptions import (
    EntityNotFoundError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    LedgerError,
)
from app.models.exchange_rate import ExchangeRate
from app.models.invoice import Invoice
from app.models.loan_application import LoanApplication
from app.models.loan_offer import LoanOffer
from app.schemas.loan import LiquidationMode
from app.services import loan_applications, loan_offers
from conftest import (
    BASE_DATE,
    BTC_CHAIN,
    ETH_CHAIN,
    USDT_TOKEN,
    FakeResult,
    entity_handler,
    make_application,
    make_exchange_rate,
    make_offer,
    sequence_handler,
)


async def _create_offer(fake_db, **overrides):
    kwargs = dict(
        lender_user_id=uuid4(),
        principal_blockchain_key=ETH_CHAIN,
        principal_token_id=USDT_TOKEN,
        offered_principal_amount=1000,
        min_loan_principal_amount=100,
        max_loan_principal_amount=1000,
        interest_rate=Decimal("0.1"),
        term_in_months_options=[6, 3, 6],
        created_date=BASE_DATE,
        expired_date=BASE_DATE + timedelta(days=30),
        funding_wallet_address="0xfund",
        funding_wallet_derivation_path="m/44'/60'/0'/0/3",
        funding_invoice_id=9001,
    )
    kwargs.update(overrides)
    return await loan_offers.create_loan_offer(fake_db, **kwargs)


@pytest.mark.asyncio
async def test_create_offer_starts_funding_with_principal_invoice(fake_db) -> None:
    offer, invoice = await _create_offer(fake_db)

    assert offer.status == "Funding"
    assert offer.available_principal_amount == 1000
    assert offer.reserved_principal_amount == 0
    assert offer.term_in_months_options == [3, 6]
    assert loan_offers.principal_is_balanced(offer)
    assert invoice.invoice_type == "LoanPrincipal"
    assert invoice.invoiced_amount == 1000
    assert invoice.loan_offer_id == offer.id
    assert invoice.user_id == offer.lender_user_id
    assert invoice.due_date == offer.expired_date


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"offered_principal_amount": 0}, InvalidAmountError),
        ({"min_loan_principal_amount": 0}, LedgerError),
        ({"max_loan_principal_amount": 2000}, LedgerError),
        ({"interest_rate": Decimal("-0.01")}, LedgerError),
        ({"term_in_months_options": []}, LedgerError),
        ({"expired_date": BASE_DATE}, LedgerError),
    ],
)
async def test_create_offer_validation(fake_db, overrides, error) -> None:
    with pytest.raises(error):
        await _create_offer(fake_db, **overrides)
    assert fake_db.added_of(LoanOffer) == []


def test_publish_funded_offer_is_idempotent() -> None:
    offer = make_offer(status="Funding")
    assert loan_offers.publish_funded_offer(offer, published_date=BASE_DATE) is True
    assert offer.status == "Published"
    assert offer.published_date == BASE_DATE
    assert loan_offers.publish_funded_offer(offer, published_date=BASE_DATE + timedelta(days=1)) is False
    assert offer.published_date == BASE_DATE


@pytest.mark.asyncio
async def test_close_offer_by_other_lender_is_hidden(fake_db) -> None:
    offer = make_offer()
    fake_db.on_execute(entity_handler(LoanOffer, FakeResult(scalar=offer)))
    with pytest.raises(EntityNotFoundError):
        await loan_offers.close_loan_offer(
            fake_db, offer.id, lender_user_id=uuid4(), closed_date=BASE_DATE
        )
    assert offer.status == "Published"


@pytest.mark.asyncio
async def test_closed_offer_cannot_close_again(fake_db) -> None:
    offer = make_offer(status="Closed")
    fake_db.on_execute(entity_handler(LoanOffer, FakeResult(scalar=offer)))
    with pytest.raises(InvalidStatusTransitionError):
        await loan_offers.close_loan_offer(
            fake_db, offer.id, lender_user_id=offer.lender_user_id, closed_date=BASE_DATE
        )


@pytest.mark.asyncio
async def test_expire_offers(fake_db) -> None:
    offers = [make_offer(status="Funding"), make_offer(status="Published")]
    fake_db.on_execute_return(FakeResult(items=offers))
    expired = await loan_offers.expire_loan_offers(fake_db, as_of=BASE_DATE + timedelta(days=120))
    assert [offer.status for offer in expired] == ["Expired", "Expired"]


async def _create_application(fake_db, **overrides):
    rate = make_exchange_rate()
    fake_db.on_get(ExchangeRate, rate.id, rate)
    kwargs = dict(
        borrower_user_id=uuid4(),
        principal_blockchain_key=ETH_CHAIN,
        principal_token_id=USDT_TOKEN,
        principal_amount=500,
        provision_amount=15,
        max_interest_rate=Decimal("0.12"),
        min_ltv_ratio=Decimal("0.5"),
        max_ltv_ratio=Decimal("0.7"),
        term_in_months=6,
        liquidation_mode=LiquidationMode.PARTIAL,
        collateral_blockchain_key=BTC_CHAIN,
        collateral_token_id="slip44:0",
        collateral_deposit_amount=100_000,
        collateral_deposit_exchange_rate_id=rate.id,
        applied_date=BASE_DATE,
        expired_date=BASE_DATE + timedelta(days=14),
        collateral_wallet_address="bc1qcollateral",
        collateral_wallet_derivation_path="m/84'/0'/0'/0/5",
        collateral_invoice_id=9002,
    )
    kwargs.update(overrides)
    return await loan_applications.create_loan_application(fake_db, **kwargs)


@pytest.mark.asyncio
async def test_create_application_awaits_collateral(fake_db) -> None:
    application, invoice = await _create_application(fake_db)
    assert application.status == "PendingCollateral"
    assert invoice.invoice_type == "LoanCollateral"
    assert invoice.invoiced_amount == 100_000
    assert invoice.currency_blockchain_key == BTC_CHAIN
    assert invoice.loan_application_id == application.id
    assert fake_db.added_of(Invoice) == [invoice]


@pytest.mark.asyncio
async def test_create_application_requires_known_exchange_rate(fake_db) -> None:
    with pytest.raises(EntityNotFoundError):
        await _create_application(fake_db, collateral_deposit_exchange_rate_id=uuid4())


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"principal_amount": 0},
        {"provision_amount": -1},
        {"term_in_months": 0},
        {"min_ltv_ratio": Decimal("0.8")},
        {"max_ltv_ratio": Decimal("1")},
        {"expired_date": BASE_DATE},
    ],
)
async def test_create_application_validation(fake_db, overrides) -> None:
    with pytest.raises(LedgerError):
        await _create_application(fake_db, **overrides)
    assert fake_db.added_of(LoanApplication) == []


def test_publish_collateralized_application_records_prepaid_collateral() -> None:
    application = make_application(status="PendingCollateral")
    assert loan_applications.publish_collateralized_application(application, published_date=BASE_DATE)
    assert application.status == "Published"
    assert application.collateral_prepaid_amount == application.collateral_deposit_amount
    assert not loan_applications.publish_collateralized_application(application, published_date=BASE_DATE)


@pytest.mark.asyncio
async def test_cancel_application_by_borrower(fake_db) -> None:
    application = make_application(status="PendingCollateral")
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    cancelled = await loan_applications.cancel_loan_application(
        fake_db,
        application.id,
        borrower_user_id=application.borrower_user_id,
        cancelled_date=BASE_DATE,
    )
    assert cancelled.status == "Cancelled"
    assert cancelled.closure_reason == "Cancelled by borrower"


@pytest.mark.asyncio
async def test_matched_application_cannot_be_cancelled(fake_db) -> None:
    application = make_application(status="Matched", matched_loan_offer_id=uuid4())
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    with pytest.raises(InvalidStatusTransitionError):
        await loan_applications.cancel_loan_application(
            fake_db,
            application.id,
            borrower_user_id=application.borrower_user_id,
            cancelled_date=BASE_DATE,
        )


@pytest.mark.asyncio
async def test_closing_matched_application_releases_reservation(fake_db) -> None:
    offer = make_offer(offered=1000, reserved=500)
    application = make_application(status="Matched", matched_loan_offer_id=offer.id)
    fake_db.on_execute(entity_handler(LoanOffer, FakeResult(scalar=offer)))
    fake_db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))

    closed = await loan_applications.close_loan_application(
        fake_db, application.id, closed_date=BASE_DATE, closure_reason="Borrower withdrew"
    )
    assert closed.status == "Closed"
    assert offer.reserved_principal_amount == 0
    assert offer.available_principal_amount == 1000
    assert loan_offers.principal_is_balanced(offer)
    rendered = [str(stmt) for stmt in fake_db.executed]
    offer_lock = next(i for i, sql in enumerate(rendered) if "FROM loan_offers" in sql)
    application_lock = max(
        i for i, sql in enumerate(rendered) if "FROM loan_applications" in sql and "FOR UPDATE" in sql
    )
    assert offer_lock < application_lock


@pytest.mark.asyncio
async def test_expire_applications(fake_db) -> None:
    applications = [make_application(status="PendingCollateral"), make_application()]
    fake_db.on_execute(sequence_handler([FakeResult(items=applications)]))
    expired = await loan_applications.expire_loan_applications(fake_db, as_of=BASE_DATE + timedelta(days=60))
    assert {application.status for application in expired} == {"Expired"}
