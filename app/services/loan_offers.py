from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import EntityNotFoundError, InvalidAmountError, InvalidStatusTransitionError, LedgerError
from app.models.invoice import Invoice
from app.models.loan_offer import LoanOffer
from app.schemas.finance import InvoiceType
from app.schemas.loan import OFFER_TRANSITIONS, LoanOfferStatus
from app.services import invoices as invoice_service

logger = logging.getLogger(__name__)


def principal_is_balanced(offer: LoanOffer) -> bool:
    return int(offer.offered_principal_amount) == (
        int(offer.available_principal_amount)
        + int(offer.reserved_principal_amount)
        + int(offer.disbursed_principal_amount)
    )


def transition_offer(offer: LoanOffer, target: LoanOfferStatus) -> None:
    current = LoanOfferStatus(offer.status)
    if target not in OFFER_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("LoanOffer", offer.id, current.value, target.value)
    offer.status = target.value


def publish_funded_offer(offer: LoanOffer, *, published_date: datetime) -> bool:
    """Funding -> Published once the funding invoice is paid; a no-op on redelivery."""
    if offer.status != LoanOfferStatus.FUNDING.value:
        return False
    transition_offer(offer, LoanOfferStatus.PUBLISHED)
    offer.published_date = published_date
    return True


async def get_offer(db: AsyncSession, offer_id: UUID, *, for_update: bool = False) -> LoanOffer:
    stmt = select(LoanOffer).where(LoanOffer.id == offer_id)
    if for_update:
        stmt = stmt.with_for_update()
    offer = (await db.execute(stmt)).scalar_one_or_none()
    if offer is None:
        raise EntityNotFoundError("LoanOffer", offer_id)
    return offer


async def create_loan_offer(
    db: AsyncSession,
    *,
    lender_user_id: UUID,
    principal_blockchain_key: str,
    principal_token_id: str,
    offered_principal_amount: int,
    min_loan_principal_amount: int,
    max_loan_principal_amount: int,
    interest_rate: Decimal,
    term_in_months_options: list[int],
    created_date: datetime,
    expired_date: datetime,
    funding_wallet_address: str,
    funding_wallet_derivation_path: str,
    funding_invoice_id: int | None = None,
) -> tuple[LoanOffer, Invoice]:
    if offered_principal_amount <= 0:
        raise InvalidAmountError("Offered principal must be positive", entity="LoanOffer")
    if not 0 < min_loan_principal_amount <= max_loan_principal_amount <= offered_principal_amount:
        raise LedgerError(
            "Loan principal bounds must satisfy 0 < min <= max <= offered", entity="LoanOffer"
        )
    if interest_rate < 0:
        raise LedgerError("Interest rate must not be negative", entity="LoanOffer")
    if not term_in_months_options or any(term <= 0 for term in term_in_months_options):
        raise LedgerError("At least one positive term option is required", entity="LoanOffer")
    if expired_date <= created_date:
        raise LedgerError("Offer expiry must be after its creation", entity="LoanOffer")

    offer = LoanOffer(
        lender_user_id=lender_user_id,
        principal_blockchain_key=principal_blockchain_key,
        principal_token_id=principal_token_id,
        offered_principal_amount=offered_principal_amount,
        available_principal_amount=offered_principal_amount,
        reserved_principal_amount=0,
        disbursed_principal_amount=0,
        min_loan_principal_amount=min_loan_principal_amount,
        max_loan_principal_amount=max_loan_principal_amount,
        interest_rate=interest_rate,
        term_in_months_options=sorted(set(term_in_months_options)),
        status=LoanOfferStatus.FUNDING.value,
        created_date=created_date,
        expired_date=expired_date,
    )
    db.add(offer)
    await db.flush()

    invoice = await invoice_service.create_invoice(
        db,
        user_id=lender_user_id,
        blockchain_key=principal_blockchain_key,
        token_id=principal_token_id,
        invoice_type=InvoiceType.LOAN_PRINCIPAL,
        invoiced_amount=offered_principal_amount,
        wallet_address=funding_wallet_address,
        wallet_derivation_path=funding_wallet_derivation_path,
        invoice_date=created_date,
        due_date=expired_date,
        invoice_id=funding_invoice_id,
        loan_offer_id=offer.id,
    )
    logger.info("Loan offer %s created in Funding for %s", offer.id, offered_principal_amount)
    return offer, invoice


async def close_loan_offer(
    db: AsyncSession,
    offer_id: UUID,
    *,
    lender_user_id: UUID,
    closed_date: datetime,
    closure_reason: str | None = None,
) -> LoanOffer:
    offer = await get_offer(db, offer_id, for_update=True)
    if offer.lender_user_id != lender_user_id:
        # Not revealing other lenders' offers.
        raise EntityNotFoundError("LoanOffer", offer_id)
    transition_offer(offer, LoanOfferStatus.CLOSED)
    offer.closed_date = closed_date
    offer.closure_reason = closure_reason
    await db.flush()
    return offer


async def expire_loan_offers(db: AsyncSession, *, as_of: datetime) -> list[LoanOffer]:
    stmt = (
        select(LoanOffer)
        .where(
            LoanOffer.status.in_([LoanOfferStatus.FUNDING.value, LoanOfferStatus.PUBLISHED.value]),
            LoanOffer.expired_date <= as_of,
        )
        .with_for_update(skip_locked=True)
    )
    offers = list((await db.execute(stmt)).scalars().all())
    for offer in offers:
        transition_offer(offer, LoanOfferStatus.EXPIRED)
    if offers:
        await db.flush()
        logger.info("Expired %d loan offers as of %s", len(offers), as_of.isoformat())
    return offers
