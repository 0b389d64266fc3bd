from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    EntityNotFoundError,
    InvalidStatusTransitionError,
    LedgerError,
    OriginationMismatchError,
    StaleValuationError,
)
from app.models.exchange_rate import ExchangeRate
from app.models.loan import Loan
from app.models.loan_application import LoanApplication
from app.models.loan_offer import LoanOffer
from app.models.loan_valuation import LoanValuation
from app.schemas.loan import LOAN_TRANSITIONS, LoanApplicationStatus, LoanOfferStatus, LoanStatus, LoanTerms
from app.services import loan_applications, loan_offers
from app.services.audit import record_audit_log

logger = logging.getLogger(__name__)


def transition_loan(loan: Loan, target: LoanStatus) -> None:
    current = LoanStatus(loan.status)
    if target not in LOAN_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("Loan", loan.id, current.value, target.value)
    loan.status = target.value


async def get_loan(db: AsyncSession, loan_id: UUID, *, for_update: bool = False) -> Loan:
    stmt = select(Loan).where(Loan.id == loan_id)
    if for_update:
        stmt = stmt.with_for_update()
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise EntityNotFoundError("Loan", loan_id)
    return loan


def build_originated_loan(
    offer: LoanOffer,
    application: LoanApplication,
    terms: LoanTerms,
    *,
    origination_date: datetime,
) -> Loan:
    """Create the loan from a Matched application and its Published offer.

    Moves the application's principal from reserved to disbursed on the offer.
    """
    if application.status != LoanApplicationStatus.MATCHED.value:
        raise OriginationMismatchError(
            f"Loan application {application.id} is not Matched",
            entity="LoanApplication",
            entity_id=application.id,
            current_status=application.status,
        )
    if offer.status != LoanOfferStatus.PUBLISHED.value:
        raise OriginationMismatchError(
            f"Loan offer {offer.id} is not Published",
            entity="LoanOffer",
            entity_id=offer.id,
            current_status=offer.status,
        )
    if application.matched_loan_offer_id != offer.id:
        raise OriginationMismatchError(
            f"Loan application {application.id} is matched to a different offer",
            entity="LoanApplication",
            entity_id=application.id,
            current_status=application.status,
        )
    principal = int(application.principal_amount)
    reserved = int(offer.reserved_principal_amount)
    if reserved < principal:
        raise OriginationMismatchError(
            f"Loan offer {offer.id} reserves {reserved}, less than principal {principal}",
            entity="LoanOffer",
            entity_id=offer.id,
            current_status=offer.status,
        )
    if terms.maturity_date <= origination_date:
        raise LedgerError("Loan maturity must be after origination", entity="Loan")

    offer.reserved_principal_amount = reserved - principal
    offer.disbursed_principal_amount = int(offer.disbursed_principal_amount) + principal

    return Loan(
        loan_offer_id=offer.id,
        loan_application_id=application.id,
        borrower_user_id=application.borrower_user_id,
        lender_user_id=offer.lender_user_id,
        principal_blockchain_key=offer.principal_blockchain_key,
        principal_token_id=offer.principal_token_id,
        principal_amount=principal,
        interest_amount=terms.interest_amount,
        repayment_amount=terms.repayment_amount,
        redelivery_fee_amount=terms.redelivery_fee_amount,
        redelivery_amount=terms.redelivery_amount,
        premi_amount=terms.premi_amount,
        liquidation_fee_amount=terms.liquidation_fee_amount,
        min_collateral_valuation=terms.min_collateral_valuation,
        mc_ltv_ratio=terms.mc_ltv_ratio,
        mc_ltv_ratio_date=origination_date,
        current_ltv_ratio=application.matched_ltv_ratio,
        collateral_blockchain_key=application.collateral_blockchain_key,
        collateral_token_id=application.collateral_token_id,
        collateral_amount=terms.collateral_amount,
        legal_document_path=terms.legal_document_path,
        legal_document_hash=terms.legal_document_hash,
        status=LoanStatus.ORIGINATED.value,
        origination_date=origination_date,
        maturity_date=terms.maturity_date,
    )


async def originate_loan(
    db: AsyncSession,
    *,
    offer_id: UUID,
    application_id: UUID,
    terms: LoanTerms,
    origination_date: datetime,
) -> Loan:
    offer = await loan_offers.get_offer(db, offer_id, for_update=True)
    application = await loan_applications.get_application(db, application_id, for_update=True)

    existing = (
        await db.execute(select(Loan).where(Loan.loan_application_id == application.id))
    ).scalar_one_or_none()
    if existing is not None:
        raise OriginationMismatchError(
            f"Loan application {application.id} already originated loan {existing.id}",
            entity="LoanApplication",
            entity_id=application.id,
            current_status=application.status,
        )

    loan = build_originated_loan(offer, application, terms, origination_date=origination_date)
    db.add(loan)
    await db.flush()
    record_audit_log(
        db,
        actor_id=None,
        action="loan.originated",
        resource_type="loan",
        resource_id=str(loan.id),
        new_value={
            "loan_offer_id": str(offer.id),
            "loan_application_id": str(application.id),
            "principal_amount": str(loan.principal_amount),
            "repayment_amount": str(loan.repayment_amount),
        },
    )
    logger.info("Originated loan %s from offer %s and application %s", loan.id, offer.id, application.id)
    return loan


async def disburse_loan(db: AsyncSession, loan_id: UUID, *, disbursement_date: datetime) -> Loan:
    loan = await get_loan(db, loan_id, for_update=True)
    if loan.status != LoanStatus.ORIGINATED.value:
        raise InvalidStatusTransitionError("Loan", loan.id, loan.status, LoanStatus.ACTIVE.value)
    transition_loan(loan, LoanStatus.ACTIVE)
    loan.disbursement_date = disbursement_date
    await db.flush()
    return loan


async def record_loan_valuation(
    db: AsyncSession,
    *,
    loan_id: UUID,
    exchange_rate_id: UUID,
    valuation_date: datetime,
    ltv_ratio: Decimal,
    collateral_valuation_amount: int,
) -> Loan:
    """Upsert a valuation keyed by (loan, exchange rate) and refresh the loan's LTV.

    Valuations older than the newest one already recorded for the loan are
    rejected so a late message cannot roll ``current_ltv_ratio`` backwards.
    """
    if ltv_ratio < 0 or collateral_valuation_amount < 0:
        raise LedgerError("Valuation figures must not be negative", entity="Loan", entity_id=loan_id)
    loan = await get_loan(db, loan_id, for_update=True)
    if await db.get(ExchangeRate, exchange_rate_id) is None:
        raise EntityNotFoundError("ExchangeRate", exchange_rate_id)

    latest_stmt = select(func.max(LoanValuation.valuation_date)).where(LoanValuation.loan_id == loan.id)
    latest = (await db.execute(latest_stmt)).scalar_one_or_none()
    if latest is not None and valuation_date < latest:
        raise StaleValuationError(
            f"Valuation dated {valuation_date.isoformat()} is older than {latest.isoformat()}",
            entity="Loan",
            entity_id=loan.id,
            current_status=loan.status,
        )

    stmt = insert(LoanValuation).values(
        loan_id=loan.id,
        exchange_rate_id=exchange_rate_id,
        valuation_date=valuation_date,
        ltv_ratio=ltv_ratio,
        collateral_valuation_amount=collateral_valuation_amount,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[LoanValuation.loan_id, LoanValuation.exchange_rate_id],
        set_={
            "valuation_date": stmt.excluded.valuation_date,
            "ltv_ratio": stmt.excluded.ltv_ratio,
            "collateral_valuation_amount": stmt.excluded.collateral_valuation_amount,
        },
    )
    await db.execute(stmt)
    loan.current_ltv_ratio = ltv_ratio
    await db.flush()
    return loan


def conclude_repaid_loan(loan: Loan, *, concluded_date: datetime) -> bool:
    """Active -> Repaid after the repayment invoice is paid; a no-op on redelivery."""
    if loan.status != LoanStatus.ACTIVE.value:
        return False
    transition_loan(loan, LoanStatus.REPAID)
    loan.concluded_date = concluded_date
    loan.conclusion_reason = "Repaid"
    return True


async def mark_loan_defaulted(
    db: AsyncSession,
    loan_id: UUID,
    *,
    defaulted_date: datetime,
    reason: str,
    actor_id: UUID | None = None,
) -> Loan:
    loan = await get_loan(db, loan_id, for_update=True)
    transition_loan(loan, LoanStatus.DEFAULTED)
    loan.concluded_date = defaulted_date
    loan.conclusion_reason = reason
    await db.flush()
    record_audit_log(
        db,
        actor_id=actor_id,
        action="loan.defaulted",
        resource_type="loan",
        resource_id=str(loan.id),
        new_value={"reason": reason},
    )
    return loan
