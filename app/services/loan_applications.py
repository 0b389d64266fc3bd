from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    EntityNotFoundError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    LedgerError,
    OriginationMismatchError,
)
from app.models.exchange_rate import ExchangeRate
from app.models.invoice import Invoice
from app.models.loan import Loan
from app.models.loan_application import LoanApplication
from app.schemas.finance import InvoiceType
from app.schemas.loan import APPLICATION_TRANSITIONS, LiquidationMode, LoanApplicationStatus
from app.services import invoices as invoice_service
from app.services import loan_offers

logger = logging.getLogger(__name__)


def transition_application(application: LoanApplication, target: LoanApplicationStatus) -> None:
    current = LoanApplicationStatus(application.status)
    if target not in APPLICATION_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("LoanApplication", application.id, current.value, target.value)
    application.status = target.value


def publish_collateralized_application(application: LoanApplication, *, published_date: datetime) -> bool:
    """PendingCollateral -> Published once collateral is paid; a no-op on redelivery."""
    if application.status != LoanApplicationStatus.PENDING_COLLATERAL.value:
        return False
    transition_application(application, LoanApplicationStatus.PUBLISHED)
    application.published_date = published_date
    application.collateral_prepaid_amount = application.collateral_deposit_amount
    return True


async def get_application(
    db: AsyncSession, application_id: UUID, *, for_update: bool = False
) -> LoanApplication:
    stmt = select(LoanApplication).where(LoanApplication.id == application_id)
    if for_update:
        stmt = stmt.with_for_update()
    application = (await db.execute(stmt)).scalar_one_or_none()
    if application is None:
        raise EntityNotFoundError("LoanApplication", application_id)
    return application


async def create_loan_application(
    db: AsyncSession,
    *,
    borrower_user_id: UUID,
    principal_blockchain_key: str,
    principal_token_id: str,
    principal_amount: int,
    provision_amount: int,
    max_interest_rate: Decimal,
    min_ltv_ratio: Decimal,
    max_ltv_ratio: Decimal,
    term_in_months: int,
    liquidation_mode: LiquidationMode,
    collateral_blockchain_key: str,
    collateral_token_id: str,
    collateral_deposit_amount: int,
    collateral_deposit_exchange_rate_id: UUID,
    applied_date: datetime,
    expired_date: datetime,
    collateral_wallet_address: str,
    collateral_wallet_derivation_path: str,
    loan_offer_id: UUID | None = None,
    collateral_invoice_id: int | None = None,
) -> tuple[LoanApplication, Invoice]:
    if principal_amount <= 0 or collateral_deposit_amount <= 0:
        raise InvalidAmountError(
            "Principal and collateral deposit must be positive", entity="LoanApplication"
        )
    if provision_amount < 0:
        raise InvalidAmountError("Provision amount must not be negative", entity="LoanApplication")
    if term_in_months <= 0:
        raise LedgerError("Loan term must be positive", entity="LoanApplication")
    if not Decimal("0") < min_ltv_ratio <= max_ltv_ratio < Decimal("1"):
        raise LedgerError("LTV bounds must satisfy 0 < min <= max < 1", entity="LoanApplication")
    if expired_date <= applied_date:
        raise LedgerError("Application expiry must be after the applied date", entity="LoanApplication")
    if await db.get(ExchangeRate, collateral_deposit_exchange_rate_id) is None:
        raise EntityNotFoundError("ExchangeRate", collateral_deposit_exchange_rate_id)
    if loan_offer_id is not None:
        await loan_offers.get_offer(db, loan_offer_id)

    application = LoanApplication(
        borrower_user_id=borrower_user_id,
        loan_offer_id=loan_offer_id,
        principal_blockchain_key=principal_blockchain_key,
        principal_token_id=principal_token_id,
        principal_amount=principal_amount,
        provision_amount=provision_amount,
        max_interest_rate=max_interest_rate,
        min_ltv_ratio=min_ltv_ratio,
        max_ltv_ratio=max_ltv_ratio,
        term_in_months=term_in_months,
        liquidation_mode=liquidation_mode.value,
        collateral_blockchain_key=collateral_blockchain_key,
        collateral_token_id=collateral_token_id,
        collateral_deposit_amount=collateral_deposit_amount,
        collateral_deposit_exchange_rate_id=collateral_deposit_exchange_rate_id,
        status=LoanApplicationStatus.PENDING_COLLATERAL.value,
        applied_date=applied_date,
        expired_date=expired_date,
    )
    db.add(application)
    await db.flush()

    invoice = await invoice_service.create_invoice(
        db,
        user_id=borrower_user_id,
        blockchain_key=collateral_blockchain_key,
        token_id=collateral_token_id,
        invoice_type=InvoiceType.LOAN_COLLATERAL,
        invoiced_amount=collateral_deposit_amount,
        wallet_address=collateral_wallet_address,
        wallet_derivation_path=collateral_wallet_derivation_path,
        invoice_date=applied_date,
        due_date=expired_date,
        invoice_id=collateral_invoice_id,
        loan_application_id=application.id,
    )
    logger.info("Loan application %s created awaiting collateral", application.id)
    return application, invoice


async def cancel_loan_application(
    db: AsyncSession,
    application_id: UUID,
    *,
    borrower_user_id: UUID,
    cancelled_date: datetime,
    closure_reason: str | None = None,
) -> LoanApplication:
    application = await get_application(db, application_id, for_update=True)
    if application.borrower_user_id != borrower_user_id:
        raise EntityNotFoundError("LoanApplication", application_id)
    transition_application(application, LoanApplicationStatus.CANCELLED)
    application.closed_date = cancelled_date
    application.closure_reason = closure_reason or "Cancelled by borrower"
    await db.flush()
    return application


async def close_loan_application(
    db: AsyncSession,
    application_id: UUID,
    *,
    closed_date: datetime,
    closure_reason: str,
) -> LoanApplication:
    """Close an application; a Matched one hands its reservation back to the offer."""
    application = await get_application(db, application_id)
    offer = None
    if application.status == LoanApplicationStatus.MATCHED.value:
        # Lock order matches matching: offer first, then application.
        offer = await loan_offers.get_offer(db, application.matched_loan_offer_id, for_update=True)
    application = await get_application(db, application_id, for_update=True)
    was_matched = application.status == LoanApplicationStatus.MATCHED.value
    if was_matched:
        # Origination already moved the principal from reserved to disbursed.
        loan_id = (
            await db.execute(select(Loan.id).where(Loan.loan_application_id == application.id))
        ).scalar_one_or_none()
        if loan_id is not None:
            raise OriginationMismatchError(
                f"Loan application {application.id} already originated loan {loan_id}",
                entity="LoanApplication",
                entity_id=application.id,
                current_status=application.status,
            )
    transition_application(application, LoanApplicationStatus.CLOSED)
    application.closed_date = closed_date
    application.closure_reason = closure_reason

    if was_matched and offer is not None:
        principal = int(application.principal_amount)
        offer.reserved_principal_amount = int(offer.reserved_principal_amount) - principal
        offer.available_principal_amount = int(offer.available_principal_amount) + principal
        logger.info(
            "Released %s reserved principal on offer %s from closed application %s",
            principal,
            offer.id,
            application.id,
        )
    await db.flush()
    return application


async def expire_loan_applications(db: AsyncSession, *, as_of: datetime) -> list[LoanApplication]:
    stmt = (
        select(LoanApplication)
        .where(
            LoanApplication.status.in_(
                [
                    LoanApplicationStatus.PENDING_COLLATERAL.value,
                    LoanApplicationStatus.PUBLISHED.value,
                ]
            ),
            LoanApplication.expired_date <= as_of,
        )
        .with_for_update(skip_locked=True)
    )
    applications = list((await db.execute(stmt)).scalars().all())
    for application in applications:
        transition_application(application, LoanApplicationStatus.EXPIRED)
    if applications:
        await db.flush()
        logger.info("Expired %d loan applications as of %s", len(applications), as_of.isoformat())
    return applications
