from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AcknowledgmentRequiredError,
    EntityNotFoundError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    LedgerError,
    LiquidationAlreadyExistsError,
)
from app.models.loan_liquidation import LoanLiquidation
from app.schemas.loan import (
    MONITORED_LOAN_STATUSES,
    LiquidationInitiator,
    LiquidationStatus,
    LoanStatus,
)
from app.services.audit import model_snapshot, record_audit_log
from app.services.loans import get_loan, transition_loan

logger = logging.getLogger(__name__)

_LIQUIDATABLE = {status.value for status in MONITORED_LOAN_STATUSES}


def borrower_order_ref(loan_id: UUID, order_date: datetime) -> str:
    return f"borrower_liquidation_{loan_id}_{int(order_date.timestamp() * 1000)}"


async def get_liquidation(db: AsyncSession, loan_id: UUID, *, for_update: bool = False) -> LoanLiquidation:
    stmt = select(LoanLiquidation).where(LoanLiquidation.loan_id == loan_id)
    if for_update:
        stmt = stmt.with_for_update()
    liquidation = (await db.execute(stmt)).scalar_one_or_none()
    if liquidation is None:
        raise EntityNotFoundError("LoanLiquidation", loan_id)
    return liquidation


async def request_loan_liquidation(
    db: AsyncSession,
    loan_id: UUID,
    *,
    initiator: LiquidationInitiator,
    liquidation_target_amount: int,
    market_provider: str,
    market_symbol: str,
    order_ref: str,
    order_date: datetime,
    order_quantity: Decimal | None = None,
    order_price: Decimal | None = None,
    acknowledgment: bool | None = None,
    actor_id: UUID | None = None,
) -> LoanLiquidation:
    """Open the single liquidation order a loan may ever have."""
    if liquidation_target_amount < 0:
        raise InvalidAmountError("Liquidation target must not be negative", entity="Loan", entity_id=loan_id)

    loan = await get_loan(db, loan_id, for_update=True)
    if loan.status not in _LIQUIDATABLE:
        raise InvalidStatusTransitionError("Loan", loan.id, loan.status, LoanStatus.LIQUIDATED.value)

    existing = (
        await db.execute(select(LoanLiquidation).where(LoanLiquidation.loan_id == loan.id))
    ).scalar_one_or_none()
    if existing is not None:
        raise LiquidationAlreadyExistsError(loan.id)

    liquidation = LoanLiquidation(
        loan_id=loan.id,
        liquidation_initiator=initiator.value,
        liquidation_target_amount=liquidation_target_amount,
        market_provider=market_provider,
        market_symbol=market_symbol,
        order_ref=order_ref,
        order_quantity=order_quantity,
        order_price=order_price,
        status=LiquidationStatus.PENDING.value,
        order_date=order_date,
        acknowledgment=acknowledgment,
    )
    db.add(liquidation)
    try:
        await db.flush()
    except IntegrityError as exc:
        # A concurrent request won the primary key.
        raise LiquidationAlreadyExistsError(loan.id) from exc

    record_audit_log(
        db,
        actor_id=actor_id,
        action="loan.liquidation_requested",
        resource_type="loan",
        resource_id=str(loan.id),
        new_value=model_snapshot(liquidation, exclude={"created_at"}),
    )
    logger.info(
        "Liquidation requested loan=%s initiator=%s order_ref=%s",
        loan.id,
        initiator.value,
        order_ref,
    )
    return liquidation


async def borrower_request_early_liquidation(
    db: AsyncSession,
    loan_id: UUID,
    *,
    borrower_user_id: UUID,
    market_provider: str,
    market_symbol: str,
    order_date: datetime,
    acknowledgment: bool,
) -> LoanLiquidation:
    if not acknowledgment:
        raise AcknowledgmentRequiredError(
            "Early liquidation requires borrower acknowledgment", entity="Loan", entity_id=loan_id
        )
    loan = await get_loan(db, loan_id)
    if loan.borrower_user_id != borrower_user_id:
        raise EntityNotFoundError("Loan", loan_id)
    return await request_loan_liquidation(
        db,
        loan_id,
        initiator=LiquidationInitiator.BORROWER,
        liquidation_target_amount=0,
        market_provider=market_provider,
        market_symbol=market_symbol,
        order_ref=borrower_order_ref(loan_id, order_date),
        order_date=order_date,
        acknowledgment=True,
        actor_id=borrower_user_id,
    )


async def complete_loan_liquidation(
    db: AsyncSession,
    loan_id: UUID,
    *,
    fulfilled_date: datetime,
    fulfilled_amount: int,
    actor_id: UUID | None = None,
) -> LoanLiquidation:
    if fulfilled_amount < 0:
        raise InvalidAmountError("Fulfilled amount must not be negative", entity="Loan", entity_id=loan_id)
    loan = await get_loan(db, loan_id, for_update=True)
    liquidation = await get_liquidation(db, loan_id, for_update=True)
    if liquidation.status != LiquidationStatus.PENDING.value:
        raise InvalidStatusTransitionError(
            "LoanLiquidation", loan_id, liquidation.status, LiquidationStatus.FULFILLED.value
        )
    before = model_snapshot(liquidation, exclude={"created_at"})

    transition_loan(loan, LoanStatus.LIQUIDATED)
    loan.concluded_date = fulfilled_date
    loan.conclusion_reason = "Liquidated"
    liquidation.status = LiquidationStatus.FULFILLED.value
    liquidation.fulfilled_date = fulfilled_date
    liquidation.fulfilled_amount = fulfilled_amount
    await db.flush()

    record_audit_log(
        db,
        actor_id=actor_id,
        action="loan.liquidation_fulfilled",
        resource_type="loan",
        resource_id=str(loan_id),
        old_value=before,
        new_value=model_snapshot(liquidation, exclude={"created_at"}),
    )
    return liquidation


async def fail_loan_liquidation(
    db: AsyncSession,
    loan_id: UUID,
    *,
    failure_date: datetime,
    failure_reason: str,
    actor_id: UUID | None = None,
) -> LoanLiquidation:
    if not failure_reason:
        raise LedgerError("A failure reason is required", entity="LoanLiquidation", entity_id=loan_id)
    liquidation = await get_liquidation(db, loan_id, for_update=True)
    if liquidation.status != LiquidationStatus.PENDING.value:
        raise InvalidStatusTransitionError(
            "LoanLiquidation", loan_id, liquidation.status, LiquidationStatus.FAILED.value
        )
    before = model_snapshot(liquidation, exclude={"created_at"})
    liquidation.status = LiquidationStatus.FAILED.value
    liquidation.failure_date = failure_date
    liquidation.failure_reason = failure_reason
    await db.flush()

    record_audit_log(
        db,
        actor_id=actor_id,
        action="loan.liquidation_failed",
        resource_type="loan",
        resource_id=str(loan_id),
        old_value=before,
        new_value=model_snapshot(liquidation, exclude={"created_at"}),
    )
    logger.warning("Liquidation failed loan=%s reason=%s", loan_id, failure_reason)
    return liquidation
