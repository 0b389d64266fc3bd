"""Outbound withdrawals.

Requested -> Sent -> Confirmed on the happy path. Requested or Sent may fail,
after which an admin either approves a refund (the debit is credited back) or
rejects it with a reason. Sending on-chain is done elsewhere; this module only
records what happened.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    BeneficiaryMismatchError,
    EntityNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    LedgerError,
)
from app.models.withdrawal import Withdrawal, WithdrawalBeneficiary
from app.schemas.finance import WITHDRAWAL_TRANSITIONS, AccountType, MutationType, WithdrawalStatus
from app.services import ledger
from app.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

_AUDIT_EXCLUDE = {"created_at", "updated_at"}


def transition_withdrawal(withdrawal: Withdrawal, target: WithdrawalStatus) -> None:
    current = WithdrawalStatus(withdrawal.status)
    if target not in WITHDRAWAL_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("Withdrawal", withdrawal.id, current.value, target.value)
    withdrawal.status = target.value


async def get_withdrawal(db: AsyncSession, withdrawal_id: UUID, *, for_update: bool = False) -> Withdrawal:
    stmt = select(Withdrawal).where(Withdrawal.id == withdrawal_id)
    if for_update:
        stmt = stmt.with_for_update()
    withdrawal = (await db.execute(stmt)).scalar_one_or_none()
    if withdrawal is None:
        raise EntityNotFoundError("Withdrawal", withdrawal_id)
    return withdrawal


async def register_beneficiary(
    db: AsyncSession,
    *,
    user_id: UUID,
    blockchain_key: str,
    token_id: str,
    address: str,
    label: str | None = None,
) -> WithdrawalBeneficiary:
    address = (address or "").strip()
    if not address:
        raise LedgerError("Beneficiary address is required", entity="WithdrawalBeneficiary")
    stmt = select(WithdrawalBeneficiary).where(
        WithdrawalBeneficiary.user_id == user_id,
        WithdrawalBeneficiary.currency_blockchain_key == blockchain_key,
        WithdrawalBeneficiary.currency_token_id == token_id,
        WithdrawalBeneficiary.address == address,
    )
    existing = (await db.execute(stmt)).scalar_one_or_none()
    if existing is not None:
        return existing
    beneficiary = WithdrawalBeneficiary(
        user_id=user_id,
        currency_blockchain_key=blockchain_key,
        currency_token_id=token_id,
        address=address,
        label=label,
    )
    db.add(beneficiary)
    await db.flush()
    return beneficiary


async def request_withdrawal(
    db: AsyncSession,
    *,
    user_id: UUID,
    beneficiary_id: UUID,
    blockchain_key: str,
    token_id: str,
    amount: int,
    request_date: datetime,
    fee_amount: int = 0,
) -> Withdrawal:
    """Debit ``amount + fee_amount`` from the user and record the request.

    The account row is locked while the balance is derived so two concurrent
    requests cannot both spend the same funds.
    """
    if amount <= 0:
        raise InvalidAmountError("Withdrawal amount must be positive", entity="Withdrawal")
    if fee_amount < 0:
        raise InvalidAmountError("Withdrawal fee must not be negative", entity="Withdrawal")

    beneficiary = await db.get(WithdrawalBeneficiary, beneficiary_id)
    if beneficiary is None or beneficiary.user_id != user_id:
        raise EntityNotFoundError("WithdrawalBeneficiary", beneficiary_id)
    if (beneficiary.currency_blockchain_key, beneficiary.currency_token_id) != (blockchain_key, token_id):
        raise BeneficiaryMismatchError(
            f"Beneficiary {beneficiary.id} is registered for a different currency",
            entity="WithdrawalBeneficiary",
            entity_id=beneficiary.id,
        )

    request_amount = amount + fee_amount
    account = await ledger.get_or_create_account(
        db,
        user_id=user_id,
        blockchain_key=blockchain_key,
        token_id=token_id,
        for_update=True,
    )
    balance = int(await ledger.get_balance(db, account.id))
    if request_amount > balance:
        raise InsufficientBalanceError(
            f"Withdrawal of {request_amount} exceeds balance {balance}",
            entity="Account",
            entity_id=account.id,
        )

    withdrawal = Withdrawal(
        beneficiary_id=beneficiary.id,
        account_id=account.id,
        amount=amount,
        request_amount=request_amount,
        status=WithdrawalStatus.REQUESTED.value,
        request_date=request_date,
    )
    db.add(withdrawal)
    await db.flush()

    ledger.append_mutation(
        db,
        account,
        mutation_type=MutationType.WITHDRAWAL_REQUESTED,
        amount=-request_amount,
        mutation_date=request_date,
        withdrawal_id=withdrawal.id,
    )
    if fee_amount:
        fees = await ledger.get_platform_account(
            db,
            blockchain_key=blockchain_key,
            token_id=token_id,
            account_type=AccountType.PLATFORM_FEES,
        )
        ledger.append_mutation(
            db,
            fees,
            mutation_type=MutationType.PLATFORM_FEE_CHARGED,
            amount=fee_amount,
            mutation_date=request_date,
            withdrawal_id=withdrawal.id,
        )
    await db.flush()
    logger.info(
        "Withdrawal %s requested user=%s amount=%s fee=%s",
        withdrawal.id,
        user_id,
        amount,
        fee_amount,
    )
    return withdrawal


async def mark_withdrawal_sent(
    db: AsyncSession,
    withdrawal_id: UUID,
    *,
    sent_amount: int,
    sent_hash: str,
    sent_date: datetime,
) -> Withdrawal:
    if sent_amount <= 0:
        raise InvalidAmountError("Sent amount must be positive", entity="Withdrawal", entity_id=withdrawal_id)
    if not sent_hash:
        raise LedgerError("Sent hash is required", entity="Withdrawal", entity_id=withdrawal_id)
    withdrawal = await get_withdrawal(db, withdrawal_id, for_update=True)
    transition_withdrawal(withdrawal, WithdrawalStatus.SENT)
    withdrawal.sent_amount = sent_amount
    withdrawal.sent_hash = sent_hash
    withdrawal.sent_date = sent_date
    try:
        await db.flush()
    except IntegrityError as exc:
        raise LedgerError(
            f"Transaction {sent_hash} is already recorded for another withdrawal",
            entity="Withdrawal",
            entity_id=withdrawal_id,
        ) from exc
    return withdrawal


async def confirm_withdrawal(db: AsyncSession, withdrawal_id: UUID, *, confirmed_date: datetime) -> Withdrawal:
    withdrawal = await get_withdrawal(db, withdrawal_id, for_update=True)
    transition_withdrawal(withdrawal, WithdrawalStatus.CONFIRMED)
    withdrawal.confirmed_date = confirmed_date
    await db.flush()
    return withdrawal


async def platform_fails_withdrawal(
    db: AsyncSession,
    withdrawal_id: UUID,
    *,
    failed_date: datetime,
    failure_reason: str,
) -> Withdrawal:
    withdrawal = await get_withdrawal(db, withdrawal_id, for_update=True)
    transition_withdrawal(withdrawal, WithdrawalStatus.FAILED)
    withdrawal.failed_date = failed_date
    withdrawal.failure_reason = failure_reason
    await db.flush()
    logger.warning("Withdrawal %s failed: %s", withdrawal.id, failure_reason)
    return withdrawal


async def admin_approves_withdrawal_refund(
    db: AsyncSession,
    withdrawal_id: UUID,
    *,
    admin_user_id: UUID,
    approved_date: datetime,
) -> Withdrawal:
    withdrawal = await get_withdrawal(db, withdrawal_id, for_update=True)
    before = model_snapshot(withdrawal, exclude=_AUDIT_EXCLUDE)
    transition_withdrawal(withdrawal, WithdrawalStatus.REFUND_APPROVED)
    withdrawal.failure_refund_reviewer_user_id = admin_user_id
    withdrawal.failure_refund_approved_date = approved_date

    account = await ledger.get_account(db, withdrawal.account_id, for_update=True)
    ledger.append_mutation(
        db,
        account,
        mutation_type=MutationType.WITHDRAWAL_REFUNDED,
        amount=int(withdrawal.request_amount),
        mutation_date=approved_date,
        withdrawal_id=withdrawal.id,
    )
    fee_amount = int(withdrawal.request_amount) - int(withdrawal.amount)
    if fee_amount:
        fees = await ledger.get_platform_account(
            db,
            blockchain_key=account.currency_blockchain_key,
            token_id=account.currency_token_id,
            account_type=AccountType.PLATFORM_FEES,
        )
        ledger.append_mutation(
            db,
            fees,
            mutation_type=MutationType.PLATFORM_FEE_CHARGED,
            amount=-fee_amount,
            mutation_date=approved_date,
            withdrawal_id=withdrawal.id,
            description="Fee returned with withdrawal refund",
        )
    await db.flush()

    record_audit_log(
        db,
        actor_id=admin_user_id,
        action="withdrawal.refund_approved",
        resource_type="withdrawal",
        resource_id=str(withdrawal.id),
        old_value=before,
        new_value=model_snapshot(withdrawal, exclude=_AUDIT_EXCLUDE),
    )
    return withdrawal


async def admin_rejects_withdrawal_refund(
    db: AsyncSession,
    withdrawal_id: UUID,
    *,
    admin_user_id: UUID,
    rejected_date: datetime,
    rejection_reason: str,
) -> Withdrawal:
    if not rejection_reason or not rejection_reason.strip():
        raise LedgerError("A rejection reason is required", entity="Withdrawal", entity_id=withdrawal_id)
    withdrawal = await get_withdrawal(db, withdrawal_id, for_update=True)
    before = model_snapshot(withdrawal, exclude=_AUDIT_EXCLUDE)
    transition_withdrawal(withdrawal, WithdrawalStatus.REFUND_REJECTED)
    withdrawal.failure_refund_reviewer_user_id = admin_user_id
    withdrawal.failure_refund_rejected_date = rejected_date
    withdrawal.failure_refund_rejection_reason = rejection_reason.strip()
    await db.flush()

    record_audit_log(
        db,
        actor_id=admin_user_id,
        action="withdrawal.refund_rejected",
        resource_type="withdrawal",
        resource_id=str(withdrawal.id),
        old_value=before,
        new_value=model_snapshot(withdrawal, exclude=_AUDIT_EXCLUDE),
    )
    return withdrawal
