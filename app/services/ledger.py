"""Account ledger.

Balances are never stored. An account's balance is the sum of its mutation
entries, and entries are append-only. Every write path goes through
``append_mutation`` so the non-zero integer amount rule holds in one place.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import EntityNotFoundError, InsufficientBalanceError, InvalidAmountError
from app.core.settings import settings
from app.models.account import Account, AccountMutationEntry
from app.schemas.finance import (
    AccountBalance,
    AccountMutationItem,
    AccountType,
    MutationType,
    TransactionHistoryPage,
)
from app.services.audit import record_audit_log

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def _account_conditions(
    user_id: UUID, blockchain_key: str, token_id: str, account_type: AccountType
) -> tuple:
    return (
        Account.user_id == user_id,
        Account.currency_blockchain_key == blockchain_key,
        Account.currency_token_id == token_id,
        Account.account_type == account_type.value,
    )


async def get_or_create_account(
    db: AsyncSession,
    *,
    user_id: UUID,
    blockchain_key: str,
    token_id: str,
    account_type: AccountType = AccountType.USER,
    for_update: bool = False,
) -> Account:
    conditions = _account_conditions(user_id, blockchain_key, token_id, account_type)
    stmt = select(Account).where(*conditions)
    if for_update:
        stmt = stmt.with_for_update()
    account = (await db.execute(stmt)).scalar_one_or_none()
    if account is not None:
        return account

    await db.execute(
        insert(Account)
        .values(
            user_id=user_id,
            currency_blockchain_key=blockchain_key,
            currency_token_id=token_id,
            account_type=account_type.value,
        )
        .on_conflict_do_nothing(constraint="uq_accounts_owner_currency_type")
    )
    logger.info(
        "Opened %s account user=%s currency=%s/%s",
        account_type.value,
        user_id,
        blockchain_key,
        token_id,
    )
    return (await db.execute(stmt)).scalar_one()


async def get_account(db: AsyncSession, account_id: UUID, *, for_update: bool = False) -> Account:
    stmt = select(Account).where(Account.id == account_id)
    if for_update:
        stmt = stmt.with_for_update()
    account = (await db.execute(stmt)).scalar_one_or_none()
    if account is None:
        raise EntityNotFoundError("Account", account_id)
    return account


async def get_platform_account(
    db: AsyncSession,
    *,
    blockchain_key: str,
    token_id: str,
    account_type: AccountType = AccountType.PLATFORM_ESCROW,
) -> Account:
    return await get_or_create_account(
        db,
        user_id=settings.platform_user_id,
        blockchain_key=blockchain_key,
        token_id=token_id,
        account_type=account_type,
    )


def append_mutation(
    db: AsyncSession,
    account: Account,
    *,
    mutation_type: MutationType,
    amount: int,
    mutation_date: datetime,
    description: str | None = None,
    **references,
) -> AccountMutationEntry:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError("Mutation amounts must be integers in the smallest unit")
    if amount == 0:
        raise InvalidAmountError("Mutation amount must be non-zero", entity="Account", entity_id=account.id)
    entry = AccountMutationEntry(
        account_id=account.id,
        mutation_type=mutation_type.value,
        mutation_date=mutation_date,
        amount=amount,
        description=description,
        **references,
    )
    db.add(entry)
    return entry


def post_transfer(
    db: AsyncSession,
    *,
    debit_account: Account,
    credit_account: Account,
    amount: int,
    mutation_date: datetime,
    debit_type: MutationType,
    credit_type: MutationType | None = None,
    **references,
) -> tuple[AccountMutationEntry, AccountMutationEntry]:
    """Move ``amount`` between two accounts of the same currency as a balanced pair."""
    if amount <= 0:
        raise InvalidAmountError("Transfer amount must be positive")
    debit = append_mutation(
        db,
        debit_account,
        mutation_type=debit_type,
        amount=-amount,
        mutation_date=mutation_date,
        **references,
    )
    credit = append_mutation(
        db,
        credit_account,
        mutation_type=credit_type or debit_type,
        amount=amount,
        mutation_date=mutation_date,
        **references,
    )
    return debit, credit


async def get_balance(db: AsyncSession, account_id: UUID) -> str:
    stmt = select(func.coalesce(func.sum(AccountMutationEntry.amount), 0)).where(
        AccountMutationEntry.account_id == account_id
    )
    total = (await db.execute(stmt)).scalar_one()
    return str(int(total))


async def list_user_balances(db: AsyncSession, user_id: UUID) -> list[AccountBalance]:
    stmt = (
        select(Account, func.coalesce(func.sum(AccountMutationEntry.amount), 0))
        .outerjoin(AccountMutationEntry, AccountMutationEntry.account_id == Account.id)
        .where(Account.user_id == user_id)
        .group_by(Account.id)
        .order_by(Account.currency_blockchain_key, Account.currency_token_id)
    )
    rows = (await db.execute(stmt)).all()
    return [
        AccountBalance(
            account_id=account.id,
            blockchain_key=account.currency_blockchain_key,
            token_id=account.currency_token_id,
            account_type=AccountType(account.account_type),
            balance=str(int(total)),
        )
        for account, total in rows
    ]


async def list_account_mutations(
    db: AsyncSession,
    account_id: UUID,
    *,
    mutation_type: MutationType | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    limit: int = DEFAULT_HISTORY_LIMIT,
    offset: int = 0,
) -> TransactionHistoryPage:
    conditions = [AccountMutationEntry.account_id == account_id]
    if mutation_type is not None:
        conditions.append(AccountMutationEntry.mutation_type == mutation_type.value)
    if from_date is not None:
        conditions.append(AccountMutationEntry.mutation_date >= from_date)
    if to_date is not None:
        conditions.append(AccountMutationEntry.mutation_date <= to_date)

    count_stmt = select(func.count()).select_from(AccountMutationEntry).where(*conditions)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)

    stmt = (
        select(AccountMutationEntry)
        .where(*conditions)
        .order_by(AccountMutationEntry.mutation_date.desc(), AccountMutationEntry.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    entries = (await db.execute(stmt)).scalars().all()
    items = [
        AccountMutationItem(
            id=entry.id,
            account_id=entry.account_id,
            mutation_type=MutationType(entry.mutation_type),
            mutation_date=entry.mutation_date,
            amount=str(entry.amount),
            invoice_id=entry.invoice_id,
            withdrawal_id=entry.withdrawal_id,
            loan_id=entry.loan_id,
        )
        for entry in entries
    ]
    return TransactionHistoryPage(items=items, total=total, has_more=offset + len(items) < total)


async def admin_adjust_balance(
    db: AsyncSession,
    *,
    admin_user_id: UUID,
    user_id: UUID,
    blockchain_key: str,
    token_id: str,
    amount: int,
    reason: str,
    adjusted_at: datetime,
) -> AccountMutationEntry:
    account = await get_or_create_account(
        db,
        user_id=user_id,
        blockchain_key=blockchain_key,
        token_id=token_id,
        for_update=True,
    )
    if amount < 0:
        balance = int(await get_balance(db, account.id))
        if balance + amount < 0:
            raise InsufficientBalanceError(
                f"Adjustment of {amount} would overdraw balance {balance}",
                entity="Account",
                entity_id=account.id,
            )
    entry = append_mutation(
        db,
        account,
        mutation_type=MutationType.ADMIN_MANUAL_ADJUSTMENT,
        amount=amount,
        mutation_date=adjusted_at,
        description=reason,
    )
    await db.flush()
    record_audit_log(
        db,
        actor_id=admin_user_id,
        action="account.manual_adjustment",
        resource_type="account",
        resource_id=str(account.id),
        new_value={"amount": str(amount), "reason": reason, "mutation_id": str(entry.id)},
    )
    return entry
