from __future__ import annotations

import logging
import re
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import EntityNotFoundError, InvalidAmountError, InvalidStatusTransitionError, LedgerError
from app.models.invoice import Invoice
from app.schemas.finance import InvoiceStatus, InvoiceType
from app.services.invoice_ids import get_invoice_id_generator

logger = logging.getLogger(__name__)

DERIVATION_PATH_RE = re.compile(r"^m(/[0-9]+'?)+$")


def validate_derivation_path(path: str) -> str:
    if not DERIVATION_PATH_RE.match(path or ""):
        raise LedgerError(f"Invalid wallet derivation path {path!r}", entity="Invoice")
    return path


def next_invoice_id() -> int:
    return get_invoice_id_generator().next_id()


async def create_invoice(
    db: AsyncSession,
    *,
    user_id: UUID,
    blockchain_key: str,
    token_id: str,
    invoice_type: InvoiceType,
    invoiced_amount: int,
    wallet_address: str,
    wallet_derivation_path: str,
    invoice_date: datetime,
    due_date: datetime | None = None,
    invoice_id: int | None = None,
    loan_offer_id: UUID | None = None,
    loan_application_id: UUID | None = None,
    loan_id: UUID | None = None,
) -> Invoice:
    if invoiced_amount <= 0:
        raise InvalidAmountError("Invoiced amount must be positive", entity="Invoice")
    if not wallet_address:
        raise LedgerError("Invoice wallet address is required", entity="Invoice")
    validate_derivation_path(wallet_derivation_path)
    if due_date is not None and due_date <= invoice_date:
        raise LedgerError("Invoice due date must be after the invoice date", entity="Invoice")

    invoice = Invoice(
        id=invoice_id if invoice_id is not None else next_invoice_id(),
        user_id=user_id,
        currency_blockchain_key=blockchain_key,
        currency_token_id=token_id,
        invoice_type=invoice_type.value,
        invoiced_amount=invoiced_amount,
        paid_amount=0,
        wallet_address=wallet_address,
        wallet_derivation_path=wallet_derivation_path,
        status=InvoiceStatus.PENDING.value,
        invoice_date=invoice_date,
        due_date=due_date,
        loan_offer_id=loan_offer_id,
        loan_application_id=loan_application_id,
        loan_id=loan_id,
    )
    db.add(invoice)
    await db.flush()
    logger.info(
        "Created %s invoice id=%s chain=%s amount=%s",
        invoice.invoice_type,
        invoice.id,
        blockchain_key,
        invoiced_amount,
    )
    return invoice


async def get_invoice_for_update(db: AsyncSession, invoice_id: int) -> Invoice:
    stmt = select(Invoice).where(Invoice.id == invoice_id).with_for_update()
    invoice = (await db.execute(stmt)).scalar_one_or_none()
    if invoice is None:
        raise EntityNotFoundError("Invoice", invoice_id)
    return invoice


def apply_payment(invoice: Invoice, *, amount: int, payment_date: datetime) -> bool:
    """Add ``amount`` to the invoice; returns True when this payment completed it."""
    if amount <= 0:
        raise InvalidAmountError("Payment amount must be positive", entity="Invoice", entity_id=invoice.id)
    invoice.paid_amount = int(invoice.paid_amount or 0) + amount
    if invoice.status == InvoiceStatus.PENDING.value and invoice.paid_amount >= int(invoice.invoiced_amount):
        invoice.status = InvoiceStatus.PAID.value
        invoice.paid_date = payment_date
        return True
    return False


async def cancel_invoice(db: AsyncSession, invoice_id: int, *, cancelled_date: datetime) -> Invoice:
    invoice = await get_invoice_for_update(db, invoice_id)
    if invoice.status != InvoiceStatus.PENDING.value:
        raise InvalidStatusTransitionError(
            "Invoice", invoice.id, invoice.status, InvoiceStatus.CANCELLED.value
        )
    invoice.status = InvoiceStatus.CANCELLED.value
    invoice.cancelled_date = cancelled_date
    await db.flush()
    return invoice


async def expire_pending_invoices(db: AsyncSession, *, as_of: datetime) -> list[Invoice]:
    stmt = (
        select(Invoice)
        .where(
            Invoice.status == InvoiceStatus.PENDING.value,
            Invoice.due_date.is_not(None),
            Invoice.due_date < as_of,
        )
        .order_by(Invoice.due_date.asc())
        .with_for_update(skip_locked=True)
    )
    invoices = list((await db.execute(stmt)).scalars().all())
    for invoice in invoices:
        invoice.status = InvoiceStatus.EXPIRED.value
        invoice.expired_date = as_of
    if invoices:
        await db.flush()
        logger.info("Expired %d pending invoices as of %s", len(invoices), as_of.isoformat())
    return invoices


async def list_pending_invoices_page(
    db: AsyncSession,
    *,
    limit: int,
    after_id: int | None = None,
    blockchain_key: str | None = None,
) -> list[Invoice]:
    stmt = select(Invoice).where(Invoice.status == InvoiceStatus.PENDING.value)
    if blockchain_key is not None:
        stmt = stmt.where(Invoice.currency_blockchain_key == blockchain_key)
    if after_id is not None:
        stmt = stmt.where(Invoice.id > after_id)
    stmt = stmt.order_by(Invoice.id.asc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def find_pending_invoice_for_update(
    db: AsyncSession,
    *,
    blockchain_key: str,
    wallet_address: str,
    token_id: str,
) -> Invoice | None:
    stmt = (
        select(Invoice)
        .where(
            Invoice.status == InvoiceStatus.PENDING.value,
            Invoice.currency_blockchain_key == blockchain_key,
            Invoice.currency_token_id == token_id,
            func.lower(Invoice.wallet_address) == wallet_address.strip().lower(),
        )
        .order_by(Invoice.id.desc())
        .limit(1)
        .with_for_update()
    )
    return (await db.execute(stmt)).scalar_one_or_none()
