"""Settlement of detected deposits against pending invoices.

``settle_payment`` applies one detected transfer inside the caller's
transaction. ``SettlementWorker`` drains the settlement queue, owns the
transaction boundary per message and decides between ack, retry and
dead-letter.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from uuid import UUID

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import set_worker
from app.core.exceptions import DuplicatePaymentError, InvalidStatusTransitionError, LedgerError
from app.models.account import Account
from app.models.invoice import Invoice, InvoicePayment
from app.schemas.finance import InvoiceStatus, InvoiceType, MutationType
from app.schemas.indexer import AddressChanged, SettlementMessage, SettlementPayload
from app.services import address_registry, ledger, loan_applications, loan_offers, loan_repayments, loans
from app.services import invoices as invoice_service
from app.services.active_invoices import ActiveInvoiceCache
from app.services.settlement_queue import SettlementQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementOutcome:
    matched: bool
    invoice_id: int | None = None
    payment_id: UUID | None = None
    invoice_paid: bool = False
    published: str | None = None
    closed_change: AddressChanged | None = None
    blockchain_key: str | None = None


async def _escrow_move(
    db: AsyncSession,
    owner: Account,
    *,
    amount: int,
    payment_date: datetime,
    debit_type: MutationType,
    credit_type: MutationType | None = None,
    **references,
) -> None:
    escrow = await ledger.get_platform_account(
        db,
        blockchain_key=owner.currency_blockchain_key,
        token_id=owner.currency_token_id,
    )
    ledger.post_transfer(
        db,
        debit_account=owner,
        credit_account=escrow,
        amount=amount,
        mutation_date=payment_date,
        debit_type=debit_type,
        credit_type=credit_type,
        **references,
    )


async def _apply_paid_effects(
    db: AsyncSession, invoice: Invoice, owner: Account, *, payment_date: datetime
) -> str | None:
    """Advance whatever the invoice backs. Returns the name of the published entity, if any."""
    invoice_type = InvoiceType(invoice.invoice_type)

    if invoice_type == InvoiceType.LOAN_PRINCIPAL and invoice.loan_offer_id is not None:
        offer = await loan_offers.get_offer(db, invoice.loan_offer_id, for_update=True)
        if not loan_offers.publish_funded_offer(offer, published_date=payment_date):
            logger.info("Loan offer %s already past Funding; skipping publish", offer.id)
            return None
        await _escrow_move(
            db,
            owner,
            amount=int(offer.offered_principal_amount),
            payment_date=payment_date,
            debit_type=MutationType.LOAN_OFFER_PRINCIPAL_ESCROWED,
            credit_type=MutationType.LOAN_PRINCIPAL_FUNDED,
            invoice_id=invoice.id,
            loan_offer_id=offer.id,
        )
        return "LoanOffer"

    if invoice_type == InvoiceType.LOAN_COLLATERAL and invoice.loan_application_id is not None:
        application = await loan_applications.get_application(
            db, invoice.loan_application_id, for_update=True
        )
        if not loan_applications.publish_collateralized_application(application, published_date=payment_date):
            logger.info("Loan application %s already past PendingCollateral; skipping publish", application.id)
            return None
        await _escrow_move(
            db,
            owner,
            amount=int(application.collateral_deposit_amount),
            payment_date=payment_date,
            debit_type=MutationType.LOAN_COLLATERAL_DEPOSIT,
            invoice_id=invoice.id,
            loan_application_id=application.id,
        )
        return "LoanApplication"

    if (
        invoice_type in (InvoiceType.LOAN_REPAYMENT, InvoiceType.LOAN_EARLY_REPAYMENT)
        and invoice.loan_id is not None
    ):
        loan = await loans.get_loan(db, invoice.loan_id, for_update=True)
        if not loans.conclude_repaid_loan(loan, concluded_date=payment_date):
            logger.info("Loan %s is %s; repayment leaves it unchanged", loan.id, loan.status)
            return None
        await loan_repayments.conclude_repayment(db, loan.id, concluded_date=payment_date)
        await _escrow_move(
            db,
            owner,
            amount=int(loan.repayment_amount),
            payment_date=payment_date,
            debit_type=MutationType.LOAN_REPAYMENT,
            invoice_id=invoice.id,
            loan_id=loan.id,
        )
        return "Loan"

    logger.warning("Paid invoice %s of type %s backs no known record", invoice.id, invoice.invoice_type)
    return None


async def settle_payment(
    db: AsyncSession,
    payload: SettlementPayload,
    *,
    cache: ActiveInvoiceCache,
) -> SettlementOutcome:
    """Apply one detected deposit. Raises ``DuplicatePaymentError`` on replay."""
    cached = cache.get_invoice(payload.blockchain_key, payload.wallet_address)
    if cached is not None and cached.token_id == payload.token_id:
        invoice = await invoice_service.get_invoice_for_update(db, cached.id)
    else:
        # The cache lags newly created invoices by up to one refresh interval.
        invoice = await invoice_service.find_pending_invoice_for_update(
            db,
            blockchain_key=payload.blockchain_key,
            wallet_address=payload.wallet_address,
            token_id=payload.token_id,
        )
        if invoice is None:
            logger.info(
                "Ignoring unmatched deposit chain=%s token=%s address=%s tx=%s",
                payload.blockchain_key,
                payload.token_id,
                payload.wallet_address,
                payload.transaction_hash,
            )
            return SettlementOutcome(matched=False)
        logger.info("Deposit tx=%s matched invoice %s missing from the cache", payload.transaction_hash, invoice.id)
        cache.put(invoice)

    amount = int(payload.amount)
    payment_date = payload.detected_at

    duplicate_stmt = select(InvoicePayment).where(
        InvoicePayment.invoice_id == invoice.id,
        InvoicePayment.payment_hash == payload.transaction_hash,
    )
    if (await db.execute(duplicate_stmt)).scalar_one_or_none() is not None:
        raise DuplicatePaymentError(invoice.id, payload.transaction_hash)
    if invoice.status != InvoiceStatus.PENDING.value:
        raise InvalidStatusTransitionError("Invoice", invoice.id, invoice.status, InvoiceStatus.PAID.value)
    if (invoice.currency_blockchain_key, invoice.currency_token_id) != (
        payload.blockchain_key,
        payload.token_id,
    ):
        raise LedgerError(
            f"Deposit currency {payload.blockchain_key}/{payload.token_id} does not match invoice",
            entity="Invoice",
            entity_id=invoice.id,
            current_status=invoice.status,
        )

    payment = InvoicePayment(
        invoice_id=invoice.id,
        payment_hash=payload.transaction_hash,
        sender=payload.sender,
        amount=amount,
        payment_date=payment_date,
    )
    db.add(payment)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicatePaymentError(invoice.id, payload.transaction_hash) from exc

    paid = invoice_service.apply_payment(invoice, amount=amount, payment_date=payment_date)

    owner = await ledger.get_or_create_account(
        db,
        user_id=invoice.user_id,
        blockchain_key=invoice.currency_blockchain_key,
        token_id=invoice.currency_token_id,
        for_update=True,
    )
    ledger.append_mutation(
        db,
        owner,
        mutation_type=MutationType.INVOICE_RECEIVED,
        amount=amount,
        mutation_date=payment_date,
        invoice_id=invoice.id,
        invoice_payment_id=payment.id,
    )

    published = None
    if paid:
        published = await _apply_paid_effects(db, invoice, owner, payment_date=payment_date)
    await db.flush()

    logger.info(
        "Settled tx=%s invoice=%s amount=%s paid=%s/%s status=%s",
        payload.transaction_hash,
        invoice.id,
        amount,
        invoice.paid_amount,
        invoice.invoiced_amount,
        invoice.status,
    )
    return SettlementOutcome(
        matched=True,
        invoice_id=invoice.id,
        payment_id=payment.id,
        invoice_paid=paid,
        published=published,
        closed_change=address_registry.change_for_invoice(invoice) if paid else None,
        blockchain_key=invoice.currency_blockchain_key,
    )


class SettlementWorker:
    """Single consumer of the settlement queue.

    Business errors are deterministic, so they are acknowledged and logged
    instead of retried. Anything else rolls back and goes through the queue's
    backoff until it is dead-lettered.
    """

    def __init__(
        self,
        queue: SettlementQueue,
        cache: ActiveInvoiceCache,
        session_factory: Callable[[], AsyncSession],
        *,
        pop_timeout: float | None = None,
        idle_backoff: float = 1.0,
    ) -> None:
        self.queue = queue
        self.cache = cache
        self._session_factory = session_factory
        self.pop_timeout = pop_timeout
        self.idle_backoff = idle_backoff
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    async def handle(self, message: SettlementMessage, raw: str) -> SettlementOutcome | None:
        payload = message.payload
        try:
            async with self._session_factory() as db:
                try:
                    outcome = await settle_payment(db, payload, cache=self.cache)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
        except DuplicatePaymentError as exc:
            logger.warning(
                "Replayed settlement message id=%s acknowledged as no-op: %s", message.id, exc.message
            )
            await self.queue.ack(raw)
            return None
        except LedgerError as exc:
            logger.warning(
                "Settlement message id=%s rejected code=%s: %s", message.id, exc.code, exc.message
            )
            await self.queue.ack(raw)
            return None
        except Exception as exc:
            logger.exception("Settlement message id=%s failed", message.id)
            await self.queue.retry(raw, message, repr(exc))
            return None

        await self.queue.ack(raw)
        if outcome.closed_change is not None and outcome.blockchain_key is not None:
            await self._announce_closed(outcome.blockchain_key, outcome.closed_change)
        return outcome

    async def _announce_closed(self, blockchain_key: str, change: AddressChanged) -> None:
        self.cache.discard(blockchain_key, change.address)
        try:
            await address_registry.publish_change(blockchain_key, "removed", change, redis=self.queue.redis)
        except RedisError as exc:
            # Watchers keep the address until the next restart; the cache no longer matches it.
            logger.warning("Failed to announce closed address %s on %s: %s", change.address, blockchain_key, exc)

    async def process_one(self) -> bool:
        await self.queue.promote_due()
        reserved = await self.queue.reserve(self.pop_timeout)
        if reserved is None:
            return False
        message, raw = reserved
        await self.handle(message, raw)
        return True

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        await self.queue.recover_inflight()
        self._task = asyncio.create_task(self._run_loop(), name="settlement-worker")

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Settlement worker task cancelled.")
        finally:
            self._task = None

    async def _run_loop(self) -> None:
        set_worker("settlement")
        while not self._stop_event.is_set():
            try:
                await self.process_one()
            except Exception:
                logger.exception("Settlement worker iteration failed; backing off.")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.idle_backoff)
                except asyncio.TimeoutError:
                    pass
