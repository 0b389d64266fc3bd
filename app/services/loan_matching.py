from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InsufficientPrincipalError, LoanMatchError, SelfMatchError
from app.models.loan_application import LoanApplication
from app.models.loan_offer import LoanOffer
from app.schemas.loan import LoanApplicationStatus, LoanOfferStatus
from app.services import loan_applications, loan_offers

logger = logging.getLogger(__name__)


def apply_match(
    offer: LoanOffer,
    application: LoanApplication,
    *,
    matched_date: datetime,
    matched_ltv_ratio: Decimal,
    matched_collateral_valuation_amount: int,
) -> None:
    """Validate and bind ``application`` to ``offer``, reserving its principal.

    Callers must hold a row lock on the offer so the available-principal check
    and the reservation happen as one step.
    """
    if application.status != LoanApplicationStatus.PUBLISHED.value:
        raise LoanMatchError(
            f"Loan application {application.id} not found or not in Published status",
            entity="LoanApplication",
            entity_id=application.id,
            current_status=application.status,
        )
    if offer.status != LoanOfferStatus.PUBLISHED.value:
        raise LoanMatchError(
            f"Loan offer {offer.id} not found or not in Published status",
            entity="LoanOffer",
            entity_id=offer.id,
            current_status=offer.status,
        )
    if application.borrower_user_id == offer.lender_user_id:
        raise SelfMatchError(
            "Borrower and lender cannot be the same user",
            entity="LoanApplication",
            entity_id=application.id,
        )
    if application.loan_offer_id is not None and application.loan_offer_id != offer.id:
        raise LoanMatchError(
            f"Loan application {application.id} targets a different offer",
            entity="LoanApplication",
            entity_id=application.id,
            current_status=application.status,
        )
    if (application.principal_blockchain_key, application.principal_token_id) != (
        offer.principal_blockchain_key,
        offer.principal_token_id,
    ):
        raise LoanMatchError(
            "Loan application and offer principal currencies differ",
            entity="LoanOffer",
            entity_id=offer.id,
        )

    principal = int(application.principal_amount)
    available = int(offer.available_principal_amount)
    if available < principal:
        raise InsufficientPrincipalError(
            f"Loan offer {offer.id} has insufficient available principal: {available} < {principal}",
            entity="LoanOffer",
            entity_id=offer.id,
            current_status=offer.status,
        )

    offer.available_principal_amount = available - principal
    offer.reserved_principal_amount = int(offer.reserved_principal_amount) + principal

    application.status = LoanApplicationStatus.MATCHED.value
    application.matched_loan_offer_id = offer.id
    application.matched_date = matched_date
    application.matched_ltv_ratio = matched_ltv_ratio
    application.matched_collateral_valuation_amount = matched_collateral_valuation_amount


async def match_loan_application(
    db: AsyncSession,
    *,
    offer_id: UUID,
    application_id: UUID,
    matched_date: datetime,
    matched_ltv_ratio: Decimal,
    matched_collateral_valuation_amount: int,
) -> tuple[LoanOffer, LoanApplication]:
    # Offer row lock serialises concurrent matches against the same offer.
    offer = await loan_offers.get_offer(db, offer_id, for_update=True)
    application = await loan_applications.get_application(db, application_id, for_update=True)
    apply_match(
        offer,
        application,
        matched_date=matched_date,
        matched_ltv_ratio=matched_ltv_ratio,
        matched_collateral_valuation_amount=matched_collateral_valuation_amount,
    )
    await db.flush()
    logger.info(
        "Matched application %s to offer %s principal=%s available_left=%s",
        application.id,
        offer.id,
        application.principal_amount,
        offer.available_principal_amount,
    )
    return offer, application
