from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LoanOfferStatus(str, Enum):
    FUNDING = "Funding"
    PUBLISHED = "Published"
    CLOSED = "Closed"
    EXPIRED = "Expired"


class LoanApplicationStatus(str, Enum):
    PENDING_COLLATERAL = "PendingCollateral"
    PUBLISHED = "Published"
    MATCHED = "Matched"
    CANCELLED = "Cancelled"
    CLOSED = "Closed"
    EXPIRED = "Expired"


class LoanStatus(str, Enum):
    ORIGINATED = "Originated"
    ACTIVE = "Active"
    REPAID = "Repaid"
    LIQUIDATED = "Liquidated"
    DEFAULTED = "Defaulted"


class LiquidationMode(str, Enum):
    PARTIAL = "Partial"
    FULL = "Full"


class LiquidationInitiator(str, Enum):
    PLATFORM = "Platform"
    BORROWER = "Borrower"


class LiquidationStatus(str, Enum):
    PENDING = "Pending"
    FULFILLED = "Fulfilled"
    FAILED = "Failed"


class RepaymentInitiator(str, Enum):
    BORROWER = "Borrower"
    PLATFORM = "Platform"


OFFER_TRANSITIONS: dict[LoanOfferStatus, frozenset[LoanOfferStatus]] = {
    LoanOfferStatus.FUNDING: frozenset(
        {LoanOfferStatus.PUBLISHED, LoanOfferStatus.CLOSED, LoanOfferStatus.EXPIRED}
    ),
    LoanOfferStatus.PUBLISHED: frozenset({LoanOfferStatus.CLOSED, LoanOfferStatus.EXPIRED}),
    LoanOfferStatus.CLOSED: frozenset(),
    LoanOfferStatus.EXPIRED: frozenset(),
}

APPLICATION_TRANSITIONS: dict[LoanApplicationStatus, frozenset[LoanApplicationStatus]] = {
    LoanApplicationStatus.PENDING_COLLATERAL: frozenset(
        {
            LoanApplicationStatus.PUBLISHED,
            LoanApplicationStatus.CANCELLED,
            LoanApplicationStatus.CLOSED,
            LoanApplicationStatus.EXPIRED,
        }
    ),
    LoanApplicationStatus.PUBLISHED: frozenset(
        {
            LoanApplicationStatus.MATCHED,
            LoanApplicationStatus.CANCELLED,
            LoanApplicationStatus.CLOSED,
            LoanApplicationStatus.EXPIRED,
        }
    ),
    LoanApplicationStatus.MATCHED: frozenset({LoanApplicationStatus.CLOSED}),
    LoanApplicationStatus.CANCELLED: frozenset(),
    LoanApplicationStatus.CLOSED: frozenset(),
    LoanApplicationStatus.EXPIRED: frozenset(),
}

LOAN_TRANSITIONS: dict[LoanStatus, frozenset[LoanStatus]] = {
    LoanStatus.ORIGINATED: frozenset({LoanStatus.ACTIVE, LoanStatus.LIQUIDATED}),
    LoanStatus.ACTIVE: frozenset({LoanStatus.REPAID, LoanStatus.LIQUIDATED, LoanStatus.DEFAULTED}),
    LoanStatus.REPAID: frozenset(),
    LoanStatus.LIQUIDATED: frozenset(),
    LoanStatus.DEFAULTED: frozenset(),
}

MONITORED_LOAN_STATUSES = frozenset({LoanStatus.ACTIVE, LoanStatus.ORIGINATED})


class LoanTerms(BaseModel):
    """Pre-computed loan terms supplied by the pricing collaborator."""

    model_config = ConfigDict(frozen=True)

    interest_amount: int = Field(ge=0)
    repayment_amount: int = Field(gt=0)
    redelivery_fee_amount: int = Field(ge=0)
    redelivery_amount: int = Field(ge=0)
    premi_amount: int = Field(ge=0)
    liquidation_fee_amount: int = Field(ge=0)
    min_collateral_valuation: int = Field(ge=0)
    mc_ltv_ratio: Decimal = Field(gt=0)
    collateral_amount: int = Field(gt=0)
    maturity_date: datetime
    legal_document_path: str | None = None
    legal_document_hash: str | None = None


class LtvBreach(BaseModel):
    loan_id: UUID
    borrower_user_id: UUID
    current_ltv_ratio: Decimal
    mc_ltv_ratio: Decimal
    breach_date: datetime


class LtvMonitoringReport(BaseModel):
    threshold: Decimal
    breaches: list[LtvBreach]
    processed_loans: int
