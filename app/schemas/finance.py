from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AccountType(str, Enum):
    USER = "User"
    PLATFORM_ESCROW = "PlatformEscrow"
    PLATFORM_FEES = "PlatformFees"


class MutationType(str, Enum):
    INVOICE_RECEIVED = "InvoiceReceived"
    LOAN_COLLATERAL_DEPOSIT = "LoanCollateralDeposit"
    LOAN_OFFER_PRINCIPAL_ESCROWED = "LoanOfferPrincipalEscrowed"
    LOAN_PRINCIPAL_FUNDED = "LoanPrincipalFunded"
    LOAN_PRINCIPAL_DISBURSEMENT = "LoanPrincipalDisbursement"
    LOAN_REPAYMENT = "LoanRepayment"
    LOAN_LIQUIDATION = "LoanLiquidation"
    WITHDRAWAL_REQUESTED = "WithdrawalRequested"
    WITHDRAWAL_REFUNDED = "WithdrawalRefunded"
    PLATFORM_FEE_CHARGED = "PlatformFeeCharged"
    ADMIN_MANUAL_ADJUSTMENT = "AdminManualAdjustment"


class InvoiceType(str, Enum):
    LOAN_COLLATERAL = "LoanCollateral"
    LOAN_PRINCIPAL = "LoanPrincipal"
    LOAN_REPAYMENT = "LoanRepayment"
    LOAN_EARLY_REPAYMENT = "LoanEarlyRepayment"


class InvoiceStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"


class WithdrawalStatus(str, Enum):
    REQUESTED = "Requested"
    SENT = "Sent"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"
    REFUND_APPROVED = "RefundApproved"
    REFUND_REJECTED = "RefundRejected"


WITHDRAWAL_TRANSITIONS: dict[WithdrawalStatus, frozenset[WithdrawalStatus]] = {
    WithdrawalStatus.REQUESTED: frozenset({WithdrawalStatus.SENT, WithdrawalStatus.FAILED}),
    WithdrawalStatus.SENT: frozenset({WithdrawalStatus.CONFIRMED, WithdrawalStatus.FAILED}),
    WithdrawalStatus.CONFIRMED: frozenset(),
    WithdrawalStatus.FAILED: frozenset(
        {WithdrawalStatus.REFUND_APPROVED, WithdrawalStatus.REFUND_REJECTED}
    ),
    WithdrawalStatus.REFUND_APPROVED: frozenset(),
    WithdrawalStatus.REFUND_REJECTED: frozenset(),
}


class CurrencyRef(BaseModel):
    """A (blockchain, token) pair identifying a currency."""

    model_config = ConfigDict(frozen=True)

    blockchain_key: str
    token_id: str


class AccountBalance(BaseModel):
    account_id: UUID
    blockchain_key: str
    token_id: str
    account_type: AccountType
    balance: str


class AccountMutationItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    mutation_type: MutationType
    mutation_date: datetime
    amount: str
    invoice_id: int | None = None
    withdrawal_id: UUID | None = None
    loan_id: UUID | None = None


class TransactionHistoryPage(BaseModel):
    items: list[AccountMutationItem]
    total: int
    has_more: bool
