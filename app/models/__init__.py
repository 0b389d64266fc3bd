from app.models.account import Account, AccountMutationEntry
from app.models.audit_log import AuditLog
from app.models.currency import Currency
from app.models.exchange_rate import ExchangeRate, PriceFeed
from app.models.invoice import Invoice, InvoicePayment
from app.models.loan import Loan
from app.models.loan_application import LoanApplication
from app.models.loan_liquidation import LoanLiquidation
from app.models.loan_offer import LoanOffer
from app.models.loan_repayment import LoanRepayment
from app.models.loan_valuation import LoanValuation
from app.models.platform_config import PlatformConfig
from app.models.withdrawal import Withdrawal, WithdrawalBeneficiary

__all__ = [
    "Account",
    "AccountMutationEntry",
    "AuditLog",
    "Currency",
    "ExchangeRate",
    "PriceFeed",
    "Invoice",
    "InvoicePayment",
    "Loan",
    "LoanApplication",
    "LoanLiquidation",
    "LoanOffer",
    "LoanRepayment",
    "LoanValuation",
    "PlatformConfig",
    "Withdrawal",
    "WithdrawalBeneficiary",
]
