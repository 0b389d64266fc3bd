"""Typed business-rule failures raised by the ledger and lifecycle services.

Every error subclasses ``ValueError`` so callers that only care about "the request
was rejected" can keep catching ``ValueError``. The HTTP layer maps them onto the
error envelope via ``app.core.errors``.
"""

from __future__ import annotations

from typing import Any


class LedgerError(ValueError):
    code = "ledger_error"
    status_code = 422

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        entity_id: Any = None,
        current_status: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status

    def details(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.entity:
            data["entity"] = self.entity
        if self.entity_id is not None:
            data["entity_id"] = str(self.entity_id)
        if self.current_status:
            data["current_status"] = self.current_status
        return data


class EntityNotFoundError(LedgerError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class InvalidStatusTransitionError(LedgerError):
    code = "invalid_status"
    status_code = 409

    def __init__(self, entity: str, entity_id: Any, current_status: str, target: str) -> None:
        super().__init__(
            f"{entity} {entity_id} cannot move from {current_status} to {target}",
            entity=entity,
            entity_id=entity_id,
            current_status=current_status,
        )
        self.target_status = target


class LoanMatchError(LedgerError):
    code = "loan_match_rejected"
    status_code = 409


class InsufficientPrincipalError(LoanMatchError):
    code = "insufficient_available_principal"


class SelfMatchError(LoanMatchError):
    code = "self_match"


class OriginationMismatchError(LedgerError):
    code = "origination_mismatch"
    status_code = 409


class LiquidationAlreadyExistsError(LedgerError):
    code = "liquidation_exists"
    status_code = 409

    def __init__(self, loan_id: Any) -> None:
        super().__init__(
            "Liquidation already exists for this loan", entity="Loan", entity_id=loan_id
        )


class DuplicatePaymentError(LedgerError):
    code = "duplicate_payment"
    status_code = 409

    def __init__(self, invoice_id: Any, payment_hash: str) -> None:
        super().__init__(
            f"Payment {payment_hash} already recorded for invoice {invoice_id}",
            entity="Invoice",
            entity_id=invoice_id,
        )
        self.payment_hash = payment_hash


class InsufficientBalanceError(LedgerError):
    code = "insufficient_balance"


class StaleValuationError(LedgerError):
    code = "stale_valuation"
    status_code = 409


class BeneficiaryMismatchError(LedgerError):
    code = "beneficiary_mismatch"


class InvalidAmountError(LedgerError):
    code = "invalid_amount"


class AcknowledgmentRequiredError(LedgerError):
    code = "acknowledgment_required"


class PlatformConfigMissingError(LedgerError):
    code = "platform_config_missing"


class InvoiceIdConfigError(ValueError):
    """Raised when the invoice id generator is configured out of range."""


class InvoiceIdOverflowError(RuntimeError):
    """Raised when a generated invoice id no longer fits a 53-bit safe integer."""
