from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def make_watch_key(token_id: str, address: str) -> str:
    return f"{token_id.lower()}::{address.strip().lower()}"


class AddressChanged(BaseModel):
    """Registry message announcing an address to start or stop watching."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    token_id: str
    address: str
    derived_path: str

    def watch_key(self) -> str:
        return make_watch_key(self.token_id, self.address)


class DetectedTransaction(BaseModel):
    """A transfer into a watched address, as observed by a chain watcher."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    blockchain_key: str
    token_id: str
    derived_path: str
    address: str
    tx_hash: str
    sender: str
    amount: str
    timestamp: int = Field(description="Block time in seconds since the unix epoch")

    @field_validator("amount")
    @classmethod
    def _amount_is_positive_integer(cls, value: str) -> str:
        if not value.isdigit() or int(value) <= 0:
            raise ValueError("amount must be a positive integer string")
        return value


class SettlementPayload(BaseModel):
    """Queue payload handed to the settlement matcher."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    blockchain_key: str
    token_id: str
    wallet_derivation_path: str
    wallet_address: str
    transaction_hash: str
    sender: str
    amount: str
    detected_at: datetime

    @classmethod
    def from_detected(cls, tx: DetectedTransaction) -> "SettlementPayload":
        return cls(
            blockchain_key=tx.blockchain_key,
            token_id=tx.token_id,
            wallet_derivation_path=tx.derived_path,
            wallet_address=tx.address,
            transaction_hash=tx.tx_hash,
            sender=tx.sender,
            amount=tx.amount,
            detected_at=datetime.fromtimestamp(tx.timestamp, tz=timezone.utc),
        )


class SettlementMessage(BaseModel):
    id: str
    attempts: int = 0
    payload: SettlementPayload
