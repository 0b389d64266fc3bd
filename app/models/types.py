from decimal import Decimal

from sqlalchemy import Numeric
from sqlalchemy.types import TypeDecorator


class TokenAmount(TypeDecorator):
    """Integer amount in a currency's smallest unit, stored as NUMERIC(78, 0).

    78 digits covers the full uint256 range used by EVM tokens.
    """

    impl = Numeric(78, 0)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, bool):
            raise ValueError("Token amounts must be integers")
        if isinstance(value, Decimal):
            if value != value.to_integral_value():
                raise ValueError("Token amounts must be integers")
            return value
        return Decimal(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


RATIO = Numeric(12, 6)

__all__ = ["TokenAmount", "RATIO"]
