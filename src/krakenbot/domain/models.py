from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any


class OrderSide(StrEnum):
    BUY = "buy"
    SELL = "sell"


class OrderType(StrEnum):
    LIMIT = "lmt"
    MARKET = "mkt"
    STOP = "stp"
    TAKE_PROFIT = "take_profit"
    IOC = "ioc"
    POST_ONLY = "post"


class ExchangeError(RuntimeError):
    """Raised when an exchange request fails at the transport or HTTP level."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: str,
        detail: Any = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.detail = detail
        self.status_code = status_code

    def as_dict(self) -> dict[str, Any]:
        return {"endpoint": self.endpoint, "error": self.detail}


class ConfigurationError(RuntimeError):
    pass


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


def to_decimal(value: object) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed
