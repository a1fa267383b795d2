from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from krakenbot.domain.models import normalize_symbol

ORDER_BOOK_DEPTH = 5
RECENT_TRADES_LIMIT = 10
UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class AccountSummary:
    account_type: str
    balances: dict[str, Decimal] = field(default_factory=dict)
    available_margin: Decimal | None = None
    portfolio_value: Decimal | None = None
    unrealized_pnl: Decimal | None = None


@dataclass(frozen=True)
class PositionView:
    symbol: str
    side: str
    size: Decimal
    entry_price: Decimal | None = None
    pnl: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", normalize_symbol(self.symbol))


@dataclass(frozen=True)
class OpenOrderView:
    order_id: str
    symbol: str
    side: str
    order_type: str
    size: Decimal | None = None
    price: Decimal | None = None
    status: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", normalize_symbol(self.symbol))


@dataclass(frozen=True)
class TickerView:
    symbol: str
    last: Decimal | None = None
    bid: Decimal | None = None
    ask: Decimal | None = None
    mark_price: Decimal | None = None
    volume_24h: Decimal | None = None
    funding_rate: Decimal | None = None
    open_interest: Decimal | None = None


@dataclass(frozen=True)
class PriceLevel:
    price: Decimal
    size: Decimal


@dataclass(frozen=True)
class OrderBookView:
    bids: tuple[PriceLevel, ...] = ()
    asks: tuple[PriceLevel, ...] = ()

    def __post_init__(self) -> None:
        if len(self.bids) > ORDER_BOOK_DEPTH or len(self.asks) > ORDER_BOOK_DEPTH:
            raise ValueError(f"order book summary is limited to {ORDER_BOOK_DEPTH} levels")


@dataclass(frozen=True)
class TradeView:
    time: str
    price: Decimal
    size: Decimal
    side: str | None = None


@dataclass(frozen=True)
class MarketContext:
    """Bounded per-cycle summary handed to the decision service.

    ``account`` is always present. Every other slice is ``None`` when its
    upstream read failed; ``unavailable`` names those slices.
    """

    symbol: str
    generated_at: datetime
    account: AccountSummary
    positions: tuple[PositionView, ...] | None = None
    open_orders: tuple[OpenOrderView, ...] | None = None
    ticker: TickerView | None = None
    order_book: OrderBookView | None = None
    recent_trades: tuple[TradeView, ...] | None = None

    def __post_init__(self) -> None:
        if self.generated_at.tzinfo is None or self.generated_at.utcoffset() is None:
            raise ValueError("generated_at must be timezone-aware")
        object.__setattr__(self, "symbol", normalize_symbol(self.symbol))
        if self.recent_trades is not None and len(self.recent_trades) > RECENT_TRADES_LIMIT:
            raise ValueError(f"recent trades are limited to {RECENT_TRADES_LIMIT} entries")

    @property
    def unavailable(self) -> list[str]:
        slices = {
            "positions": self.positions,
            "open_orders": self.open_orders,
            "ticker": self.ticker,
            "order_book": self.order_book,
            "recent_trades": self.recent_trades,
        }
        return [name for name, value in slices.items() if value is None]
