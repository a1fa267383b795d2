from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

from krakenbot.domain.market_context import (
    ORDER_BOOK_DEPTH,
    RECENT_TRADES_LIMIT,
    AccountSummary,
    MarketContext,
    OpenOrderView,
    OrderBookView,
    PositionView,
    PriceLevel,
    TickerView,
    TradeView,
)
from krakenbot.domain.models import ExchangeError, normalize_symbol, to_decimal

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MarketDataSource(Protocol):
    async def get_accounts(self) -> dict[str, Any]: ...

    async def get_open_positions(self) -> dict[str, Any]: ...

    async def get_open_orders(self) -> dict[str, Any]: ...

    async def get_tickers(self) -> dict[str, Any]: ...

    async def get_orderbook(self, symbol: str) -> dict[str, Any]: ...

    async def get_history(self, symbol: str, last_time: str | None = None) -> dict[str, Any]: ...


class AccountUnavailableError(RuntimeError):
    """Account balances could not be read; no decision is possible this cycle."""


class PayloadShapeError(ValueError):
    pass


def _require_list(payload: Mapping[str, Any], key: str) -> list[Any]:
    value = payload.get(key)
    if not isinstance(value, list):
        raise PayloadShapeError(f"expected list under {key!r}")
    return value


def reduce_account(payload: Mapping[str, Any]) -> AccountSummary:
    accounts = payload.get("accounts")
    if not isinstance(accounts, dict) or not accounts:
        raise PayloadShapeError("accounts payload missing")

    flex = accounts.get("flex")
    if isinstance(flex, dict):
        currencies = flex.get("currencies") if isinstance(flex.get("currencies"), dict) else {}
        balances = {
            str(code).upper(): qty
            for code, row in currencies.items()
            if isinstance(row, dict) and (qty := to_decimal(row.get("quantity"))) is not None
        }
        return AccountSummary(
            account_type="flex",
            balances=balances,
            available_margin=to_decimal(flex.get("availableMargin")),
            portfolio_value=to_decimal(flex.get("portfolioValue")),
            unrealized_pnl=to_decimal(flex.get("totalUnrealized")),
        )

    for name, account in accounts.items():
        if not isinstance(account, dict) or account.get("type") != "marginAccount":
            continue
        auxiliary = account.get("auxiliary") if isinstance(account.get("auxiliary"), dict) else {}
        return AccountSummary(
            account_type=str(name),
            balances=_balances(account),
            available_margin=to_decimal(auxiliary.get("af")),
            portfolio_value=to_decimal(auxiliary.get("pv")),
            unrealized_pnl=to_decimal(auxiliary.get("pnl")),
        )

    cash = accounts.get("cash")
    if isinstance(cash, dict):
        return AccountSummary(account_type="cash", balances=_balances(cash))
    raise PayloadShapeError("no usable account in accounts payload")


def _balances(account: Mapping[str, Any]) -> dict[str, Any]:
    raw = account.get("balances")
    if not isinstance(raw, dict):
        return {}
    return {
        str(code).upper(): amount
        for code, value in raw.items()
        if (amount := to_decimal(value)) is not None
    }


def reduce_positions(payload: Mapping[str, Any]) -> tuple[PositionView, ...]:
    rows = _require_list(payload, "openPositions")
    positions = []
    for row in rows:
        if not isinstance(row, dict) or to_decimal(row.get("size")) is None:
            continue
        positions.append(
            PositionView(
                symbol=str(row.get("symbol", "")),
                side=str(row.get("side", "")),
                size=to_decimal(row.get("size")),
                entry_price=to_decimal(row.get("price")),
                pnl=to_decimal(row.get("pnl", row.get("unrealizedPnl"))),
            )
        )
    return tuple(positions)


def reduce_open_orders(payload: Mapping[str, Any]) -> tuple[OpenOrderView, ...]:
    rows = _require_list(payload, "openOrders")
    orders = []
    for row in rows:
        if not isinstance(row, dict) or not row.get("order_id"):
            continue
        orders.append(
            OpenOrderView(
                order_id=str(row["order_id"]),
                symbol=str(row.get("symbol", "")),
                side=str(row.get("side", "")),
                order_type=str(row.get("orderType", "")),
                size=to_decimal(row.get("unfilledSize", row.get("size"))),
                price=to_decimal(row.get("limitPrice", row.get("stopPrice"))),
                status=str(row["status"]) if row.get("status") is not None else None,
            )
        )
    return tuple(orders)


def reduce_ticker(payload: Mapping[str, Any], symbol: str) -> TickerView | None:
    wanted = normalize_symbol(symbol)
    for row in _require_list(payload, "tickers"):
        if not isinstance(row, dict) or normalize_symbol(str(row.get("symbol", ""))) != wanted:
            continue
        return TickerView(
            symbol=wanted,
            last=to_decimal(row.get("last")),
            bid=to_decimal(row.get("bid")),
            ask=to_decimal(row.get("ask")),
            mark_price=to_decimal(row.get("markPrice")),
            volume_24h=to_decimal(row.get("vol24h")),
            funding_rate=to_decimal(row.get("fundingRate")),
            open_interest=to_decimal(row.get("openInterest")),
        )
    return None


def _levels(rows: Any, *, descending: bool, depth: int) -> tuple[PriceLevel, ...]:
    if not isinstance(rows, list):
        raise PayloadShapeError("order book side must be a list")
    levels = []
    for row in rows:
        if not isinstance(row, (list, tuple)) or len(row) < 2:
            continue
        price, size = to_decimal(row[0]), to_decimal(row[1])
        if price is None or size is None:
            continue
        levels.append(PriceLevel(price=price, size=size))
    levels.sort(key=lambda level: level.price, reverse=descending)
    return tuple(levels[:depth])


def reduce_order_book(
    payload: Mapping[str, Any], *, depth: int = ORDER_BOOK_DEPTH
) -> OrderBookView:
    book = payload.get("orderBook")
    if not isinstance(book, dict):
        raise PayloadShapeError("orderBook payload missing")
    return OrderBookView(
        bids=_levels(book.get("bids", []), descending=True, depth=depth),
        asks=_levels(book.get("asks", []), descending=False, depth=depth),
    )


def reduce_trades(
    payload: Mapping[str, Any], *, limit: int = RECENT_TRADES_LIMIT
) -> tuple[TradeView, ...]:
    rows = [row for row in _require_list(payload, "history") if isinstance(row, dict)]
    rows.sort(key=lambda row: str(row.get("time", "")), reverse=True)
    trades = []
    for row in rows:
        price, size = to_decimal(row.get("price")), to_decimal(row.get("size"))
        if price is None or size is None:
            continue
        side = row.get("side")
        trades.append(
            TradeView(
                time=str(row.get("time", "")),
                price=price,
                size=size,
                side=str(side) if side is not None else None,
            )
        )
        if len(trades) >= limit:
            break
    return tuple(trades)


class ContextAggregator:
    """Concurrent, failure-tolerant reads reduced to a bounded ``MarketContext``."""

    def __init__(
        self,
        source: MarketDataSource,
        *,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.now_fn = now_fn or (lambda: datetime.now(UTC))

    async def aggregate(self, symbol: str) -> MarketContext:
        symbol = normalize_symbol(symbol)
        (
            accounts_raw,
            positions_raw,
            orders_raw,
            tickers_raw,
            book_raw,
            history_raw,
        ) = await asyncio.gather(
            self._guarded("account", self.source.get_accounts()),
            self._guarded("positions", self.source.get_open_positions()),
            self._guarded("open_orders", self.source.get_open_orders()),
            self._guarded("ticker", self.source.get_tickers()),
            self._guarded("order_book", self.source.get_orderbook(symbol)),
            self._guarded("recent_trades", self.source.get_history(symbol)),
        )

        account = self._reduce("account", accounts_raw, reduce_account)
        if account is None:
            raise AccountUnavailableError("account read failed; cycle aborted")

        return MarketContext(
            symbol=symbol,
            generated_at=self.now_fn(),
            account=account,
            positions=self._reduce("positions", positions_raw, reduce_positions),
            open_orders=self._reduce("open_orders", orders_raw, reduce_open_orders),
            ticker=self._reduce("ticker", tickers_raw, lambda p: reduce_ticker(p, symbol)),
            order_book=self._reduce("order_book", book_raw, reduce_order_book),
            recent_trades=self._reduce("recent_trades", history_raw, reduce_trades),
        )

    async def _guarded(self, name: str, call: Awaitable[dict[str, Any]]) -> dict[str, Any] | None:
        try:
            return await call
        except ExchangeError as exc:
            logger.warning(
                "context_slice_unavailable",
                extra={"extra": {"slice": name, "endpoint": exc.endpoint, "detail": exc.detail}},
            )
            return None

    @staticmethod
    def _reduce(
        name: str,
        payload: dict[str, Any] | None,
        reducer: Callable[[dict[str, Any]], T],
    ) -> T | None:
        if payload is None:
            return None
        try:
            return reducer(payload)
        except (PayloadShapeError, TypeError, ValueError) as exc:
            logger.warning(
                "context_slice_malformed",
                extra={"extra": {"slice": name, "error": str(exc)}},
            )
            return None
