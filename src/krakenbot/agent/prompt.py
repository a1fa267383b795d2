from __future__ import annotations

import dataclasses
import json
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from krakenbot.domain.history import HistoryEntry
from krakenbot.domain.market_context import UNAVAILABLE, MarketContext

COMMAND_GRAMMAR = """\
Respond with exactly one JSON object: {"function": <name>, "parameters": {...}}.
Permitted functions:
1. sendOrder: orderType (lmt|mkt|stp|take_profit|ioc|post), symbol, side (buy|sell), size,
   optional limitPrice, stopPrice, reduceOnly, cliOrdId.
2. editOrder: orderId or cliOrdId, optional size, limitPrice, stopPrice.
3. cancelOrder: order_id or cliOrdId.
4. cancelAllOrders: optional symbol.
5. doNothing: reason."""

SYSTEM_PROMPT = (
    "You are an autonomous trading agent for a perpetual futures account. "
    "Study the account, positions, open orders, market snapshot and your own "
    "previous actions, then choose a single action. "
    "Return STRICT JSON only; no prose.\n" + COMMAND_GRAMMAR
)


def _jsonable(value: Any) -> Any:
    if value is None:
        return UNAVAILABLE
    if isinstance(value, Decimal):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return value


def _plain(value: Any) -> Any:
    # Nested optional fields stay null; only whole slices render as "unavailable".
    if value is None:
        return None
    return _jsonable(value)


def market_context_payload(context: MarketContext) -> dict[str, Any]:
    return {
        "symbol": context.symbol,
        "generated_at": context.generated_at.isoformat(),
        "account": _jsonable(context.account),
        "positions": _jsonable(context.positions),
        "open_orders": _jsonable(context.open_orders),
        "ticker": _jsonable(context.ticker),
        "order_book": _jsonable(context.order_book),
        "recent_trades": _jsonable(context.recent_trades),
    }


def compact_text(text: str, *, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    head_len = max(0, max_chars // 2)
    tail_len = max(0, max_chars - head_len)
    omitted = len(text) - head_len - tail_len
    tail = text[-tail_len:] if tail_len > 0 else ""
    return f"{text[:head_len]}...[{omitted} chars omitted]...{tail}"


def history_transcript(history: Sequence[HistoryEntry], *, max_entry_chars: int) -> str:
    if not history:
        return "No previous actions."
    lines = []
    for index, entry in enumerate(history, start=1):
        command = json.dumps(entry.command, sort_keys=True, default=str)
        if entry.error is not None:
            outcome = json.dumps(entry.error, sort_keys=True, default=str)
        else:
            outcome = json.dumps(entry.result, sort_keys=True, default=str)
        lines.append(
            f"#{index} [{entry.recorded_at.isoformat()}] {entry.outcome.value} "
            f"command={compact_text(command, max_chars=max_entry_chars)} "
            f"outcome={compact_text(outcome, max_chars=max_entry_chars)}"
        )
    return "\n".join(lines)


@dataclass(frozen=True)
class DecisionPrompt:
    system: str
    user: str


@dataclass(frozen=True)
class PromptBuilder:
    max_history_entry_chars: int = 2000

    def build(self, context: MarketContext, history: Sequence[HistoryEntry]) -> DecisionPrompt:
        snapshot = json.dumps(market_context_payload(context), indent=2, sort_keys=True)
        unavailable = ", ".join(context.unavailable) or "none"
        user = (
            f"Traded symbol: {context.symbol}\n"
            f"Unavailable data this cycle: {unavailable}\n\n"
            f"Current state:\n{snapshot}\n\n"
            "Your previous actions and their outcomes:\n"
            f"{history_transcript(history, max_entry_chars=self.max_history_entry_chars)}\n\n"
            f"{COMMAND_GRAMMAR}"
        )
        return DecisionPrompt(system=SYSTEM_PROMPT, user=user)
