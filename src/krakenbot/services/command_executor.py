from __future__ import annotations

import logging
from typing import Any, Protocol

from krakenbot.agent.contracts import (
    CancelAllOrdersCommand,
    CancelOrderCommand,
    Command,
    DoNothingCommand,
    EditOrderCommand,
    SendOrderCommand,
)
from krakenbot.logging_context import with_logging_context

logger = logging.getLogger(__name__)


class OrderCommandPort(Protocol):
    async def send_order(self, params: dict[str, Any]) -> dict[str, Any]: ...

    async def edit_order(self, params: dict[str, Any]) -> dict[str, Any]: ...

    async def cancel_order(self, params: dict[str, Any]) -> dict[str, Any]: ...

    async def cancel_all_orders(self, symbol: str | None = None) -> dict[str, Any]: ...


class CommandExecutor:
    """Maps each validated command to exactly one exchange call.

    ``ExchangeError`` propagates to the caller. Venue rejections that arrive in
    a 2xx body are returned unchanged as the result.
    """

    def __init__(self, exchange: OrderCommandPort) -> None:
        self.exchange = exchange

    async def execute(self, command: Command) -> dict[str, Any]:
        if isinstance(command, DoNothingCommand):
            return {"status": "success", "reason": command.parameters.reason}
        if isinstance(command, SendOrderCommand):
            result = await self.exchange.send_order(command.parameters.to_venue_params())
        elif isinstance(command, (EditOrderCommand, CancelOrderCommand)):
            params = command.parameters
            with with_logging_context(order_id=params.order_id or params.cli_ord_id):
                if isinstance(command, EditOrderCommand):
                    result = await self.exchange.edit_order(params.to_venue_params())
                else:
                    result = await self.exchange.cancel_order(params.to_venue_params())
        elif isinstance(command, CancelAllOrdersCommand):
            result = await self.exchange.cancel_all_orders(command.parameters.symbol)
        else:
            raise TypeError(f"unsupported command type: {type(command).__name__}")
        logger.info(
            "command_executed",
            extra={"extra": {"function": command.function, "result": result.get("result")}},
        )
        return result
