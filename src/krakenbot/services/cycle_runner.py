from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol
from uuid import uuid4

from krakenbot.agent.contracts import Command
from krakenbot.agent.decision_client import DecisionClient, DecisionServiceError
from krakenbot.agent.prompt import PromptBuilder
from krakenbot.agent.validator import CommandGrammarError, CommandParseError, CommandValidator
from krakenbot.domain.history import DecisionHistory, HistoryEntry, HistoryOutcome
from krakenbot.domain.market_context import MarketContext
from krakenbot.domain.models import ExchangeError, normalize_symbol
from krakenbot.logging_context import with_cycle_context
from krakenbot.services.command_executor import CommandExecutor, OrderCommandPort
from krakenbot.services.context_aggregator import AccountUnavailableError

logger = logging.getLogger(__name__)


class CycleState(StrEnum):
    IDLE = "idle"
    AGGREGATING = "aggregating"
    AWAITING_DECISION = "awaiting_decision"
    VALIDATING = "validating"
    EXECUTING = "executing"
    RECORDING = "recording"


class ContextSource(Protocol):
    async def aggregate(self, symbol: str) -> MarketContext: ...


class DeadManSwitchPort(Protocol):
    async def cancel_all_orders_after(self, timeout_seconds: int) -> dict[str, Any]: ...


class CycleOrchestrator:
    """Runs decision cycles one at a time.

    A cycle walks aggregate -> decide -> validate -> execute -> record. A failed
    account read aborts the cycle without a history entry; every other failure
    ends the cycle with exactly one entry and never reaches the loop.
    """

    def __init__(
        self,
        *,
        aggregator: ContextSource,
        decision_client: DecisionClient,
        executor: CommandExecutor,
        symbol: str,
        validator: CommandValidator | None = None,
        prompt_builder: PromptBuilder | None = None,
        history: DecisionHistory | None = None,
        dead_man_switch: DeadManSwitchPort | None = None,
        dead_man_switch_seconds: int = 0,
        run_id: str | None = None,
        now_fn: Callable[[], datetime] | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.aggregator = aggregator
        self.decision_client = decision_client
        self.executor = executor
        self.symbol = normalize_symbol(symbol)
        self.validator = validator or CommandValidator()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.history = history if history is not None else DecisionHistory()
        self.dead_man_switch = dead_man_switch
        self.dead_man_switch_seconds = dead_man_switch_seconds
        self.run_id = run_id or uuid4().hex
        self.now_fn = now_fn or (lambda: datetime.now(UTC))
        self.sleep_fn = sleep_fn
        self._state = CycleState.IDLE
        self._stop_requested = False

    @classmethod
    def for_exchange(
        cls,
        exchange: OrderCommandPort,
        *,
        aggregator: ContextSource,
        decision_client: DecisionClient,
        symbol: str,
        **kwargs: Any,
    ) -> CycleOrchestrator:
        return cls(
            aggregator=aggregator,
            decision_client=decision_client,
            executor=CommandExecutor(exchange),
            symbol=symbol,
            **kwargs,
        )

    @property
    def state(self) -> CycleState:
        return self._state

    def stop(self) -> None:
        self._stop_requested = True

    async def run_forever(self, *, interval_seconds: float, max_cycles: int | None = None) -> int:
        """Run cycles back to back, sleeping ``interval_seconds`` after each one completes."""
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if max_cycles is not None and max_cycles < 1:
            raise ValueError("max_cycles must be >= 1")
        self._stop_requested = False
        cycles = 0
        logger.info(
            "loop_runner_started",
            extra={
                "extra": {
                    "symbol": self.symbol,
                    "interval_seconds": interval_seconds,
                    "max_cycles": max_cycles,
                }
            },
        )
        while True:
            cycles += 1
            try:
                await self.run_one_cycle()
            except Exception as exc:  # noqa: BLE001
                logger.exception(
                    "loop_cycle_failed",
                    extra={"extra": {"cycle": cycles, "error_type": type(exc).__name__}},
                )
            if self._stop_requested:
                logger.warning("loop_runner_stop_requested", extra={"extra": {"cycle": cycles}})
                return cycles
            if max_cycles is not None and cycles >= max_cycles:
                logger.info("loop_runner_completed", extra={"extra": {"cycles": cycles}})
                return cycles
            await self.sleep_fn(interval_seconds)

    async def run_one_cycle(self) -> HistoryEntry | None:
        cycle_id = uuid4().hex
        with with_cycle_context(cycle_id, run_id=self.run_id, symbol=self.symbol):
            try:
                return await self._run_cycle(cycle_id)
            finally:
                self._state = CycleState.IDLE

    async def _run_cycle(self, cycle_id: str) -> HistoryEntry | None:
        await self._arm_dead_man_switch()

        self._transition(CycleState.AGGREGATING)
        try:
            context = await self.aggregator.aggregate(self.symbol)
        except AccountUnavailableError as exc:
            logger.warning("cycle_aborted", extra={"extra": {"reason": str(exc)}})
            return None

        self._transition(CycleState.AWAITING_DECISION)
        prompt = self.prompt_builder.build(context, self.history.entries())
        try:
            raw = await self.decision_client.complete(prompt)
        except DecisionServiceError as exc:
            return self._record(
                cycle_id,
                HistoryOutcome.PARSE_ERROR,
                error={"type": type(exc).__name__, "message": str(exc)},
            )

        self._transition(CycleState.VALIDATING)
        try:
            command = self.validator.validate(raw)
        except CommandParseError as exc:
            return self._record(
                cycle_id,
                HistoryOutcome.PARSE_ERROR,
                error={"type": type(exc).__name__, "message": str(exc)},
                raw_response=raw,
            )
        except CommandGrammarError as exc:
            return self._record(
                cycle_id,
                HistoryOutcome.EXECUTION_ERROR,
                command=exc.envelope.model_dump(mode="json"),
                error=exc.as_dict(),
                raw_response=raw,
            )

        self._transition(CycleState.EXECUTING)
        command_payload = self._command_payload(command)
        try:
            result = await self.executor.execute(command)
        except ExchangeError as exc:
            return self._record(
                cycle_id,
                HistoryOutcome.EXECUTION_ERROR,
                command=command_payload,
                error=exc.as_dict(),
            )
        return self._record(
            cycle_id,
            HistoryOutcome.SUCCESS,
            command=command_payload,
            result=result,
        )

    async def _arm_dead_man_switch(self) -> None:
        if self.dead_man_switch is None or self.dead_man_switch_seconds <= 0:
            return
        try:
            await self.dead_man_switch.cancel_all_orders_after(self.dead_man_switch_seconds)
        except ExchangeError as exc:
            logger.warning(
                "dead_man_switch_arm_failed",
                extra={"extra": {"endpoint": exc.endpoint, "detail": exc.detail}},
            )

    @staticmethod
    def _command_payload(command: Command) -> dict[str, Any]:
        return command.model_dump(mode="json", by_alias=True, exclude_none=True)

    def _record(
        self,
        cycle_id: str,
        outcome: HistoryOutcome,
        *,
        command: dict[str, Any] | None = None,
        result: Any = None,
        error: dict[str, Any] | None = None,
        raw_response: str | None = None,
    ) -> HistoryEntry:
        self._transition(CycleState.RECORDING)
        entry = HistoryEntry(
            cycle_id=cycle_id,
            recorded_at=self.now_fn(),
            outcome=outcome,
            command=command,
            result=result,
            error=error,
            raw_response=raw_response,
        )
        self.history.append(entry)
        log = logger.info if outcome is HistoryOutcome.SUCCESS else logger.warning
        log(
            "cycle_recorded",
            extra={
                "extra": {
                    "outcome": outcome.value,
                    "function": (command or {}).get("function"),
                    "error": error,
                    "history_size": len(self.history),
                }
            },
        )
        return entry

    def _transition(self, state: CycleState) -> None:
        logger.debug(
            "cycle_state_transition",
            extra={"extra": {"from": self._state.value, "to": state.value}},
        )
        self._state = state
