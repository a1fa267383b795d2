from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from krakenbot.adapters.kraken.api import KrakenFuturesApi
from krakenbot.adapters.kraken.rest_client import KrakenRestClient, RestReliabilityConfig
from krakenbot.agent.decision_client import ChatCompletionsDecisionClient
from krakenbot.agent.prompt import PromptBuilder
from krakenbot.config import Settings
from krakenbot.domain.models import ConfigurationError, ExchangeError
from krakenbot.logging_context import with_logging_context
from krakenbot.logging_utils import setup_logging
from krakenbot.services.context_aggregator import ContextAggregator
from krakenbot.services.cycle_runner import CycleOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    api: KrakenFuturesApi
    decision_client: ChatCompletionsDecisionClient
    orchestrator: CycleOrchestrator

    async def close(self) -> None:
        await self.api.close()
        await self.decision_client.close()


def build_api(settings: Settings) -> KrakenFuturesApi:
    api_key, api_secret = settings.require_exchange_credentials()
    timeout = settings.http_timeout_seconds
    rest = KrakenRestClient(
        api_key=api_key,
        api_secret=api_secret,
        base_url=settings.kraken_base_url,
        reliability=RestReliabilityConfig(
            connect_timeout_seconds=timeout,
            read_timeout_seconds=timeout,
            write_timeout_seconds=timeout,
            pool_timeout_seconds=timeout,
        ),
    )
    return KrakenFuturesApi(rest)


def build_runtime(settings: Settings, *, symbol: str | None = None) -> Runtime:
    llm_api_key = settings.require_llm_api_key()
    api = build_api(settings)
    decision_client = ChatCompletionsDecisionClient(
        api_key=llm_api_key,
        base_url=settings.llm_base_url,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout_seconds=settings.llm_timeout_seconds,
    )
    orchestrator = CycleOrchestrator.for_exchange(
        api,
        aggregator=ContextAggregator(api),
        decision_client=decision_client,
        symbol=symbol or settings.trading_symbol,
        prompt_builder=PromptBuilder(max_history_entry_chars=settings.history_entry_max_chars),
        dead_man_switch=api,
        dead_man_switch_seconds=settings.dead_man_switch_seconds,
        run_id=uuid4().hex,
    )
    return Runtime(api=api, decision_client=decision_client, orchestrator=orchestrator)


async def run_agent(
    settings: Settings,
    *,
    loop_enabled: bool,
    cycle_seconds: int,
    max_cycles: int | None,
    symbol: str | None,
) -> int:
    runtime = build_runtime(settings, symbol=symbol)
    orchestrator = runtime.orchestrator
    try:
        with with_logging_context(run_id=orchestrator.run_id, symbol=orchestrator.symbol):
            if not loop_enabled:
                try:
                    entry = await orchestrator.run_one_cycle()
                except Exception as exc:  # noqa: BLE001
                    logger.exception(
                        "single_cycle_failed",
                        extra={"extra": {"error_type": type(exc).__name__}},
                    )
                    print(f"run: cycle failed ({type(exc).__name__})")
                    return 1
                if entry is None:
                    print("run: cycle aborted (account unavailable)")
                    return 1
                print(json.dumps(entry.as_dict(), default=str, indent=2))
                return 0
            await orchestrator.run_forever(interval_seconds=cycle_seconds, max_cycles=max_cycles)
            return 0
    finally:
        if settings.dead_man_switch_seconds > 0:
            try:
                await runtime.api.cancel_all_orders_after(0)
            except ExchangeError as exc:
                logger.warning(
                    "dead_man_switch_disarm_failed",
                    extra={"extra": {"endpoint": exc.endpoint, "detail": exc.detail}},
                )
        await runtime.close()


async def run_health(settings: Settings) -> int:
    api = build_api(settings)
    checks: dict[str, Any] = {}
    try:
        for name, call in (
            ("instruments", api.get_instruments),
            ("tickers", api.get_tickers),
            ("accounts", api.get_accounts),
        ):
            try:
                payload = await call()
            except ExchangeError as exc:
                checks[name] = {"ok": False, **exc.as_dict()}
                continue
            checks[name] = {"ok": payload.get("result", "success") == "success"}
    finally:
        await api.close()
    print(json.dumps(checks, indent=2, default=str))
    return 0 if all(check["ok"] for check in checks.values()) else 1


async def run_dead_man_switch(settings: Settings, *, timeout_seconds: int) -> int:
    api = build_api(settings)
    try:
        payload = await api.cancel_all_orders_after(timeout_seconds)
    except ExchangeError as exc:
        print(json.dumps(exc.as_dict(), indent=2, default=str))
        return 1
    finally:
        await api.close()
    print(json.dumps(payload, indent=2, default=str))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="krakenbot",
        epilog="Configuration is read from environment variables (or .env).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one decision cycle")
    run_parser.add_argument("--loop", action="store_true", help="Run continuously")
    run_parser.add_argument("--once", action="store_true", help="Alias for single cycle")
    run_parser.add_argument(
        "--cycle-seconds",
        type=int,
        default=None,
        help="Seconds to wait after a cycle completes (default: CYCLE_SECONDS)",
    )
    run_parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Maximum cycles in --loop mode (default: MAX_CYCLES or infinite)",
    )
    run_parser.add_argument("--symbol", default=None, help="Override TRADING_SYMBOL")

    subparsers.add_parser("health", help="Check public and private exchange connectivity")

    dms_parser = subparsers.add_parser(
        "dead-man-switch", help="Arm (timeout > 0) or disarm (timeout 0) cancel-all-after"
    )
    dms_parser.add_argument("--timeout", type=int, required=True, help="Timeout in seconds")

    args = parser.parse_args(argv)
    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"configuration error: {exc}")
        return 2
    setup_logging(settings.log_level)
    logger.info(
        "runtime_prepared",
        extra={
            "extra": {
                "command": args.command,
                "symbol": settings.trading_symbol,
                "base_url": settings.kraken_base_url,
                "pid": os.getpid(),
            }
        },
    )

    try:
        if args.command == "run":
            cycle_seconds = (
                args.cycle_seconds if args.cycle_seconds is not None else settings.cycle_seconds
            )
            max_cycles = args.max_cycles if args.max_cycles is not None else settings.max_cycles
            if cycle_seconds <= 0:
                print("cycle-seconds must be > 0")
                return 2
            if max_cycles is not None and max_cycles < 1:
                print("max-cycles must be >= 1")
                return 2
            return asyncio.run(
                run_agent(
                    settings,
                    loop_enabled=args.loop and not args.once,
                    cycle_seconds=cycle_seconds,
                    max_cycles=max_cycles,
                    symbol=args.symbol,
                )
            )
        if args.command == "health":
            return asyncio.run(run_health(settings))
        if args.command == "dead-man-switch":
            if args.timeout < 0:
                print("timeout must be >= 0")
                return 2
            return asyncio.run(run_dead_man_switch(settings, timeout_seconds=args.timeout))
    except ConfigurationError as exc:
        print(f"configuration error: {exc}")
        return 2
    except KeyboardInterrupt:
        print(f"{args.command}: interrupted, shutting down cleanly")
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
