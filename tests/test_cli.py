from __future__ import annotations

import base64
import json
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from krakenbot import cli
from krakenbot.domain.market_context import AccountSummary, MarketContext
from krakenbot.domain.models import ExchangeError
from krakenbot.services.command_executor import CommandExecutor
from krakenbot.services.context_aggregator import AccountUnavailableError
from krakenbot.services.cycle_runner import CycleOrchestrator

VALID_SECRET = base64.b64encode(b"kraken-secret").decode()


class FakeApi:
    def __init__(self, *, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    async def _call(self, name: str, arg: Any = None) -> dict[str, Any]:
        self.calls.append((name, arg))
        if name in self.failing:
            raise ExchangeError("boom", endpoint=f"GET /{name}", detail="unavailable")
        return {"result": "success"}

    async def get_instruments(self) -> dict[str, Any]:
        return await self._call("instruments")

    async def get_tickers(self) -> dict[str, Any]:
        return await self._call("tickers")

    async def get_accounts(self) -> dict[str, Any]:
        return await self._call("accounts")

    async def cancel_all_orders_after(self, timeout_seconds: int) -> dict[str, Any]:
        return await self._call("cancel_all_orders_after", timeout_seconds)

    async def close(self) -> None:
        self.closed = True


class FakeAggregator:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail

    async def aggregate(self, symbol: str) -> MarketContext:
        if self.fail:
            raise AccountUnavailableError("account slice unavailable")
        return MarketContext(
            symbol=symbol,
            generated_at=datetime(2025, 1, 1, tzinfo=UTC),
            account=AccountSummary(account_type="flex", balances={"USD": Decimal("10")}),
        )


class FakeDecisionClient:
    def __init__(self) -> None:
        self.closed = False

    async def complete(self, prompt: Any) -> str:
        return '{"function":"doNothing","parameters":{"reason":"flat market"}}'

    async def close(self) -> None:
        self.closed = True


def _fake_runtime(api: FakeApi, *, aggregator_fails: bool = False) -> cli.Runtime:
    decision_client = FakeDecisionClient()
    orchestrator = CycleOrchestrator(
        aggregator=FakeAggregator(fail=aggregator_fails),
        decision_client=decision_client,
        executor=CommandExecutor(api),  # type: ignore[arg-type]
        symbol="PF_XBTUSD",
    )
    return cli.Runtime(
        api=api,  # type: ignore[arg-type]
        decision_client=decision_client,  # type: ignore[arg-type]
        orchestrator=orchestrator,
    )


def test_run_without_credentials_returns_two(capsys) -> None:
    assert cli.main(["run"]) == 2
    assert "configuration error" in capsys.readouterr().out


def test_invalid_environment_returns_two(monkeypatch, capsys) -> None:
    monkeypatch.setenv("CYCLE_SECONDS", "0")

    assert cli.main(["health"]) == 2
    assert "configuration error" in capsys.readouterr().out


def test_run_once_prints_history_entry(monkeypatch, capsys) -> None:
    api = FakeApi()
    runtime = _fake_runtime(api)
    monkeypatch.setattr(cli, "build_runtime", lambda settings, symbol=None: runtime)

    assert cli.main(["run", "--once"]) == 0

    entry = json.loads(capsys.readouterr().out)
    assert entry["outcome"] == "success"
    assert entry["result"] == {"status": "success", "reason": "flat market"}
    assert api.closed is True
    assert runtime.decision_client.closed is True


def test_run_once_reports_aborted_cycle(monkeypatch, capsys) -> None:
    runtime = _fake_runtime(FakeApi(), aggregator_fails=True)
    monkeypatch.setattr(cli, "build_runtime", lambda settings, symbol=None: runtime)

    assert cli.main(["run"]) == 1
    assert "cycle aborted" in capsys.readouterr().out


def test_run_disarms_dead_man_switch_on_exit(monkeypatch) -> None:
    monkeypatch.setenv("DEAD_MAN_SWITCH_SECONDS", "60")
    api = FakeApi()
    monkeypatch.setattr(cli, "build_runtime", lambda settings, symbol=None: _fake_runtime(api))

    assert cli.main(["run", "--once"]) == 0
    assert ("cancel_all_orders_after", 0) in api.calls


def test_run_loop_honours_max_cycles(monkeypatch) -> None:
    runtime = _fake_runtime(FakeApi())
    monkeypatch.setattr(cli, "build_runtime", lambda settings, symbol=None: runtime)

    assert cli.main(["run", "--loop", "--cycle-seconds", "1", "--max-cycles", "1"]) == 0
    assert len(runtime.orchestrator.history) == 1


def test_run_rejects_invalid_cycle_seconds() -> None:
    assert cli.main(["run", "--loop", "--cycle-seconds", "0"]) == 2


def test_health_returns_zero_on_success(monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "build_api", lambda settings: FakeApi())

    assert cli.main(["health"]) == 0
    checks = json.loads(capsys.readouterr().out)
    assert checks == {
        "instruments": {"ok": True},
        "tickers": {"ok": True},
        "accounts": {"ok": True},
    }


def test_health_returns_nonzero_on_private_failure(monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "build_api", lambda settings: FakeApi(failing={"accounts"}))

    assert cli.main(["health"]) == 1
    checks = json.loads(capsys.readouterr().out)
    assert checks["accounts"]["ok"] is False
    assert checks["accounts"]["endpoint"] == "GET /accounts"


def test_dead_man_switch_command_forwards_timeout(monkeypatch) -> None:
    api = FakeApi()
    monkeypatch.setattr(cli, "build_api", lambda settings: api)

    assert cli.main(["dead-man-switch", "--timeout", "60"]) == 0
    assert api.calls == [("cancel_all_orders_after", 60)]
    assert api.closed is True


def test_dead_man_switch_rejects_negative_timeout() -> None:
    assert cli.main(["dead-man-switch", "--timeout", "-1"]) == 2


def test_build_runtime_wires_configured_symbol(monkeypatch) -> None:
    monkeypatch.setenv("KRAKEN_API_KEY", "key")
    monkeypatch.setenv("KRAKEN_API_SECRET", VALID_SECRET)
    monkeypatch.setenv("LLM_API_KEY", "sk-test")
    monkeypatch.setenv("DEAD_MAN_SWITCH_SECONDS", "30")

    runtime = cli.build_runtime(cli.Settings(), symbol="pf_ethusd")

    assert runtime.orchestrator.symbol == "PF_ETHUSD"
    assert runtime.orchestrator.dead_man_switch is runtime.api
    assert runtime.orchestrator.dead_man_switch_seconds == 30


def test_run_once_contains_unexpected_cycle_failure(monkeypatch, capsys) -> None:
    class BrokenAggregator:
        async def aggregate(self, symbol: str) -> MarketContext:
            raise RuntimeError("reducer bug")

    api = FakeApi()
    runtime = _fake_runtime(api)
    runtime.orchestrator.aggregator = BrokenAggregator()
    monkeypatch.setattr(cli, "build_runtime", lambda settings, symbol=None: runtime)

    assert cli.main(["run", "--once"]) == 1
    assert "cycle failed (RuntimeError)" in capsys.readouterr().out
    assert api.closed is True
