from __future__ import annotations

import asyncio
import base64
import json
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from krakenbot.adapters.kraken.api import KrakenFuturesApi
from krakenbot.adapters.kraken.rest_client import KrakenRestClient


def _make_api(captured: list[httpx.Request]) -> KrakenFuturesApi:
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"result": "success"})

    rest = KrakenRestClient(
        api_key="api-key",
        api_secret=base64.b64encode(b"s").decode(),
        base_url="https://futures.kraken.com",
        client=httpx.AsyncClient(
            base_url="https://futures.kraken.com", transport=httpx.MockTransport(handler)
        ),
    )
    return KrakenFuturesApi(rest)


@pytest.mark.parametrize(
    ("call", "method", "path", "private"),
    [
        (lambda api: api.get_instruments(), "GET", "/derivatives/api/v3/instruments", False),
        (lambda api: api.get_tickers(), "GET", "/derivatives/api/v3/tickers", False),
        (lambda api: api.get_orderbook("PF_XBTUSD"), "GET", "/derivatives/api/v3/orderbook", False),
        (lambda api: api.get_history("PF_XBTUSD"), "GET", "/derivatives/api/v3/history", False),
        (lambda api: api.get_accounts(), "GET", "/derivatives/api/v3/accounts", True),
        (lambda api: api.get_open_positions(), "GET", "/derivatives/api/v3/openpositions", True),
        (lambda api: api.get_open_orders(), "GET", "/derivatives/api/v3/openorders", True),
        (lambda api: api.get_recent_orders(), "GET", "/derivatives/api/v3/recentorders", True),
        (lambda api: api.get_fills(), "GET", "/derivatives/api/v3/fills", True),
        (lambda api: api.get_transfers(), "GET", "/derivatives/api/v3/transfers", True),
        (lambda api: api.get_notifications(), "GET", "/derivatives/api/v3/notifications", True),
        (lambda api: api.get_account_log(), "GET", "/api/history/v2/account-log", True),
        (
            lambda api: api.send_order({"symbol": "PF_XBTUSD"}),
            "POST",
            "/derivatives/api/v3/sendorder",
            True,
        ),
        (
            lambda api: api.edit_order({"orderId": "o-1"}),
            "POST",
            "/derivatives/api/v3/editorder",
            True,
        ),
        (
            lambda api: api.cancel_order({"order_id": "o-1"}),
            "POST",
            "/derivatives/api/v3/cancelorder",
            True,
        ),
        (
            lambda api: api.cancel_all_orders("PF_XBTUSD"),
            "POST",
            "/derivatives/api/v3/cancelallorders",
            True,
        ),
        (
            lambda api: api.cancel_all_orders_after(60),
            "POST",
            "/derivatives/api/v3/cancelallordersafter",
            True,
        ),
    ],
)
def test_endpoint_catalog(call: Any, method: str, path: str, private: bool) -> None:
    captured: list[httpx.Request] = []
    api = _make_api(captured)

    asyncio.run(call(api))

    request = captured[0]
    assert request.method == method
    assert request.url.path == path
    assert ("Authent" in request.headers) is private


def test_optional_cursor_is_omitted_when_absent() -> None:
    captured: list[httpx.Request] = []
    api = _make_api(captured)

    asyncio.run(api.get_history("PF_XBTUSD"))
    asyncio.run(api.get_history("PF_XBTUSD", last_time="2024-01-01T00:00:00.000Z"))

    assert parse_qs(captured[0].url.query.decode()) == {"symbol": ["PF_XBTUSD"]}
    assert parse_qs(captured[1].url.query.decode()) == {
        "symbol": ["PF_XBTUSD"],
        "lastTime": ["2024-01-01T00:00:00.000Z"],
    }


def test_cancel_all_orders_after_zero_disarms() -> None:
    captured: list[httpx.Request] = []
    api = _make_api(captured)

    asyncio.run(api.cancel_all_orders_after(0))

    assert captured[0].content == b"timeout=0"


def test_cancel_all_orders_without_symbol_sends_empty_body() -> None:
    captured: list[httpx.Request] = []
    api = _make_api(captured)

    asyncio.run(api.cancel_all_orders())

    assert captured[0].content == b""


def test_batch_order_serializes_instructions_as_json_field() -> None:
    captured: list[httpx.Request] = []
    api = _make_api(captured)
    instructions = [
        {"order": "send", "order_tag": "1", "orderType": "lmt", "symbol": "PF_XBTUSD",
         "side": "buy", "size": 1, "limitPrice": 1000.0},
        {"order": "cancel", "order_id": "o-2"},
    ]

    asyncio.run(api.batch_order(instructions))

    form = parse_qs(captured[0].content.decode())
    assert json.loads(form["json"][0]) == {"batchOrder": instructions}
