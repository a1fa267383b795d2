from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from krakenbot.adapters.kraken.rest_client import KrakenRestClient

API_PREFIX = "/derivatives/api/v3"
ACCOUNT_LOG_PATH = "/api/history/v2/account-log"


class KrakenFuturesApi:
    """Typed catalog of Kraken Futures v3 endpoints.

    Each method is one parameterized ``KrakenRestClient.request`` call; no
    business logic lives here.
    """

    def __init__(self, rest: KrakenRestClient) -> None:
        self.rest = rest

    async def close(self) -> None:
        await self.rest.close()

    async def _get(
        self, path: str, params: dict[str, Any] | None = None, *, private: bool = False
    ) -> dict[str, Any]:
        return await self.rest.request("GET", path, params, is_private=private)

    async def _post(self, path: str, params: Mapping[str, Any]) -> dict[str, Any]:
        return await self.rest.request("POST", path, dict(params), is_private=True)

    # public market data

    async def get_instruments(self) -> dict[str, Any]:
        return await self._get(f"{API_PREFIX}/instruments")

    async def get_tickers(self) -> dict[str, Any]:
        return await self._get(f"{API_PREFIX}/tickers")

    async def get_orderbook(self, symbol: str) -> dict[str, Any]:
        return await self._get(f"{API_PREFIX}/orderbook", {"symbol": symbol})

    async def get_history(self, symbol: str, last_time: str | None = None) -> dict[str, Any]:
        return await self._get(f"{API_PREFIX}/history", {"symbol": symbol, "lastTime": last_time})

    # account

    async def get_accounts(self) -> dict[str, Any]:
        return await self._get(f"{API_PREFIX}/accounts", private=True)

    async def get_open_positions(self) -> dict[str, Any]:
        return await self._get(f"{API_PREFIX}/openpositions", private=True)

    async def get_open_orders(self) -> dict[str, Any]:
        return await self._get(f"{API_PREFIX}/openorders", private=True)

    async def get_recent_orders(self, symbol: str | None = None) -> dict[str, Any]:
        return await self._get(f"{API_PREFIX}/recentorders", {"symbol": symbol}, private=True)

    async def get_fills(self, last_fill_time: str | None = None) -> dict[str, Any]:
        return await self._get(
            f"{API_PREFIX}/fills", {"lastFillTime": last_fill_time}, private=True
        )

    async def get_transfers(self, last_transfer_time: str | None = None) -> dict[str, Any]:
        return await self._get(
            f"{API_PREFIX}/transfers", {"lastTransferTime": last_transfer_time}, private=True
        )

    async def get_notifications(self) -> dict[str, Any]:
        return await self._get(f"{API_PREFIX}/notifications", private=True)

    async def get_account_log(self) -> dict[str, Any]:
        return await self._get(ACCOUNT_LOG_PATH, private=True)

    # trading

    async def send_order(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return await self._post(f"{API_PREFIX}/sendorder", params)

    async def edit_order(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return await self._post(f"{API_PREFIX}/editorder", params)

    async def cancel_order(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return await self._post(f"{API_PREFIX}/cancelorder", params)

    async def cancel_all_orders(self, symbol: str | None = None) -> dict[str, Any]:
        return await self._post(f"{API_PREFIX}/cancelallorders", {"symbol": symbol})

    async def cancel_all_orders_after(self, timeout_seconds: int) -> dict[str, Any]:
        """Arm the venue-side dead-man's switch; ``0`` disarms it."""
        return await self._post(
            f"{API_PREFIX}/cancelallordersafter", {"timeout": int(timeout_seconds)}
        )

    async def batch_order(self, instructions: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
        payload = json.dumps({"batchOrder": [dict(item) for item in instructions]})
        return await self._post(f"{API_PREFIX}/batchorder", {"json": payload})
