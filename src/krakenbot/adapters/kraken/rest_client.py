from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from time import monotonic
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from krakenbot.adapters.kraken.instrumentation import MetricsSink, OTelMetricsSink
from krakenbot.adapters.kraken_auth import NonceGenerator, build_auth_headers
from krakenbot.domain.models import ExchangeError

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
# Private GETs carry a JSON content type without a body; the venue expects it.
PRIVATE_GET_CONTENT_TYPE = "application/json"


class HttpMethod(StrEnum):
    GET = "GET"
    POST = "POST"


class RestErrorKind(StrEnum):
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CLIENT = "client"
    PAYLOAD = "payload"
    UNEXPECTED_STATUS = "unexpected_status"


@dataclass(frozen=True)
class RestReliabilityConfig:
    connect_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 10.0
    write_timeout_seconds: float = 10.0
    pool_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class PreparedRequest:
    method: HttpMethod
    path: str
    url: str
    body: str | None
    headers: dict[str, str]


def _encode_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def encode_params(params: dict[str, Any] | None) -> str:
    """Form/query encoding; ``None`` values are dropped."""
    if not params:
        return ""
    pairs = [(key, _encode_value(value)) for key, value in params.items() if value is not None]
    return urlencode(pairs, safe="", quote_via=quote)


class KrakenRestClient:
    def __init__(
        self,
        *,
        api_key: str,
        api_secret: str,
        base_url: str,
        nonce_generator: NonceGenerator | None = None,
        metrics: MetricsSink | None = None,
        reliability: RestReliabilityConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.nonce_generator = nonce_generator or NonceGenerator()
        self.metrics = metrics or OTelMetricsSink()
        self.reliability = reliability or RestReliabilityConfig()
        timeout = httpx.Timeout(
            connect=self.reliability.connect_timeout_seconds,
            read=self.reliability.read_timeout_seconds,
            write=self.reliability.write_timeout_seconds,
            pool=self.reliability.pool_timeout_seconds,
        )
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> KrakenRestClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def prepare(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        is_private: bool,
    ) -> PreparedRequest:
        http_method = HttpMethod(method.upper())
        encoded = encode_params(params)
        headers: dict[str, str] = {}
        url = path
        body: str | None = None

        if http_method is HttpMethod.GET:
            if encoded:
                url = f"{path}?{encoded}"
            signed_body = ""
            if is_private:
                headers["Content-Type"] = PRIVATE_GET_CONTENT_TYPE
        else:
            body = encoded
            signed_body = encoded
            headers["Content-Type"] = FORM_CONTENT_TYPE

        if is_private:
            headers.update(
                build_auth_headers(
                    self.api_key,
                    self.api_secret,
                    path=path,
                    nonce=self.nonce_generator.next_nonce(),
                    body=signed_body,
                )
            )
        return PreparedRequest(
            method=http_method, path=path, url=url, body=body, headers=headers
        )

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        is_private: bool = False,
    ) -> dict[str, Any]:
        prepared = self.prepare(method, path, params, is_private=is_private)
        endpoint = f"{prepared.method.value} {path}"
        started = monotonic()
        try:
            response = await self._client.request(
                prepared.method.value,
                prepared.url,
                content=prepared.body,
                headers=prepared.headers,
            )
        except httpx.RequestError as exc:
            self.metrics.inc("rest_network_errors")
            raise self._failure(
                RestErrorKind.NETWORK, endpoint=endpoint, detail=str(exc) or type(exc).__name__
            ) from exc
        finally:
            self.metrics.observe_ms(
                f"rest_{prepared.method.value.lower()}_latency",
                (monotonic() - started) * 1000,
            )

        if not response.is_success:
            raise self._http_failure(response, endpoint=endpoint)

        try:
            payload = response.json()
        except ValueError as exc:
            raise self._failure(
                RestErrorKind.PAYLOAD,
                endpoint=endpoint,
                detail=f"non-JSON response: {response.text[:300]}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise self._failure(
                RestErrorKind.PAYLOAD,
                endpoint=endpoint,
                detail="Kraken payload must be a JSON object",
                status_code=response.status_code,
            )
        return payload

    def _http_failure(self, response: httpx.Response, *, endpoint: str) -> ExchangeError:
        kind = RestErrorKind.CLIENT
        if response.status_code < 400:
            kind = RestErrorKind.UNEXPECTED_STATUS
        elif response.status_code == 429:
            kind = RestErrorKind.RATE_LIMIT
            self.metrics.inc("rest_rate_limited")
        elif response.status_code >= 500:
            kind = RestErrorKind.SERVER
        detail: Any
        try:
            detail = response.json()
        except ValueError:
            detail = response.text[:300]
        return self._failure(
            kind, endpoint=endpoint, detail=detail, status_code=response.status_code
        )

    def _failure(
        self,
        kind: RestErrorKind,
        *,
        endpoint: str,
        detail: Any,
        status_code: int | None = None,
    ) -> ExchangeError:
        self.metrics.inc("rest_errors", attrs={"kind": kind.value})
        logger.warning(
            "kraken_request_failed",
            extra={
                "extra": {
                    "endpoint": endpoint,
                    "kind": kind.value,
                    "status_code": status_code,
                    "detail": detail,
                }
            },
        )
        return ExchangeError(
            f"Kraken REST error kind={kind.value}",
            endpoint=endpoint,
            detail=detail,
            status_code=status_code,
        )
