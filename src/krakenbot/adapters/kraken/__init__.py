from .api import KrakenFuturesApi
from .instrumentation import MetricsSink, OTelMetricsSink
from .rest_client import (
    HttpMethod,
    KrakenRestClient,
    PreparedRequest,
    RestErrorKind,
    RestReliabilityConfig,
    encode_params,
)

__all__ = [
    "HttpMethod",
    "KrakenFuturesApi",
    "KrakenRestClient",
    "MetricsSink",
    "OTelMetricsSink",
    "PreparedRequest",
    "RestErrorKind",
    "RestReliabilityConfig",
    "encode_params",
]
