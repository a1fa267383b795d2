from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType

CORRELATION_FIELDS = ("run_id", "cycle_id", "symbol", "order_id")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_correlation: ContextVar[Mapping[str, str]] = ContextVar("krakenbot_correlation", default=_EMPTY)


def get_logging_context() -> dict[str, str]:
    """Correlation fields bound in the current task, unset fields omitted."""
    return dict(_correlation.get())


@contextmanager
def with_logging_context(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for the enclosed block.

    Unknown names and ``None`` values are ignored; inner bindings shadow outer
    ones and are undone on exit.
    """
    bound = {
        name: value
        for name, value in fields.items()
        if name in CORRELATION_FIELDS and value is not None
    }
    if not bound:
        yield
        return
    token = _correlation.set(MappingProxyType({**_correlation.get(), **bound}))
    try:
        yield
    finally:
        _correlation.reset(token)


@contextmanager
def with_cycle_context(
    cycle_id: str, *, run_id: str | None = None, symbol: str | None = None
) -> Iterator[None]:
    with with_logging_context(cycle_id=cycle_id, run_id=run_id, symbol=symbol):
        yield
