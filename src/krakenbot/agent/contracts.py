from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from krakenbot.domain.models import OrderSide, OrderType, normalize_symbol


class CommandName(StrEnum):
    SEND_ORDER = "sendOrder"
    EDIT_ORDER = "editOrder"
    CANCEL_ORDER = "cancelOrder"
    CANCEL_ALL_ORDERS = "cancelAllOrders"
    DO_NOTHING = "doNothing"


class _Parameters(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    def to_venue_params(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SendOrderParameters(_Parameters):
    order_type: OrderType = Field(alias="orderType")
    symbol: str
    side: OrderSide
    size: Decimal
    limit_price: Decimal | None = Field(default=None, alias="limitPrice")
    stop_price: Decimal | None = Field(default=None, alias="stopPrice")
    reduce_only: bool | None = Field(default=None, alias="reduceOnly")
    cli_ord_id: str | None = Field(default=None, alias="cliOrdId", max_length=100)

    @field_validator("symbol")
    @classmethod
    def canonical_symbol(cls, value: str) -> str:
        return normalize_symbol(value)

    @field_validator("side", "order_type", mode="before")
    @classmethod
    def lower_case(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class EditOrderParameters(_Parameters):
    order_id: str | None = Field(default=None, alias="orderId")
    cli_ord_id: str | None = Field(default=None, alias="cliOrdId")
    size: Decimal | None = None
    limit_price: Decimal | None = Field(default=None, alias="limitPrice")
    stop_price: Decimal | None = Field(default=None, alias="stopPrice")

    @model_validator(mode="after")
    def require_order_reference(self) -> EditOrderParameters:
        if not self.order_id and not self.cli_ord_id:
            raise ValueError("editOrder requires orderId or cliOrdId")
        return self


class CancelOrderParameters(_Parameters):
    order_id: str | None = None
    cli_ord_id: str | None = Field(default=None, alias="cliOrdId")

    @model_validator(mode="after")
    def require_order_reference(self) -> CancelOrderParameters:
        if not self.order_id and not self.cli_ord_id:
            raise ValueError("cancelOrder requires order_id or cliOrdId")
        return self


class CancelAllOrdersParameters(_Parameters):
    symbol: str | None = None

    @field_validator("symbol")
    @classmethod
    def canonical_symbol(cls, value: str | None) -> str | None:
        return normalize_symbol(value) if value else None


class DoNothingParameters(_Parameters):
    reason: str = ""


class SendOrderCommand(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    function: Literal["sendOrder"]
    parameters: SendOrderParameters


class EditOrderCommand(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    function: Literal["editOrder"]
    parameters: EditOrderParameters


class CancelOrderCommand(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    function: Literal["cancelOrder"]
    parameters: CancelOrderParameters


class CancelAllOrdersCommand(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    function: Literal["cancelAllOrders"]
    parameters: CancelAllOrdersParameters = Field(default_factory=CancelAllOrdersParameters)


class DoNothingCommand(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    function: Literal["doNothing"]
    parameters: DoNothingParameters = Field(default_factory=DoNothingParameters)


Command = Annotated[
    SendOrderCommand
    | EditOrderCommand
    | CancelOrderCommand
    | CancelAllOrdersCommand
    | DoNothingCommand,
    Field(discriminator="function"),
]


class CommandEnvelope(BaseModel):
    """Loose outer shape of a decision response, before the tag is checked."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    function: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
