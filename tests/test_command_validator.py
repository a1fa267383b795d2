from __future__ import annotations

from decimal import Decimal

import pytest

from krakenbot.agent.contracts import (
    CancelAllOrdersCommand,
    CancelOrderCommand,
    DoNothingCommand,
    EditOrderCommand,
    SendOrderCommand,
)
from krakenbot.agent.validator import (
    CommandParseError,
    CommandValidator,
    InvalidCommandError,
    UnknownCommandError,
    extract_json_text,
)


def test_send_order_is_parsed_into_typed_command() -> None:
    command = CommandValidator().validate(
        '{"function":"sendOrder","parameters":{"orderType":"LMT","symbol":"pf_xbtusd",'
        '"side":"Buy","size":0.01,"limitPrice":42000.5,"reduceOnly":false}}'
    )

    assert isinstance(command, SendOrderCommand)
    assert command.parameters.symbol == "PF_XBTUSD"
    assert command.parameters.limit_price == Decimal("42000.5")
    assert command.parameters.to_venue_params() == {
        "orderType": "lmt",
        "symbol": "PF_XBTUSD",
        "side": "buy",
        "size": "0.01",
        "limitPrice": "42000.5",
        "reduceOnly": False,
    }


def test_fenced_code_block_is_accepted() -> None:
    raw = (
        "Here is my decision:\n```json\n"
        '{"function": "doNothing", "parameters": {"reason": "flat market"}}\n```\nThanks.'
    )

    command = CommandValidator().validate(raw)

    assert isinstance(command, DoNothingCommand)
    assert command.parameters.reason == "flat market"


def test_prose_around_braced_payload_is_stripped() -> None:
    assert extract_json_text('noise {"function":"doNothing"} tail') == '{"function":"doNothing"}'


@pytest.mark.parametrize(
    ("raw", "expected_type"),
    [
        ('{"function":"editOrder","parameters":{"orderId":"o-1","size":2}}', EditOrderCommand),
        ('{"function":"cancelOrder","parameters":{"order_id":"o-1"}}', CancelOrderCommand),
        ('{"function":"cancelOrder","parameters":{"cliOrdId":"c-1"}}', CancelOrderCommand),
        (
            '{"function":"cancelAllOrders","parameters":{"symbol":"pf_ethusd"}}',
            CancelAllOrdersCommand,
        ),
        ('{"function":"cancelAllOrders"}', CancelAllOrdersCommand),
        ('{"function":"doNothing","parameters":{}}', DoNothingCommand),
    ],
)
def test_every_known_function_is_accepted(raw: str, expected_type: type) -> None:
    assert isinstance(CommandValidator().validate(raw), expected_type)


@pytest.mark.parametrize(
    "raw",
    ["", "   ", None, "not json", "[1, 2, 3]", '{"parameters": {}}', '{"function": ""}', "{broken"],
)
def test_malformed_responses_are_parse_errors(raw: str | None) -> None:
    with pytest.raises(CommandParseError):
        CommandValidator().validate(raw)


def test_unknown_function_is_grammar_error_not_parse_error() -> None:
    with pytest.raises(UnknownCommandError) as exc_info:
        CommandValidator().validate('{"function":"doSomethingElse","parameters":{}}')

    assert exc_info.value.envelope.function == "doSomethingElse"
    assert not isinstance(exc_info.value, CommandParseError)


@pytest.mark.parametrize(
    "raw",
    [
        '{"function":"sendOrder","parameters":{"symbol":"PF_XBTUSD"}}',
        '{"function":"sendOrder","parameters":{"orderType":"lmt","symbol":"PF_XBTUSD",'
        '"side":"hold","size":1}}',
        '{"function":"editOrder","parameters":{"size":1}}',
        '{"function":"cancelOrder","parameters":{}}',
        '{"function":"doNothing","parameters":{"reason":"x","withdraw":true}}',
    ],
)
def test_parameters_outside_field_set_are_invalid_commands(raw: str) -> None:
    with pytest.raises(InvalidCommandError):
        CommandValidator().validate(raw)


def test_no_local_sanity_checks_on_values() -> None:
    command = CommandValidator().validate(
        '{"function":"sendOrder","parameters":{"orderType":"lmt","symbol":"PF_XBTUSD",'
        '"side":"sell","size":-5,"limitPrice":0}}'
    )

    assert isinstance(command, SendOrderCommand)
    assert command.parameters.size == Decimal("-5")
