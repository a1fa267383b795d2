from __future__ import annotations

import base64
import json

from hypothesis import given, settings
from hypothesis import strategies as st

from krakenbot.adapters.kraken_auth import NonceGenerator, sign_request
from krakenbot.agent.contracts import DoNothingCommand
from krakenbot.agent.validator import CommandGrammarError, CommandParseError, CommandValidator

NO_FENCES = st.characters(exclude_characters="`")
SECRET = base64.b64encode(b"property-secret").decode()


@settings(max_examples=200, deadline=None)
@given(raw=st.text(max_size=300))
def test_arbitrary_text_only_raises_classified_errors(raw: str) -> None:
    try:
        CommandValidator().validate(raw)
    except (CommandParseError, CommandGrammarError):
        pass


@settings(max_examples=60, deadline=None)
@given(
    opener=st.sampled_from(["[", "{", '{"function":', '{"parameters":']),
    depth=st.integers(min_value=0, max_value=20_000),
    tail=st.text(max_size=20),
)
def test_deeply_nested_text_only_raises_classified_errors(
    opener: str, depth: int, tail: str
) -> None:
    try:
        CommandValidator().validate(opener * depth + tail)
    except (CommandParseError, CommandGrammarError):
        pass


@settings(max_examples=100, deadline=None)
@given(
    function=st.text(NO_FENCES, min_size=1, max_size=30).filter(
        lambda name: name
        not in {"sendOrder", "editOrder", "cancelOrder", "cancelAllOrders", "doNothing"}
    )
)
def test_unknown_function_names_are_never_parse_errors(function: str) -> None:
    raw = json.dumps({"function": function, "parameters": {}})

    try:
        CommandValidator().validate(raw)
    except CommandGrammarError as exc:
        assert exc.envelope.function == function
    else:
        raise AssertionError("unknown function was accepted")


@settings(max_examples=100, deadline=None)
@given(reason=st.text(NO_FENCES, max_size=200))
def test_do_nothing_reason_round_trips(reason: str) -> None:
    raw = json.dumps({"function": "doNothing", "parameters": {"reason": reason}})

    command = CommandValidator().validate(raw)

    assert isinstance(command, DoNothingCommand)
    assert command.parameters.reason == reason


@settings(max_examples=100, deadline=None)
@given(body=st.text(max_size=200), path=st.sampled_from(["sendorder", "editorder", "accounts"]))
def test_signature_depends_on_nonce(body: str, path: str) -> None:
    nonces = NonceGenerator(now_ms_fn=lambda: 1_700_000_000_000)
    endpoint = f"/derivatives/api/v3/{path}"

    first = sign_request(SECRET, endpoint, nonces.next_nonce(), body)
    second = sign_request(SECRET, endpoint, nonces.next_nonce(), body)

    assert first != second
