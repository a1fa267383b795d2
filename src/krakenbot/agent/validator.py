from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter, ValidationError

from krakenbot.agent.contracts import Command, CommandEnvelope, CommandName

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_COMMAND_ADAPTER: TypeAdapter[Command] = TypeAdapter(Command)
KNOWN_COMMANDS = frozenset(name.value for name in CommandName)


class CommandParseError(RuntimeError):
    """The decision response is empty or not a JSON command object."""


class CommandGrammarError(RuntimeError):
    """Well-formed response that falls outside the command grammar."""

    def __init__(self, message: str, *, envelope: CommandEnvelope) -> None:
        super().__init__(message)
        self.envelope = envelope

    def as_dict(self) -> dict[str, Any]:
        return {"type": type(self).__name__, "message": str(self)}


class UnknownCommandError(CommandGrammarError):
    pass


class InvalidCommandError(CommandGrammarError):
    pass


def extract_json_text(raw: str, *, max_response_chars: int = 20_000) -> str:
    text = raw.strip()[:max_response_chars]
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        return fenced.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text


@dataclass(frozen=True)
class CommandValidator:
    """Turns untrusted decision text into a closed ``Command`` value.

    Failures are split in two: ``CommandParseError`` when the text is not a JSON
    command object at all, ``CommandGrammarError`` when it is one but names an
    unknown function or carries parameters outside that function's field set.
    Nothing partially parsed is ever returned.
    """

    max_response_chars: int = 20_000

    def parse_envelope(self, raw: str | None) -> CommandEnvelope:
        if not isinstance(raw, str) and raw is not None:
            raise CommandParseError(f"decision response must be text, got {type(raw).__name__}")
        if raw is None or not raw.strip():
            raise CommandParseError("empty decision response")
        candidate = extract_json_text(raw, max_response_chars=self.max_response_chars)
        try:
            decoded = json.loads(candidate)
        except json.JSONDecodeError as exc:
            raise CommandParseError(f"decision response is not JSON: {exc.msg}") from exc
        except (RecursionError, ValueError) as exc:
            raise CommandParseError(
                f"decision response could not be decoded: {type(exc).__name__}"
            ) from exc
        if not isinstance(decoded, dict):
            raise CommandParseError("decision response must be a JSON object")
        try:
            return CommandEnvelope.model_validate(decoded)
        except ValidationError as exc:
            raise CommandParseError("decision response lacks a function name") from exc

    def validate(self, raw: str | None) -> Command:
        envelope = self.parse_envelope(raw)
        if envelope.function not in KNOWN_COMMANDS:
            raise UnknownCommandError(
                f"unknown command function: {envelope.function}", envelope=envelope
            )
        try:
            return _COMMAND_ADAPTER.validate_python(
                {"function": envelope.function, "parameters": envelope.parameters}
            )
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            raise InvalidCommandError(
                f"invalid parameters for {envelope.function}: {', '.join(fields)}",
                envelope=envelope,
            ) from exc
