from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class HistoryOutcome(StrEnum):
    SUCCESS = "success"
    PARSE_ERROR = "parse_error"
    EXECUTION_ERROR = "execution_error"


@dataclass(frozen=True)
class HistoryEntry:
    cycle_id: str
    recorded_at: datetime
    outcome: HistoryOutcome
    command: dict[str, Any] | None = None
    result: Any = None
    error: dict[str, Any] | None = None
    raw_response: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "recorded_at": self.recorded_at.isoformat(),
            "outcome": self.outcome.value,
            "command": self.command,
            "result": self.result,
            "error": self.error,
        }


@dataclass
class DecisionHistory:
    """Append-only, in-process record of completed cycles."""

    _entries: list[HistoryEntry] = field(default_factory=list)

    def append(self, entry: HistoryEntry) -> None:
        self._entries.append(entry)

    def entries(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(tuple(self._entries))
