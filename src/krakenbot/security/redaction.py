from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "***REDACTED***"
_TEXT_MARKER = "[REDACTED]"

# Matched as case-insensitive substrings of a normalized key, so
# ``KRAKEN_API_SECRET`` and ``x-apikey`` are both caught.
SENSITIVE_KEYS = frozenset(
    {
        "apikey",
        "api_key",
        "secret",
        "authent",
        "authorization",
        "signature",
        "password",
        "token",
    }
)
# Counters such as ``max_tokens`` share a sensitive substring but hold no secret.
_SAFE_KEYS = frozenset({"max_tokens", "llm_max_tokens"})

# "<name>: value" and "<name>=value" in free text, e.g. echoed request headers.
_LABELLED_SECRET = re.compile(
    r"(?i)\b(apikey|api[_-]key|authent|kraken_api_(?:key|secret)|llm_api_key|secret|token)"
    r"(\s*[:=]\s*)([^\s,;&\"']+)"
)
_AUTHORIZATION = re.compile(r"(?i)\b(authorization\s*[:=]\s*)(bearer\s+)?([^\s,;]+)")
_BEARER = re.compile(r"(?i)\b(bearer\s+)([A-Za-z0-9._~+/=-]{8,})")


def _normalize_key(key: object) -> str:
    return str(key).replace("-", "_").casefold()


def is_sensitive_key(key: object) -> bool:
    normalized = _normalize_key(key)
    if normalized in _SAFE_KEYS:
        return False
    compact = normalized.replace("_", "")
    return any(part in normalized or part in compact for part in SENSITIVE_KEYS)


def mask(value: str) -> str:
    """Keep at most the last four characters of long values, nothing of short ones."""
    if len(value) < 12:
        return REDACTED
    return f"{REDACTED}{value[-4:]}"


def sanitize_text(text: str, known_secrets: Iterable[str] = ()) -> str:
    redacted = str(text)
    for secret in sorted((s for s in known_secrets if s), key=len, reverse=True):
        redacted = redacted.replace(secret, mask(secret))
    redacted = _AUTHORIZATION.sub(
        lambda m: f"{m.group(1)}{m.group(2) or ''}{_TEXT_MARKER}", redacted
    )
    redacted = _BEARER.sub(lambda m: f"{m.group(1)}{_TEXT_MARKER}", redacted)
    return _LABELLED_SECRET.sub(lambda m: f"{m.group(1)}{m.group(2)}{_TEXT_MARKER}", redacted)


def sanitize_mapping(d: Mapping[Any, Any]) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in d.items():
        name = str(key)
        if value is not None and is_sensitive_key(name):
            sanitized[name] = mask(str(value))
        else:
            sanitized[name] = redact_data(value)
    return sanitized


def redact_data(value: Any) -> Any:
    """Recursively redact mappings, sequences and strings for log or CLI output."""
    if isinstance(value, Mapping):
        return sanitize_mapping(value)
    if isinstance(value, (list, tuple)):
        return type(value)(redact_data(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value
