from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from krakenbot.agent.prompt import DecisionPrompt

logger = logging.getLogger(__name__)


class DecisionClient(Protocol):
    async def complete(self, prompt: DecisionPrompt) -> str: ...


class DecisionServiceError(RuntimeError):
    pass


class ChatCompletionsDecisionClient:
    """Decision service over an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 700,
        timeout_seconds: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout_seconds)
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def complete(self, prompt: DecisionPrompt) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = await self._client.post("chat/completions", json=payload, headers=headers)
            response.raise_for_status()
            body: Any = response.json()
        except httpx.HTTPStatusError as exc:
            raise DecisionServiceError(
                f"decision service returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise DecisionServiceError(
                f"decision service request failed: {type(exc).__name__}"
            ) from exc
        except ValueError as exc:
            raise DecisionServiceError("decision service returned non-JSON body") from exc

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise DecisionServiceError("decision service response missing message content") from exc
        text = _content_text(content)
        logger.debug(
            "decision_response_received",
            extra={"extra": {"model": self.model, "chars": len(text)}},
        )
        return text


def _content_text(content: Any) -> str:
    """Message content as plain text; list content keeps only its text parts."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if not isinstance(part, dict) or part.get("type") != "text":
                raise DecisionServiceError("decision service returned non-text content part")
            text = part.get("text")
            if not isinstance(text, str):
                raise DecisionServiceError("decision service returned malformed text part")
            parts.append(text)
        return "".join(parts)
    raise DecisionServiceError(
        f"decision service returned unsupported content type: {type(content).__name__}"
    )
