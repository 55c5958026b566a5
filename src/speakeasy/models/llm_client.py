"""
LLM client abstraction.

Talks to a locally hosted Ollama server over its HTTP chat API. Errors are
raised as typed exceptions so callers can tell transport failures, rate
limiting and unusable output apart.
"""

from __future__ import annotations

import ast
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, Field

from speakeasy.config import get_settings

logger = logging.getLogger(__name__)


class Message(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")


class LLMResponse(BaseModel):
    """Response from an LLM."""

    content: str = Field(..., description="Generated text content")
    finish_reason: str = Field(default="stop", description="Reason for completion")
    usage: dict[str, int] = Field(default_factory=dict, description="Token usage information")
    model: str = Field(default="", description="Model used for generation")


class LLMError(Exception):
    """Raised when the LLM server cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class LLMRateLimitError(LLMError):
    """Raised on HTTP 429 or an explicit rate-limit message."""


class LLMTimeoutError(LLMError):
    """Raised when the request exceeds the client timeout."""


class LLMMalformedResponseError(LLMError):
    """Raised when the server answers but the payload is unusable."""


class LLMClientBase(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        *,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: Conversation history.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens to generate.
            json_mode: Ask the server to constrain output to JSON.

        Returns:
            Generated response.

        Raises:
            LLMError: On transport or server failure.
        """
        ...

    async def chat_json(
        self,
        messages: list[Message],
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        """
        Generate a chat completion and parse it as a JSON object.

        Raises:
            LLMMalformedResponseError: If no JSON object can be recovered.
        """
        response = await self.chat(messages, temperature, max_tokens, json_mode=True)
        parsed = parse_json_loose(extract_json_block(response.content))
        if not isinstance(parsed, dict):
            logger.debug(f"Unparseable LLM output: {response.content[:500]}")
            raise LLMMalformedResponseError("LLM did not return a JSON object", body=response.content)
        return parsed


class LLMClient(LLMClientBase):
    """
    Ollama HTTP client.

    One ``httpx.AsyncClient`` is created lazily and reused.
    """

    def __init__(
        self,
        model: str | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            model: Model name (defaults to settings).
            endpoint: Ollama base URL (defaults to settings).
            timeout: Request timeout in seconds (defaults to settings).
            transport: Optional httpx transport, used by tests.
        """
        settings = get_settings()
        self._model = model or settings.llm_model_name
        self._endpoint = endpoint or settings.ollama_endpoint
        self._timeout = timeout or settings.llm_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(f"Initialized Ollama LLM client model={self._model} endpoint={self._endpoint}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._endpoint,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        *,
        json_mode: bool = False,
    ) -> LLMResponse:
        options: dict[str, Any] = {"temperature": temperature}
        if max_tokens is not None:
            options["num_predict"] = max_tokens

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [m.model_dump() for m in messages],
            "stream": False,
            "options": options,
        }
        if json_mode:
            payload["format"] = "json"

        client = await self._get_client()
        try:
            r = await client.post("/api/chat", json=payload)
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"Ollama timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Ollama request failed: {e}") from e

        if r.status_code == 429:
            raise LLMRateLimitError("Ollama rate limited the request", status_code=429, body=r.text)
        if r.status_code >= 400:
            if "rate limit" in r.text.lower():
                raise LLMRateLimitError("Ollama rate limited the request", status_code=r.status_code, body=r.text)
            raise LLMError(f"Ollama returned HTTP {r.status_code}", status_code=r.status_code, body=r.text)

        try:
            data = r.json()
            content = data["message"]["content"]
        except (ValueError, KeyError, TypeError) as e:
            raise LLMMalformedResponseError("Unexpected Ollama response shape", status_code=r.status_code, body=r.text) from e

        usage = {
            k: int(data[k])
            for k in ("prompt_eval_count", "eval_count")
            if isinstance(data.get(k), int)
        }
        logger.debug(f"Ollama response length: {len(content)} chars")
        return LLMResponse(
            content=(content or "").strip(),
            finish_reason=str(data.get("done_reason") or "stop"),
            usage=usage,
            model=str(data.get("model") or self._model),
        )


def extract_json_block(content: str) -> str:
    """Return the first balanced {...} or [...] block, or the stripped input."""
    text = (content or "").strip()
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text

    start = min(starts)
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:]


def _repair_json(raw: str) -> str:
    result = raw.strip()
    result = re.sub(r"^```(?:json)?\s*", "", result, flags=re.IGNORECASE)
    result = re.sub(r"\s*```$", "", result)
    result = result.replace("“", '"').replace("”", '"').replace("‘", "'").replace("’", "'")
    # Trailing commas, Python literals, bare keys.
    result = re.sub(r",(\s*[}\]])", r"\1", result)
    result = re.sub(r"\bNone\b", "null", result)
    result = re.sub(r"\bTrue\b", "true", result)
    result = re.sub(r"\bFalse\b", "false", result)
    result = re.sub(r"([\{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)", r'\1"\2"\3', result)
    if "'" in result and '"' not in result:
        result = result.replace("'", '"')
    return result


def parse_json_loose(raw: str) -> dict[str, Any] | list[Any] | None:
    """
    Parse JSON with best-effort repair of common LLM output mistakes.

    Returns a dict/list on success, else None.
    """
    if not raw:
        return None

    for candidate in (raw, _repair_json(raw)):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    try:
        obj = ast.literal_eval(raw.strip())
    except (ValueError, SyntaxError, TypeError):
        return None
    if not isinstance(obj, (dict, list)):
        return None
    try:
        return json.loads(json.dumps(obj, default=str))
    except (TypeError, ValueError):
        return None
