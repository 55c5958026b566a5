"""
Models module for LLM client abstraction.

Provides a unified interface for talking to a local Ollama server.
"""

from speakeasy.models.llm_client import (
    LLMClient,
    LLMClientBase,
    LLMError,
    LLMMalformedResponseError,
    LLMRateLimitError,
    LLMResponse,
    LLMTimeoutError,
    Message,
    parse_json_loose,
)

__all__ = [
    "LLMClient",
    "LLMClientBase",
    "LLMError",
    "LLMMalformedResponseError",
    "LLMRateLimitError",
    "LLMResponse",
    "LLMTimeoutError",
    "Message",
    "parse_json_loose",
]
