"""
Tutor response generator.

Sends the learner's utterance plus recent conversation context to the
language model and turns its JSON answer into a TutorReply: the tutor's
reply, an optional translation and a list of correction notes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from speakeasy.models.llm_client import (
    LLMClient,
    LLMClientBase,
    LLMError,
    LLMMalformedResponseError,
    LLMRateLimitError,
    LLMTimeoutError,
    Message,
)
from speakeasy.session.schemas import FeedbackKind

logger = logging.getLogger(__name__)


class GenerationErrorKind(str, Enum):
    """Why a tutor reply could not be produced."""

    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    MALFORMED_RESPONSE = "malformed_response"
    TIMEOUT = "timeout"


class GenerationError(Exception):
    """Raised when the generator fails; every kind is retryable once."""

    def __init__(self, kind: GenerationErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind


class TutorRequest(BaseModel):
    """Everything the tutor needs to answer one learner utterance."""

    language: str = Field(..., description="Target language")
    level_label: str = Field(default="Beginner", description="Learner level label")
    conversation_context: list[dict[str, str]] = Field(
        default_factory=list,
        description="Recent turns as role/content dicts, oldest first",
    )
    user_utterance_text: str = Field(..., description="What the learner just said")
    lesson_context: str = Field(default="General", description="Lesson topic")


class Correction(BaseModel):
    """One correction note returned with a tutor reply."""

    error: str = Field(default="", description="What the learner got wrong")
    correction: str = Field(default="", description="The corrected form")
    explanation: str = Field(default="", description="Short explanation")
    kind: FeedbackKind | None = Field(default=None, description="Feedback category, grammar when absent")

    @field_validator("kind", mode="before")
    @classmethod
    def _known_kind_or_none(cls, v: Any) -> Any:
        if v is None or isinstance(v, FeedbackKind):
            return v
        try:
            return FeedbackKind(str(v).strip().lower())
        except ValueError:
            return None


class TutorReply(BaseModel):
    """Parsed tutor answer."""

    reply_text: str = Field(..., description="Reply in the target language")
    reply_translation: str | None = Field(default=None, description="Reply translated for the learner")
    corrections: list[Correction] = Field(default_factory=list, description="Corrections to the learner")


class ResponseGenerator(ABC):
    """Abstract base class for tutor response generators."""

    @abstractmethod
    async def generate(self, request: TutorRequest) -> TutorReply:
        """
        Produce the tutor's answer to one learner utterance.

        Args:
            request: Language, level, context and the learner's text.

        Returns:
            The tutor reply.

        Raises:
            GenerationError: On any failure, tagged with its kind.
        """
        ...


class TutorResponseGenerator(ResponseGenerator):
    """
    LLM-backed conversational tutor.

    Asks the model for a short reply in the target language and for
    corrections of the learner's last message, in one JSON object.
    """

    SYSTEM_PROMPT = "You are a conversational language teacher. Keep responses brief and natural."

    REPLY_PROMPT = """Language: {language}
Student Level: {level}
Context: {context}

Recent conversation:
{conversation_context}

Student said: "{user_input}"

Respond briefly and naturally in {language}. Keep your response under 25 words for natural conversation flow.
If the student made mistakes, list them in "corrections". Use an empty list when there are none.
"kind" is one of: grammar, vocabulary, pronunciation, fluency, comprehension.

Format as JSON:
{{
    "response": "brief natural response in {language} (under 25 words)",
    "responseTranslation": "English translation",
    "corrections": [{{"error": "", "correction": "", "explanation": "", "kind": "grammar"}}]
}}

Only return valid JSON, no other text."""

    def __init__(
        self,
        llm_client: LLMClientBase | None = None,
        *,
        temperature: float = 0.8,
        max_tokens: int | None = 200,
        context_turns: int = 6,
    ) -> None:
        """
        Initialize the generator.

        Args:
            llm_client: LLM client. Creates default if None.
            temperature: Sampling temperature; higher gives more varied replies.
            max_tokens: Cap on generated tokens.
            context_turns: How many recent turns to include in the prompt.
        """
        self._llm_client = llm_client or LLMClient()
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._context_turns = context_turns

    async def generate(self, request: TutorRequest) -> TutorReply:
        prompt = self.REPLY_PROMPT.format(
            language=request.language,
            level=request.level_label,
            context=request.lesson_context,
            conversation_context=self._format_context(request.conversation_context),
            user_input=request.user_utterance_text,
        )
        messages = [
            Message(role="system", content=self.SYSTEM_PROMPT),
            Message(role="user", content=prompt),
        ]

        try:
            data = await self._llm_client.chat_json(
                messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except LLMRateLimitError as e:
            raise GenerationError(GenerationErrorKind.RATE_LIMIT, str(e)) from e
        except LLMTimeoutError as e:
            raise GenerationError(GenerationErrorKind.TIMEOUT, str(e)) from e
        except LLMMalformedResponseError as e:
            raise GenerationError(GenerationErrorKind.MALFORMED_RESPONSE, str(e)) from e
        except LLMError as e:
            raise GenerationError(GenerationErrorKind.NETWORK, str(e)) from e

        return self._parse_reply(data)

    def _format_context(self, context: list[dict[str, str]]) -> str:
        recent = context[-self._context_turns :] if self._context_turns else context
        if not recent:
            return "(start of conversation)"
        lines = []
        for m in recent:
            label = "Student" if m.get("role") == "user" else "Teacher"
            lines.append(f"{label}: {m.get('content', '')}")
        return "\n".join(lines)

    @staticmethod
    def _parse_reply(data: dict[str, Any]) -> TutorReply:
        reply_text = str(data.get("response") or data.get("reply") or "").strip()
        if not reply_text:
            raise GenerationError(GenerationErrorKind.MALFORMED_RESPONSE, "Reply JSON has no response text")

        translation = data.get("responseTranslation") or data.get("translation")
        raw_corrections = data.get("corrections") or []
        if not isinstance(raw_corrections, list):
            raw_corrections = []

        corrections: list[Correction] = []
        for item in raw_corrections:
            if not isinstance(item, dict):
                continue
            try:
                c = Correction.model_validate(
                    {k: v for k, v in item.items() if k in {"error", "correction", "explanation", "kind"}}
                )
            except ValidationError as e:
                logger.debug(f"Dropping unusable correction {item!r}: {e}")
                continue
            if c.error.strip():
                corrections.append(c)

        return TutorReply(
            reply_text=reply_text,
            reply_translation=str(translation).strip() if translation else None,
            corrections=corrections,
        )
