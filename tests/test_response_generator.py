import pytest

from speakeasy.agents.response_generator import (
    GenerationError,
    GenerationErrorKind,
    TutorRequest,
    TutorResponseGenerator,
)
from speakeasy.models.llm_client import (
    LLMClientBase,
    LLMError,
    LLMMalformedResponseError,
    LLMRateLimitError,
    LLMResponse,
    LLMTimeoutError,
    Message,
)
from speakeasy.session.schemas import FeedbackKind


class FakeLLM(LLMClientBase):
    def __init__(self, content: str = "", error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.calls: list[list[Message]] = []

    async def chat(self, messages, temperature=0.7, max_tokens=None, *, json_mode=False):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.content, model="fake")


def _request(**overrides) -> TutorRequest:
    fields = {
        "language": "Spanish",
        "level_label": "Beginner",
        "conversation_context": [
            {"role": "user", "content": "hola"},
            {"role": "assistant", "content": "¡Hola! ¿Cómo estás?"},
        ],
        "user_utterance_text": "yo es bien",
        "lesson_context": "Greetings",
    }
    fields.update(overrides)
    return TutorRequest(**fields)


@pytest.mark.asyncio
async def test_generate_parses_reply_translation_and_corrections() -> None:
    llm = FakeLLM(
        content="""{
            "response": "¡Qué bien! ¿Y tu familia?",
            "responseTranslation": "Great! And your family?",
            "corrections": [
                {"error": "yo es bien", "correction": "estoy bien", "explanation": "estar for states"},
                {"error": "bien", "correction": "bien", "kind": "Pronunciation"},
                {"error": "x", "correction": "y", "kind": "spelling"},
                {"error": "", "correction": "ignored"},
                "not a dict"
            ]
        }"""
    )
    reply = await TutorResponseGenerator(llm).generate(_request())

    assert reply.reply_text == "¡Qué bien! ¿Y tu familia?"
    assert reply.reply_translation == "Great! And your family?"
    assert [c.error for c in reply.corrections] == ["yo es bien", "bien", "x"]
    assert reply.corrections[0].kind is None
    assert reply.corrections[1].kind is FeedbackKind.PRONUNCIATION
    assert reply.corrections[2].kind is None


@pytest.mark.asyncio
async def test_prompt_carries_language_level_and_context() -> None:
    llm = FakeLLM(content='{"response": "Vale."}')
    await TutorResponseGenerator(llm).generate(_request())

    system, user = llm.calls[0]
    assert system.role == "system"
    assert "Language: Spanish" in user.content
    assert "Student Level: Beginner" in user.content
    assert "Context: Greetings" in user.content
    assert "Student: hola" in user.content
    assert "Teacher: ¡Hola! ¿Cómo estás?" in user.content
    assert 'Student said: "yo es bien"' in user.content


@pytest.mark.asyncio
async def test_missing_response_text_is_malformed() -> None:
    llm = FakeLLM(content='{"responseTranslation": "only a translation"}')
    with pytest.raises(GenerationError) as exc:
        await TutorResponseGenerator(llm).generate(_request())
    assert exc.value.kind is GenerationErrorKind.MALFORMED_RESPONSE


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, kind",
    [
        (LLMRateLimitError("429"), GenerationErrorKind.RATE_LIMIT),
        (LLMTimeoutError("slow"), GenerationErrorKind.TIMEOUT),
        (LLMMalformedResponseError("junk"), GenerationErrorKind.MALFORMED_RESPONSE),
        (LLMError("connection refused"), GenerationErrorKind.NETWORK),
    ],
)
async def test_llm_errors_map_to_generation_error_kinds(error, kind) -> None:
    with pytest.raises(GenerationError) as exc:
        await TutorResponseGenerator(FakeLLM(error=error)).generate(_request())
    assert exc.value.kind is kind
    assert exc.value.__cause__ is error
