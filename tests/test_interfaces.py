"""
Smoke tests for the text and voice practice interfaces.
"""

import json
from datetime import datetime, timezone

import pytest

from speakeasy.agents.response_generator import ResponseGenerator, TutorReply
from speakeasy.io.text_interface import TextInterface, format_turn
from speakeasy.io.voice_interface import TranscriptLog
from speakeasy.main import build_parser
from speakeasy.orchestrator.turn_scheduler import FeedbackAddedEvent, NoticeEvent, TurnAppendedEvent
from speakeasy.orchestrator.voice_loop import VoiceLoop
from speakeasy.session.schemas import (
    ConversationTurn,
    FeedbackKind,
    LessonReference,
    SessionFeedback,
    Speaker,
    VoiceLoopConfig,
)
from speakeasy.storage.preferences import InMemoryPreferenceStore
from speakeasy.voice.player import NullPlaybackBackend, SpeechOutputPlayer
from speakeasy.voice.stt import RecognitionAdapter


class EchoTutor(ResponseGenerator):
    async def generate(self, request):
        return TutorReply(reply_text=f"Dijiste: {request.user_utterance_text}", reply_translation="You said it")


class NoMicrophone:
    sample_rate = 16000

    async def start(self) -> None:
        raise AssertionError("text practice must not open the microphone")

    async def stop(self) -> None:
        return None

    async def buffers(self):
        raise AssertionError("text practice must not read audio")
        yield  # pragma: no cover


class ScriptedTextInterface(TextInterface):
    def __init__(self, loop, lesson, lines) -> None:
        super().__init__(loop, lesson)
        self._lines = list(lines)
        self.output: list[str] = []

    async def receive_input(self) -> str:
        return self._lines.pop(0)

    async def send_message(self, message: str) -> None:
        self.output.append(message)


class TestTextInterface:
    """Tests for the typed practice REPL."""

    @pytest.fixture
    def loop(self) -> VoiceLoop:
        return VoiceLoop(
            capture=NoMicrophone(),
            recognizer=RecognitionAdapter(),
            generator=EchoTutor(),
            player=SpeechOutputPlayer(NullPlaybackBackend()),
            preferences=InMemoryPreferenceStore(VoiceLoopConfig(auto_start_recording=False, response_delay=0.0)),
        )

    @pytest.mark.asyncio
    async def test_conversation_until_quit(self, loop: VoiceLoop):
        ui = ScriptedTextInterface(loop, LessonReference(lesson_id="greetings"), ["hola", "", "quit"])
        result = await ui.run()

        assert result is not None
        assert [t.speaker for t in result.session.turns] == [Speaker.USER, Speaker.TUTOR]
        assert "Dijiste: hola" in ui.output[0]
        assert "Score" in ui.output[-1]


class TestFormatting:
    def test_format_turn_includes_translation(self):
        turn = ConversationTurn(speaker=Speaker.TUTOR, text="¡Hola!", translation="Hi!")
        out = format_turn(turn)
        assert "¡Hola!" in out
        assert "Hi!" in out


def test_transcript_log_records_turns_and_feedback(tmp_path):
    log = TranscriptLog(tmp_path / "session-1")
    ts = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

    log.record(TurnAppendedEvent(ConversationTurn(speaker=Speaker.USER, text="yo es Ana", timestamp=ts)))
    log.record(
        FeedbackAddedEvent(
            SessionFeedback(kind=FeedbackKind.GRAMMAR, content="yo es", suggestion="yo soy", timestamp=ts)
        )
    )
    log.record(NoticeEvent(source="recognition", message="ignored"))

    lines = [json.loads(line) for line in log.path.read_text(encoding="utf-8").splitlines()]
    assert [rec["type"] for rec in lines] == ["turn", "feedback"]
    assert lines[0]["role"] == "user"
    assert lines[0]["text"] == "yo es Ana"
    assert lines[1]["suggestion"] == "yo soy"


def test_main_parser_defaults_to_text_mode():
    args = build_parser().parse_args([])
    assert args.mode == "text"
    assert args.language == "Spanish"
    assert build_parser().parse_args(["--mode", "voice"]).mode == "voice"
