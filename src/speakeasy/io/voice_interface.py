"""Voice-based practice interface.

This file stays intentionally thin: the conversation itself runs inside
the VoiceLoop. The interface prints events as they arrive, keeps a JSONL
transcript of the session and ends the session when the learner presses
Enter.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path

from speakeasy.io.text_interface import PracticeInterface, format_result, format_turn
from speakeasy.orchestrator.turn_scheduler import (
    FatalErrorEvent,
    FeedbackAddedEvent,
    LoopEvent,
    NoticeEvent,
    StateChangedEvent,
    TurnAppendedEvent,
)
from speakeasy.orchestrator.voice_loop import VoiceLoop
from speakeasy.session.schemas import LessonReference, SessionResult
from speakeasy.voice.audio_io import CaptureUnavailableError

logger = logging.getLogger(__name__)


class TranscriptLog:
    """Appends one JSON record per turn or feedback entry to ``turns.jsonl``."""

    def __init__(self, session_dir: str | Path) -> None:
        self._dir = Path(session_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._path = self._dir / "turns.jsonl"

    @property
    def path(self) -> Path:
        return self._path

    def write_meta(self, *, session_id: str, lesson: LessonReference, config: dict) -> None:
        meta = {
            "session_id": session_id,
            "started_at": datetime.now().isoformat(),
            "lesson": lesson.model_dump(),
            "voice_config": config,
        }
        (self._dir / "meta.json").write_text(json.dumps(meta, indent=2), encoding="utf-8")

    def write_result(self, result: SessionResult) -> None:
        (self._dir / "result.json").write_text(result.model_dump_json(indent=2), encoding="utf-8")

    def record(self, event: LoopEvent) -> None:
        if isinstance(event, TurnAppendedEvent):
            rec = {
                "ts": event.turn.timestamp.isoformat(),
                "type": "turn",
                "role": event.turn.speaker.value,
                "text": event.turn.text,
                "translation": event.turn.translation,
            }
        elif isinstance(event, FeedbackAddedEvent):
            rec = {
                "ts": event.feedback.timestamp.isoformat(),
                "type": "feedback",
                "kind": event.feedback.kind.value,
                "content": event.feedback.content,
                "suggestion": event.feedback.suggestion,
            }
        else:
            return
        with self._path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")


class VoiceInterface(PracticeInterface):
    def __init__(
        self,
        loop: VoiceLoop,
        lesson: LessonReference,
        *,
        artifacts_dir: str | Path = "data/sessions",
        show_states: bool = False,
    ) -> None:
        self._loop = loop
        self._lesson = lesson
        self._artifacts_dir = Path(artifacts_dir)
        self._show_states = show_states
        self._transcript: TranscriptLog | None = None

    @property
    def transcript(self) -> TranscriptLog | None:
        return self._transcript

    async def run(self) -> SessionResult | None:
        print("\n" + "=" * 60)
        print(f"SpeakEasy Voice Mode: {self._lesson.title or self._lesson.lesson_id} ({self._lesson.language})")
        print("=" * 60)
        print("Speak when you see [listening]. Press Enter to end the session.\n")

        events = self._loop.subscribe()
        consumer = asyncio.create_task(self._consume(events))
        try:
            handle = await self._loop.start_session(self._lesson)
            self._open_transcript()
            if not handle.config.auto_start_recording:
                await self._loop.toggle_voice_mode(True)
            await self.receive_input()
        except CaptureUnavailableError as e:
            self._open_transcript()
            await self.send_message(f"[microphone unavailable] {e}")
        finally:
            result = await self._loop.complete_session() if self._loop.handle else None
            if result is None:
                events.close()
            await consumer

        if result is not None:
            if self._transcript is not None:
                self._transcript.write_result(result)
            await self.send_message(format_result(result))
        return result

    def _open_transcript(self) -> None:
        handle = self._loop.handle
        if handle is None or self._transcript is not None:
            return
        self._transcript = TranscriptLog(self._artifacts_dir / str(handle.session_id))
        self._transcript.write_meta(
            session_id=str(handle.session_id),
            lesson=self._lesson,
            config=handle.config.model_dump(mode="json"),
        )

    async def send_message(self, message: str) -> None:
        print(f"\n{message}\n", flush=True)

    async def receive_input(self) -> str:
        try:
            return await asyncio.to_thread(input, "")
        except EOFError:
            return ""

    async def _consume(self, events) -> None:  # noqa: ANN001
        async for event in events:
            if self._transcript is not None:
                self._transcript.record(event)
            if isinstance(event, TurnAppendedEvent):
                await self.send_message(format_turn(event.turn))
            elif isinstance(event, FeedbackAddedEvent):
                suggestion = f" -> {event.feedback.suggestion}" if event.feedback.suggestion else ""
                await self.send_message(f"[{event.feedback.kind.value}] {event.feedback.content}{suggestion}")
            elif isinstance(event, NoticeEvent):
                await self.send_message(f"[notice] {event.message}")
            elif isinstance(event, FatalErrorEvent):
                await self.send_message(f"[error] {event.error} (press Enter to finish)")
            elif isinstance(event, StateChangedEvent) and self._show_states:
                print(f"[{event.current.value}]", flush=True)
