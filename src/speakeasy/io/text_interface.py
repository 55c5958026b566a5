"""
Text-based practice interface.

Provides a command-line interface for practicing a lesson via typed
input; replies come from the same VoiceLoop the voice mode uses.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from speakeasy.orchestrator.turn_scheduler import LoopBusyError
from speakeasy.orchestrator.voice_loop import VoiceLoop
from speakeasy.session.schemas import ConversationTurn, LessonReference, SessionResult

QUIT_COMMANDS = ("quit", "exit", "end")


class PracticeInterface(ABC):
    """Abstract base class for practice interfaces."""

    @abstractmethod
    async def run(self) -> SessionResult | None:
        """Run the practice interface until the learner ends the session."""
        ...

    @abstractmethod
    async def send_message(self, message: str) -> None:
        """
        Show a message to the learner.

        Args:
            message: Message to display.
        """
        ...

    @abstractmethod
    async def receive_input(self) -> str:
        """
        Receive input from the learner.

        Returns:
            Learner's input string.
        """
        ...


def format_turn(turn: ConversationTurn) -> str:
    label = "You" if turn.speaker.value == "user" else "Tutor"
    line = f"{label}: {turn.text}"
    if turn.translation:
        line += f"\n  ({turn.translation})"
    return line


def format_result(result: SessionResult) -> str:
    m = result.metrics
    lines = [
        "=" * 60,
        "Session Summary",
        "=" * 60,
        f"Lesson: {result.session.lesson.title or result.session.lesson.lesson_id}",
        f"Minutes practiced: {m.minutes_practiced}",
        f"Turns: {m.message_count} ({m.user_turns} yours)",
        f"Score: {result.score}",
    ]
    if result.session.feedback:
        lines.append("\nCorrections:")
        for f in result.session.feedback:
            suggestion = f" -> {f.suggestion}" if f.suggestion else ""
            lines.append(f"  - [{f.kind.value}] {f.content}{suggestion}")
    if m.fluency.words_per_minute:
        lines.append(f"\nSpeaking rate: {m.fluency.words_per_minute:.0f} wpm")
    lines.append(f"Confidence: {m.fluency.confidence_score:.0f}/10")
    lines.append("=" * 60)
    return "\n".join(lines)


class TextInterface(PracticeInterface):
    """
    Command-line text interface for practice sessions.

    Provides a simple REPL; voice mode stays off for the whole session.
    """

    def __init__(self, loop: VoiceLoop, lesson: LessonReference) -> None:
        """
        Initialize the text interface.

        Args:
            loop: Voice loop to drive with typed input.
            lesson: Lesson to practice.
        """
        self._loop = loop
        self._lesson = lesson

    async def run(self) -> SessionResult | None:
        """Run the interactive practice session."""
        print("\n" + "=" * 60)
        print(f"SpeakEasy: {self._lesson.title or self._lesson.lesson_id} ({self._lesson.language})")
        print("=" * 60)
        print("Type your message. 'quit' ends the session.\n")

        await self._loop.start_session(self._lesson)

        while True:
            text = await self.receive_input()
            if text.strip().lower() in QUIT_COMMANDS:
                break
            if not text.strip():
                continue
            try:
                reply = await self._loop.send_text_message(text)
            except LoopBusyError as e:
                await self.send_message(f"[busy] {e}")
                continue
            if reply is None:
                await self.send_message("[The tutor could not answer. Please try again.]")
            else:
                await self.send_message(format_turn(reply))

        result = await self._loop.complete_session()
        await self.send_message(format_result(result))
        return result

    async def send_message(self, message: str) -> None:
        print(f"\n{message}\n")

    async def receive_input(self) -> str:
        return await self._get_input("You: ")

    async def _get_input(self, prompt: str) -> str:
        # Read in a worker thread so playback and timers keep running.
        try:
            return await asyncio.to_thread(input, prompt)
        except EOFError:
            return "quit"
