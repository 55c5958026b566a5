"""
Voice loop.

Caller-facing entry point for a practice conversation. A VoiceLoop is
built with its capabilities injected (microphone, recognizer, tutor,
player) and runs one session at a time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from speakeasy.agents.response_generator import ResponseGenerator
from speakeasy.orchestrator.turn_scheduler import (
    FeedbackAddedEvent,
    LoopBusyError,
    LoopEvent,
    LoopState,
    SessionEndedError,
    TurnScheduler,
)
from speakeasy.session.feedback import FeedbackAccumulator, minutes_practiced
from speakeasy.session.practice_state import PracticeState
from speakeasy.session.progress import ProgressTracker
from speakeasy.session.schemas import (
    ConversationTurn,
    LessonReference,
    PracticeSession,
    SessionResult,
    VoiceLoopConfig,
)
from speakeasy.storage.preferences import InMemoryPreferenceStore, PreferenceStore
from speakeasy.voice.audio_io import CaptureSource
from speakeasy.voice.player import SpeechOutputPlayer
from speakeasy.voice.stt import RecognitionAdapter
from speakeasy.voice.vad import VoiceActivityMonitor

_CLOSED = object()


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionHandle:
    """Identifies the running session and the settings it was started with."""

    session_id: UUID
    lesson: LessonReference
    config: VoiceLoopConfig
    started_at: datetime


class EventSubscription:
    """
    Async iterator over LoopEvents.

    Registered as soon as it is created, so no event published after
    ``subscribe()`` returns is missed. Iteration ends when the session is
    completed or the subscription is closed.
    """

    def __init__(self, on_close: Callable[[EventSubscription], None]) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._closed = False

    def put(self, item: object) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    def close(self) -> None:
        if self._closed:
            return
        self._queue.put_nowait(_CLOSED)
        self._closed = True
        self._on_close(self)

    def __aiter__(self) -> EventSubscription:
        return self

    async def __anext__(self) -> LoopEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class VoiceLoop:
    """
    Adaptive voice conversation loop.

    Wires a TurnScheduler to one PracticeSession at a time and exposes the
    session operations to the UI layer.
    """

    def __init__(
        self,
        *,
        capture: CaptureSource,
        recognizer: RecognitionAdapter,
        generator: ResponseGenerator,
        player: SpeechOutputPlayer,
        preferences: PreferenceStore | None = None,
        progress: ProgressTracker | None = None,
        monitor_factory: Callable[[VoiceLoopConfig, int], VoiceActivityMonitor] | None = None,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        """
        Initialize the voice loop.

        Args:
            capture: Microphone source.
            recognizer: Speech-to-text adapter.
            generator: Tutor reply generator.
            player: Speech output player.
            preferences: Where the VoiceLoopConfig is loaded from at session start.
            progress: Daily progress tracker credited on completion.
            monitor_factory: Builds the voice activity monitor from a config
                snapshot and the capture sample rate.
            clock: Source of session start/end times.
        """
        self._logger = logging.getLogger(__name__)
        self._capture = capture
        self._recognizer = recognizer
        self._generator = generator
        self._player = player
        self._preferences = preferences or InMemoryPreferenceStore()
        self._progress = progress
        self._monitor_factory = monitor_factory or (lambda cfg, sr: VoiceActivityMonitor(cfg, sr))
        self._clock = clock

        self._practice: PracticeState | None = None
        self._accumulator: FeedbackAccumulator | None = None
        self._scheduler: TurnScheduler | None = None
        self._handle: SessionHandle | None = None
        self._result: SessionResult | None = None
        self._subscribers: list[EventSubscription] = []

    @property
    def state(self) -> LoopState:
        """Current loop state (idle before any session)."""
        return self._scheduler.state if self._scheduler else LoopState.IDLE

    @property
    def handle(self) -> SessionHandle | None:
        return self._handle

    @property
    def is_active(self) -> bool:
        return self._scheduler is not None and self._result is None

    async def start_session(self, lesson: LessonReference) -> SessionHandle:
        """
        Start a practice session for ``lesson``.

        The voice settings are read once here; later preference changes
        apply to the next session only.

        Returns:
            Handle of the new session.

        Raises:
            LoopBusyError: If a session is already running.
            CaptureUnavailableError: If auto-start is on and the microphone
                cannot be opened (the session ends immediately).
        """
        if self.is_active:
            raise LoopBusyError("A session is already active. Complete it first.")

        config = self._preferences.load()
        practice = PracticeState(lesson, start_time=self._clock())
        accumulator = FeedbackAccumulator(practice)
        scheduler = TurnScheduler(
            practice,
            config,
            capture=self._capture,
            monitor=self._monitor_factory(config, self._capture.sample_rate),
            recognizer=self._recognizer,
            generator=self._generator,
            player=self._player,
            accumulator=accumulator,
            publish=self._publish,
        )

        self._practice = practice
        self._accumulator = accumulator
        self._scheduler = scheduler
        self._result = None
        self._handle = SessionHandle(
            session_id=practice.session_id,
            lesson=lesson,
            config=config,
            started_at=practice.start_time,
        )
        if self._progress is not None:
            self._progress.roll_over(today=practice.start_time.astimezone().date())
        self._logger.info(f"Starting practice session {practice.session_id} lesson={lesson.lesson_id}")

        if config.auto_start_recording:
            await scheduler.set_voice_mode(True)
        return self._handle

    async def toggle_voice_mode(self, on: bool) -> None:
        """
        Switch between hands-free listening and typed input.

        Turning voice mode off stops listening and cancels the turn in
        progress; nothing is appended after this returns. After the session
        ended it does nothing.

        Raises:
            CaptureUnavailableError: If the microphone cannot be opened.
            SessionEndedError: If voice mode is turned on after the session ended.
        """
        if not on and self._result is not None:
            return
        await self._require_scheduler().set_voice_mode(on)

    async def send_text_message(self, text: str) -> ConversationTurn | None:
        """
        Send typed learner input, bypassing audio capture.

        Returns:
            The tutor's reply turn, or None if the tutor could not answer.

        Raises:
            LoopBusyError: While a spoken turn is being transcribed or answered.
            SessionEndedError: If the session has ended.
        """
        future = self._require_scheduler().submit_text(text)
        return await future

    async def stop_session(self) -> None:
        """End the conversation loop without finalizing the session."""
        if self._scheduler is not None:
            await self._scheduler.stop()

    async def complete_session(self) -> SessionResult:
        """
        Stop the loop and finalize the session exactly once.

        Returns:
            SessionResult with the finalized session, score and metrics. A
            repeated call returns the same result.
        """
        if self._result is not None:
            return self._result

        scheduler = self._require_scheduler()
        await scheduler.stop()

        practice = self._practice
        accumulator = self._accumulator
        end_time = max(self._clock(), practice.start_time)
        score = accumulator.final_score(end_time)
        session = practice.complete(end_time=end_time, score=score)
        metrics = accumulator.metrics(now=end_time)

        for entry in scheduler.take_deferred_feedback():
            self._publish(FeedbackAddedEvent(entry))

        if self._progress is not None:
            self._progress.record_practice(
                minutes_practiced(session.start_time, end_time),
                today=end_time.astimezone().date(),
            )

        self._logger.info(
            f"Completed practice session {session.session_id}: score={score} "
            f"minutes={metrics.minutes_practiced} feedback={metrics.feedback_count}"
        )
        self._result = SessionResult(session=session, score=score, metrics=metrics)

        for sub in list(self._subscribers):
            sub.close()
        return self._result

    def snapshot(self) -> PracticeSession:
        """Deep copy of the session for display; never blocks the loop."""
        if self._practice is None:
            raise RuntimeError("No active session. Call start_session first.")
        return self._practice.snapshot()

    def subscribe(self) -> EventSubscription:
        """Subscribe to turn, feedback, state and error events."""
        sub = EventSubscription(on_close=self._unsubscribe)
        self._subscribers.append(sub)
        return sub

    def _publish(self, event: LoopEvent) -> None:
        for sub in self._subscribers:
            sub.put(event)

    def _unsubscribe(self, sub: EventSubscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def _require_scheduler(self) -> TurnScheduler:
        if self._scheduler is None:
            raise RuntimeError("No active session. Call start_session first.")
        if self._result is not None:
            raise SessionEndedError("Session has already been completed.")
        return self._scheduler
