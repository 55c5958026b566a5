"""
Turn scheduler.

The scheduler is the single writer of a practice session. It sequences
capture, voice activity detection, recognition, reply generation and
speech output, applies the configured delays and timeouts, and publishes
what happened as LoopEvents.

Every transition is a plain synchronous method, so advancing the state
and scheduling the next request happen in one step on the event loop.
Entering a state cancels the tasks of the state being left and bumps the
epoch; every task checks its epoch before applying a result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

import numpy as np

from speakeasy.agents.response_generator import (
    GenerationError,
    GenerationErrorKind,
    ResponseGenerator,
    TutorReply,
    TutorRequest,
)
from speakeasy.session.feedback import FeedbackAccumulator
from speakeasy.session.fluency import UtteranceSample
from speakeasy.session.practice_state import PracticeState
from speakeasy.session.schemas import (
    ConversationTurn,
    SessionFeedback,
    Speaker,
    VoiceLoopConfig,
)
from speakeasy.voice.audio_io import CaptureSource, CaptureUnavailableError
from speakeasy.voice.player import PlaybackEventKind, PlayerBusyError, SpeechOutputPlayer
from speakeasy.voice.stt import RecognitionAdapter, RecognitionError, TranscriptionResult
from speakeasy.voice.tts import SynthesisError
from speakeasy.voice.vad import AudioSpan, VADEventKind, VoiceActivityMonitor

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    AWAITING_REPLY = "awaiting_reply"
    SPEAKING = "speaking"
    COOLDOWN = "cooldown"
    ENDED = "ended"


class LoopBusyError(RuntimeError):
    """Raised when typed input arrives while a turn is being processed."""


class SessionEndedError(RuntimeError):
    """Raised when the session has already ended."""


@dataclass(frozen=True)
class StateChangedEvent:
    previous: LoopState
    current: LoopState
    epoch: int


@dataclass(frozen=True)
class TurnAppendedEvent:
    turn: ConversationTurn


@dataclass(frozen=True)
class FeedbackAddedEvent:
    feedback: SessionFeedback


@dataclass(frozen=True)
class NoticeEvent:
    """A recoverable error the learner should know about."""

    source: str  # recognition | generation
    message: str


@dataclass(frozen=True)
class FatalErrorEvent:
    error: BaseException = field(compare=False)


LoopEvent = Union[StateChangedEvent, TurnAppendedEvent, FeedbackAddedEvent, NoticeEvent, FatalErrorEvent]

RECOGNITION_NOTICE = "Sorry, I couldn't understand that. Please try again."
GENERATION_NOTICE = "The tutor is not responding right now. Please try again."


class TurnScheduler:
    """
    Central state machine of one practice session.

    Only this class (and the FeedbackAccumulator it drives) mutates the
    PracticeState it was given.
    """

    def __init__(
        self,
        practice: PracticeState,
        config: VoiceLoopConfig,
        *,
        capture: CaptureSource,
        monitor: VoiceActivityMonitor,
        recognizer: RecognitionAdapter,
        generator: ResponseGenerator,
        player: SpeechOutputPlayer,
        accumulator: FeedbackAccumulator,
        publish: Callable[[LoopEvent], None],
        context_turns: int = 10,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            practice: Session state to write to.
            config: Voice settings snapshot for this session.
            capture: Microphone source.
            monitor: Voice activity monitor fed from ``capture``.
            recognizer: Speech-to-text adapter.
            generator: Tutor reply generator.
            player: Speech output player.
            accumulator: Feedback and metrics collector for ``practice``.
            publish: Called with every LoopEvent, on the event loop thread.
            context_turns: Recent turns sent to the generator as context.
        """
        self._practice = practice
        self._config = config
        self._capture = capture
        self._monitor = monitor
        self._recognizer = recognizer
        self._generator = generator
        self._player = player
        self._accumulator = accumulator
        self._publish = publish
        self._context_turns = context_turns

        self._state = LoopState.IDLE
        self._epoch = 0
        self._voice_mode = False
        self._state_tasks: set[asyncio.Task] = set()
        self._pump_task: asyncio.Task | None = None
        self._reply_future: asyncio.Future | None = None
        self._user_turn_at: float | None = None
        self._deferred_feedback: list[SessionFeedback] = []
        self._fatal_error: BaseException | None = None

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def voice_mode(self) -> bool:
        return self._voice_mode

    @property
    def fatal_error(self) -> BaseException | None:
        return self._fatal_error

    # ------------------------------------------------------------------
    # Caller-facing operations
    # ------------------------------------------------------------------

    async def set_voice_mode(self, on: bool) -> None:
        """
        Turn voice mode on or off.

        Turning it off lands in ``idle`` before the first suspension point,
        so nothing is appended after this call returns.

        Raises:
            CaptureUnavailableError: If the microphone cannot be opened (the
                session ends).
            SessionEndedError: If voice mode is turned on after the session
                ended. Turning it off then is a no-op.
        """
        if not on:
            if self._state is LoopState.ENDED:
                return
            self._voice_mode = False
            if self._state is not LoopState.IDLE:
                self._transition(LoopState.IDLE)
            self._settle_reply(None)
            await self._stop_capture()
            return

        self._require_not_ended()
        self._voice_mode = True
        try:
            await self._start_capture()
        except CaptureUnavailableError as e:
            self._fail(e)
            raise
        if self._voice_mode and self._state is LoopState.IDLE:
            self._transition(LoopState.LISTENING)

    def submit_text(self, text: str) -> asyncio.Future:
        """
        Commit typed learner input as a user turn and request a reply.

        Returns:
            Future resolved with the tutor turn, or None when no reply was
            appended.

        Raises:
            ValueError: If ``text`` is blank.
            LoopBusyError: While a previous turn is being transcribed or answered.
            SessionEndedError: If the session has already ended.
        """
        self._require_not_ended()
        text = (text or "").strip()
        if not text:
            raise ValueError("message must not be empty")
        if self._state in (LoopState.TRANSCRIBING, LoopState.AWAITING_REPLY):
            raise LoopBusyError(f"Cannot accept typed input while {self._state.value}")

        future = asyncio.get_running_loop().create_future()
        self._commit_user_turn(text, sample=UtteranceSample(text=text), reply_future=future)
        return future

    async def stop(self) -> None:
        """End the session loop: cancel everything and release the microphone."""
        if self._state is LoopState.ENDED:
            await self._stop_capture()
            return
        self._voice_mode = False
        self._transition(LoopState.ENDED)
        self._settle_reply(None)
        await self._stop_capture()

    def take_deferred_feedback(self) -> list[SessionFeedback]:
        """Feedback held back for the end of the session."""
        out, self._deferred_feedback = self._deferred_feedback, []
        return out

    # ------------------------------------------------------------------
    # Transitions (synchronous, never await)
    # ------------------------------------------------------------------

    def _transition(self, new: LoopState) -> int:
        if self._state is LoopState.ENDED:
            return self._epoch

        previous = self._state
        current = asyncio.current_task()
        for task in self._state_tasks:
            if task is not current:
                task.cancel()
        self._state_tasks.clear()
        if previous is LoopState.SPEAKING:
            self._player.cancel()

        self._epoch += 1
        self._state = new

        if new is LoopState.LISTENING:
            self._monitor.begin_listening()
            self._spawn(self._listening_watchdog(self._epoch))
        elif new is LoopState.SPEAKING and self._config.barge_in_enabled:
            self._monitor.begin_speaking()
        else:
            self._monitor.stop()

        logger.info(f"[LOOP] {previous.value} -> {new.value} epoch={self._epoch}")
        self._publish(StateChangedEvent(previous=previous, current=new, epoch=self._epoch))
        return self._epoch

    def _resume_or_idle(self) -> None:
        self._transition(LoopState.IDLE)
        if self._voice_mode:
            self._transition(LoopState.LISTENING)

    def _on_buffer(self, buffer: np.ndarray) -> None:
        event = self._monitor.process(buffer)
        if event is None:
            return

        if event.kind is VADEventKind.UTTERANCE_FINALIZED:
            if self._state is LoopState.LISTENING and event.span is not None:
                self._begin_transcribing(event.span)
        elif event.kind is VADEventKind.LISTENING_TIMED_OUT:
            if self._state is LoopState.LISTENING:
                self._on_listening_timeout()
        elif event.kind is VADEventKind.SPEECH_ONSET:
            if self._state is LoopState.SPEAKING and self._config.barge_in_enabled:
                self._barge_in()
        elif event.kind is VADEventKind.SPEECH_ONGOING:
            pass

    def _on_listening_timeout(self) -> None:
        logger.info(f"[LOOP] no speech within {self._config.listening_timeout:.1f}s")
        self._transition(LoopState.IDLE)

    def _begin_transcribing(self, span: AudioSpan) -> None:
        epoch = self._transition(LoopState.TRANSCRIBING)
        self._spawn(self._recognize(epoch, span))

    def _on_transcript(self, epoch: int, result: TranscriptionResult, span: AudioSpan) -> None:
        if epoch != self._epoch:
            return
        text = (result.text or "").strip()
        if len(text) < self._config.min_transcript_chars or not result.is_confident():
            logger.info(f"[LOOP] nothing usable said (chars={len(text)} no_speech={result.no_speech_prob})")
            self._resume_or_idle()
            return

        sample = UtteranceSample(
            text=text,
            speech_seconds=span.speech_seconds,
            pause_count=span.pause_count,
            pause_seconds=span.pause_seconds,
        )
        self._commit_user_turn(text, sample=sample)

    def _commit_user_turn(
        self,
        text: str,
        *,
        sample: UtteranceSample,
        reply_future: asyncio.Future | None = None,
    ) -> None:
        turn = self._practice.add_turn(Speaker.USER, text)
        self._publish(TurnAppendedEvent(turn))
        self._accumulator.record_utterance(sample)
        self._user_turn_at = time.monotonic()

        epoch = self._transition(LoopState.AWAITING_REPLY)
        self._settle_reply(None)
        self._reply_future = reply_future
        self._spawn(self._generate(epoch, text))

    def _on_reply(self, epoch: int, reply: TutorReply) -> None:
        if epoch != self._epoch:
            return

        turn = self._practice.add_turn(
            Speaker.TUTOR,
            reply.reply_text,
            translation=reply.reply_translation,
        )
        self._publish(TurnAppendedEvent(turn))
        if self._user_turn_at is not None:
            self._accumulator.record_reply_latency(time.monotonic() - self._user_turn_at)

        for entry in self._accumulator.record_corrections(reply.corrections, timestamp=turn.timestamp):
            if self._config.provide_feedback_during_conversation:
                self._publish(FeedbackAddedEvent(entry))
            else:
                self._deferred_feedback.append(entry)

        self._settle_reply(turn)
        epoch = self._transition(LoopState.SPEAKING)
        self._spawn(self._play(epoch, turn.text))

    def _on_failure(self, epoch: int, source: str, message: str) -> None:
        if epoch != self._epoch:
            return
        self._accumulator.record_notice()
        self._publish(NoticeEvent(source=source, message=message))
        self._settle_reply(None)
        self._resume_or_idle()

    def _begin_cooldown(self, epoch: int) -> None:
        if epoch != self._epoch:
            return
        cooldown_epoch = self._transition(LoopState.COOLDOWN)
        self._spawn(self._cooldown(cooldown_epoch))

    def _barge_in(self) -> None:
        logger.info("[LOOP] barge-in, canceling playback")
        self._accumulator.record_barge_in()
        # Leaving SPEAKING cancels the player before the monitor is re-armed.
        self._transition(LoopState.LISTENING)

    def _fail(self, error: BaseException) -> None:
        logger.error(f"[LOOP] fatal: {error}")
        self._fatal_error = error
        self._voice_mode = False
        self._transition(LoopState.ENDED)
        self._settle_reply(None)
        self._publish(FatalErrorEvent(error))

    # ------------------------------------------------------------------
    # Async work (always epoch-checked before touching state)
    # ------------------------------------------------------------------

    async def _listening_watchdog(self, epoch: int) -> None:
        await asyncio.sleep(self._config.listening_timeout)
        if epoch == self._epoch and self._state is LoopState.LISTENING and not self._monitor.speech_detected:
            self._on_listening_timeout()

    async def _recognize(self, epoch: int, span: AudioSpan) -> None:
        attempts = 0
        while True:
            try:
                result = await asyncio.wait_for(
                    self._recognizer.transcribe(span),
                    timeout=self._config.recognition_timeout,
                )
            except asyncio.TimeoutError:
                error = RecognitionError(
                    f"recognition timed out after {self._config.recognition_timeout:.1f}s",
                    transient=True,
                )
            except RecognitionError as e:
                error = e
            else:
                self._on_transcript(epoch, result, span)
                return

            if epoch != self._epoch:
                return
            if error.transient and attempts < self._config.max_automatic_retries:
                attempts += 1
                logger.warning(f"[LOOP] recognition failed ({error}), retrying")
                continue
            logger.warning(f"[LOOP] recognition failed ({error}), giving up")
            self._on_failure(epoch, "recognition", RECOGNITION_NOTICE)
            return

    async def _generate(self, epoch: int, text: str) -> None:
        lesson = self._practice.lesson
        # The generator gets the new utterance separately from the history.
        context = self._practice.get_conversation_context(max_turns=self._context_turns + 1)[:-1]
        request = TutorRequest(
            language=lesson.language,
            level_label=lesson.level_label,
            conversation_context=context,
            user_utterance_text=text,
            lesson_context=lesson.context,
        )

        attempts = 0
        while True:
            try:
                reply = await asyncio.wait_for(
                    self._generator.generate(request),
                    timeout=self._config.generation_timeout,
                )
            except asyncio.TimeoutError:
                error = GenerationError(GenerationErrorKind.TIMEOUT, "generation timed out")
            except GenerationError as e:
                error = e
            else:
                self._on_reply(epoch, reply)
                return

            if epoch != self._epoch:
                return
            if attempts < self._config.max_automatic_retries:
                attempts += 1
                logger.warning(f"[LOOP] generation failed kind={error.kind.value}, retrying")
                continue
            logger.warning(f"[LOOP] generation failed kind={error.kind.value}, giving up")
            self._on_failure(epoch, "generation", GENERATION_NOTICE)
            return

    async def _play(self, epoch: int, text: str) -> None:
        try:
            async for event in self._player.speak(text, self._config.speaking_rate, self._config.pitch_multiplier):
                if event.kind is PlaybackEventKind.COMPLETED:
                    self._begin_cooldown(epoch)
                elif event.kind is PlaybackEventKind.CANCELED:
                    return
        except (SynthesisError, PlayerBusyError) as e:
            # The tutor turn is already in the log; only the audio is lost.
            logger.warning(f"[VOICE][TTS] playback skipped: {e}")
            self._begin_cooldown(epoch)

    async def _cooldown(self, epoch: int) -> None:
        await asyncio.sleep(self._config.response_delay)
        if epoch != self._epoch:
            return
        self._transition(LoopState.LISTENING if self._voice_mode else LoopState.IDLE)

    async def _pump(self) -> None:
        try:
            async for buffer in self._capture.buffers():
                self._on_buffer(buffer)
        except CaptureUnavailableError as e:
            self._fail(e)
            await self._stop_capture(from_pump=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._state_tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._state_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[LOOP] task failed", exc_info=exc)

    def _settle_reply(self, turn: ConversationTurn | None) -> None:
        future, self._reply_future = self._reply_future, None
        if future is not None and not future.done():
            future.set_result(turn)

    def _require_not_ended(self) -> None:
        if self._state is not LoopState.ENDED:
            return
        if self._fatal_error is not None:
            raise SessionEndedError(f"Session ended after a fatal error: {self._fatal_error}")
        raise SessionEndedError("Session has ended")

    async def _start_capture(self) -> None:
        if self._pump_task is not None and not self._pump_task.done():
            return
        await self._capture.start()
        if self._state is LoopState.ENDED or not self._voice_mode:
            # Stopped or switched off while the microphone was opening.
            await self._stop_capture()
            return
        if self._pump_task is not None and not self._pump_task.done():
            return
        self._pump_task = asyncio.get_running_loop().create_task(self._pump())

    async def _stop_capture(self, *, from_pump: bool = False) -> None:
        pump, self._pump_task = self._pump_task, None
        if pump is not None and not from_pump:
            pump.cancel()
        try:
            await self._capture.stop()
        except CaptureUnavailableError as e:
            logger.warning(f"[VOICE][AUDIO] error while stopping capture: {e}")
