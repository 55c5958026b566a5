"""Energy-based voice activity detection.

The monitor only reports observations; it never decides what the loop
does next. Time is measured from buffer lengths, not the wall clock, so
feeding the same buffers always yields the same events.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum

import numpy as np

from speakeasy.session.schemas import VoiceLoopConfig

logger = logging.getLogger(__name__)

# RMS thresholds at sensitivity 1.0 and 0.0 (float samples in [-1, 1]).
MIN_THRESHOLD = 0.005
MAX_THRESHOLD = 0.05
NOISE_FLOOR_ALPHA = 0.1
# Buffer durations are summed as floats; ten 0.1s buffers must reach 1.0s.
_TIME_EPS = 1e-9


class VADEventKind(str, Enum):
    SPEECH_ONGOING = "speech_ongoing"
    UTTERANCE_FINALIZED = "utterance_finalized"
    LISTENING_TIMED_OUT = "listening_timed_out"
    SPEECH_ONSET = "speech_onset"


class MonitorMode(str, Enum):
    STOPPED = "stopped"
    LISTENING = "listening"
    SPEAKING = "speaking"


@dataclass(frozen=True)
class AudioSpan:
    """One finalized utterance: mono float32 samples plus timing."""

    samples: np.ndarray
    sample_rate: int
    speech_seconds: float = 0.0
    pause_count: int = 0
    pause_seconds: float = 0.0

    @property
    def duration_s(self) -> float:
        return len(self.samples) / float(self.sample_rate) if self.sample_rate else 0.0


@dataclass(frozen=True)
class VADEvent:
    kind: VADEventKind
    elapsed_s: float = 0.0
    span: AudioSpan | None = None


def to_mono_float32(buffer: np.ndarray) -> np.ndarray:
    """Convert an int16 or float buffer of shape [n] or [n, ch] to mono float32."""
    a = np.asarray(buffer)
    if a.dtype == np.int16:
        a = a.astype(np.float32) / 32768.0
    else:
        a = a.astype(np.float32, copy=False)
    if a.ndim > 1:
        a = a.mean(axis=1)
    return a


def rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples))))


def threshold_for_sensitivity(sensitivity: float) -> float:
    """Higher sensitivity means a lower energy threshold."""
    s = min(max(sensitivity, 0.0), 1.0)
    return MIN_THRESHOLD + (1.0 - s) * (MAX_THRESHOLD - MIN_THRESHOLD)


class VoiceActivityMonitor:
    """
    Turns a stream of audio buffers into VAD events.

    A listening episode starts with ``begin_listening()`` and ends with
    exactly one terminal event: UTTERANCE_FINALIZED once trailing silence
    reaches the shorter of ``silence_threshold`` and ``pause_threshold``
    after speech, or LISTENING_TIMED_OUT once ``listening_timeout`` passes
    without speech. A speaking episode
    (``begin_speaking()``) emits at most one SPEECH_ONSET. After a terminal
    event the monitor stops and ignores buffers until re-armed.
    """

    def __init__(
        self,
        config: VoiceLoopConfig,
        sample_rate: int = 16000,
        *,
        min_speech_buffers: int = 2,
        pre_roll_buffers: int = 3,
        max_utterance_s: float = 30.0,
    ) -> None:
        self._config = config
        self._sample_rate = sample_rate
        self._min_speech_buffers = max(1, min_speech_buffers)
        self._max_utterance_s = max_utterance_s
        self._threshold = threshold_for_sensitivity(config.voice_detection_sensitivity)
        self._end_of_utterance_s = min(config.silence_threshold, config.pause_threshold)
        self._noise_floor = 0.0

        self._mode = MonitorMode.STOPPED
        self._pre_roll: deque[np.ndarray] = deque(maxlen=pre_roll_buffers + self._min_speech_buffers)
        self._utterance: list[np.ndarray] = []
        self._reset_episode()

    @property
    def mode(self) -> MonitorMode:
        return self._mode

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def noise_floor(self) -> float:
        return self._noise_floor

    @property
    def speech_detected(self) -> bool:
        """True once speech has been confirmed in the current listening episode."""
        return self._speech_started

    @property
    def elapsed_s(self) -> float:
        return self._elapsed

    def begin_listening(self) -> None:
        self._reset_episode()
        self._mode = MonitorMode.LISTENING

    def begin_speaking(self) -> None:
        self._reset_episode()
        self._mode = MonitorMode.SPEAKING

    def stop(self) -> None:
        self._reset_episode()
        self._mode = MonitorMode.STOPPED

    def process(self, buffer: np.ndarray) -> VADEvent | None:
        """
        Feed one capture buffer.

        Args:
            buffer: int16 or float samples, mono or multi-channel.

        Returns:
            The event this buffer produced, or None.
        """
        if self._mode is MonitorMode.STOPPED:
            return None

        samples = to_mono_float32(buffer)
        if samples.size == 0:
            return None

        duration = samples.size / float(self._sample_rate)
        self._elapsed += duration
        loud = self._is_loud(samples)

        if self._mode is MonitorMode.SPEAKING:
            return self._process_speaking(loud)
        return self._process_listening(samples, duration, loud)

    def _process_speaking(self, loud: bool) -> VADEvent | None:
        self._loud_run = self._loud_run + 1 if loud else 0
        if self._loud_run >= self._min_speech_buffers:
            logger.debug(f"[VAD] speech onset during playback after {self._elapsed:.2f}s")
            self._mode = MonitorMode.STOPPED
            return VADEvent(VADEventKind.SPEECH_ONSET, elapsed_s=self._elapsed)
        return None

    def _process_listening(self, samples: np.ndarray, duration: float, loud: bool) -> VADEvent | None:
        if not self._speech_started:
            self._pre_roll.append(samples)
            self._loud_run = self._loud_run + 1 if loud else 0
            if self._loud_run >= self._min_speech_buffers:
                self._speech_started = True
                self._utterance = list(self._pre_roll)
                self._utterance_s = sum(b.size for b in self._utterance) / float(self._sample_rate)
                self._pre_roll.clear()
                logger.debug(f"[VAD] speech started after {self._elapsed:.2f}s")
                return VADEvent(VADEventKind.SPEECH_ONGOING, elapsed_s=self._elapsed)
            if self._elapsed + _TIME_EPS >= self._config.listening_timeout:
                logger.debug(f"[VAD] no speech within {self._config.listening_timeout:.2f}s")
                self._mode = MonitorMode.STOPPED
                return VADEvent(VADEventKind.LISTENING_TIMED_OUT, elapsed_s=self._elapsed)
            return None

        self._utterance.append(samples)
        self._utterance_s += duration
        if loud:
            self._silence_run = 0.0
        else:
            self._silence_run += duration

        if (
            self._silence_run + _TIME_EPS >= self._end_of_utterance_s
            or self._utterance_s + _TIME_EPS >= self._max_utterance_s
        ):
            return self._finalize()
        return VADEvent(VADEventKind.SPEECH_ONGOING, elapsed_s=self._elapsed)

    def _finalize(self) -> VADEvent:
        pause_count = 0
        pause_s = 0.0
        if self._silence_run + _TIME_EPS >= self._config.pause_threshold:
            # The silence that closed the utterance is its pause.
            pause_count = 1
            pause_s = self._silence_run
        span = AudioSpan(
            samples=np.concatenate(self._utterance) if self._utterance else np.zeros(0, dtype=np.float32),
            sample_rate=self._sample_rate,
            speech_seconds=max(0.0, self._utterance_s - self._silence_run),
            pause_count=pause_count,
            pause_seconds=pause_s,
        )
        logger.debug(
            f"[VAD] utterance finalized dur={span.duration_s:.2f}s speech={span.speech_seconds:.2f}s "
            f"pauses={span.pause_count}"
        )
        self._mode = MonitorMode.STOPPED
        self._utterance = []
        return VADEvent(VADEventKind.UTTERANCE_FINALIZED, elapsed_s=self._elapsed, span=span)

    def _is_loud(self, samples: np.ndarray) -> bool:
        level = rms(samples)
        if self._config.background_noise_reduction:
            level = max(0.0, level - self._noise_floor)
        loud = level >= self._threshold
        if not loud:
            # The floor only follows buffers that were not classified as speech.
            self._noise_floor += NOISE_FLOOR_ALPHA * (rms(samples) - self._noise_floor)
        return loud

    def _reset_episode(self) -> None:
        self._elapsed = 0.0
        self._loud_run = 0
        self._speech_started = False
        self._silence_run = 0.0
        self._utterance_s = 0.0
        self._pre_roll.clear()
        self._utterance = []
