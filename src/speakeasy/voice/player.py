"""Speech output player.

Wraps a playback backend (Piper + speakers by default) behind a small
contract: ``speak()`` returns a stream of started/completed/canceled
events and ``cancel()`` stops the current utterance synchronously.
Completion is reported only when the backend actually finishes playing.
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from speakeasy.voice.audio_io import AudioIO
from speakeasy.voice.speakable import to_speakable_reply
from speakeasy.voice.tts import PiperTTS, SynthesisError, length_scale_for_rate

logger = logging.getLogger(__name__)


class PlaybackEventKind(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class PlaybackEvent:
    kind: PlaybackEventKind
    utterance_id: int

    @property
    def is_terminal(self) -> bool:
        return self.kind is not PlaybackEventKind.STARTED


class PlayerBusyError(RuntimeError):
    """Raised when speak() is called while another utterance is still live."""


class PlaybackBackend(Protocol):
    async def play(self, text: str, *, rate: float, pitch: float) -> None:
        """Synthesize and play ``text``; return once playback has finished."""
        ...

    def stop(self) -> None:
        """Stop playback immediately. Must not block."""
        ...


class NullPlaybackBackend:
    """Backend for text-only sessions: nothing is played."""

    async def play(self, text: str, *, rate: float, pitch: float) -> None:
        return None

    def stop(self) -> None:
        return None


class PiperPlaybackBackend:
    """Synthesizes with Piper (cached per text and rate) and plays through AudioIO."""

    def __init__(self, tts: PiperTTS, audio: AudioIO, cache_dir: str | Path) -> None:
        self._tts = tts
        self._audio = audio
        self._cache_dir = Path(cache_dir)
        self._stopped = False
        self._warned_pitch = False

    async def play(self, text: str, *, rate: float, pitch: float) -> None:
        self._stopped = False
        speakable, dbg = to_speakable_reply(text)
        if speakable is None:
            logger.info(f"[VOICE][TTS] skipped reason={dbg.get('skip_reason')} debug={dbg}")
            return

        if pitch != 1.0 and not self._warned_pitch:
            logger.info(f"[VOICE][TTS] Piper has no pitch control, ignoring pitch={pitch}")
            self._warned_pitch = True

        length_scale = length_scale_for_rate(rate)
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        cache_key = hashlib.sha1(
            f"{speakable}\n{self._tts.config.model_path}\n{length_scale}".encode("utf-8")
        ).hexdigest()[:16]
        wavs = sorted(self._cache_dir.glob(f"{cache_key}_*.wav"))
        if not wavs:
            t0 = time.perf_counter()
            wavs = await self._tts.synthesize_to_wavs(
                speakable,
                out_dir=self._cache_dir,
                base_name=cache_key,
                length_scale=length_scale,
            )
            excerpt = speakable[:80].replace("\n", " ")
            logger.info(
                f"[VOICE][TTS] speak len={len(speakable)} sent={dbg.get('sentences')} "
                f"dur={time.perf_counter() - t0:.2f}s text=\"{excerpt}\""
            )

        for wav in wavs:
            if self._stopped:
                break
            if not await self._audio.play_wav(wav):
                logger.info(f"[VOICE][AUDIO] playback stopped wav={wav}")
                break

    def stop(self) -> None:
        self._stopped = True
        self._audio.stop_playback()


class _Utterance:
    def __init__(self, utterance_id: int) -> None:
        self.utterance_id = utterance_id
        self.queue: asyncio.Queue = asyncio.Queue()
        self.task: asyncio.Task | None = None
        self.finished = False

    def finish(self, item: PlaybackEvent | BaseException) -> None:
        """Enqueue the single terminal item for this utterance."""
        if self.finished:
            return
        self.finished = True
        self.queue.put_nowait(item)


class SpeechOutputPlayer:
    """Plays one utterance at a time with synchronous cancellation."""

    def __init__(self, backend: PlaybackBackend) -> None:
        self._backend = backend
        self._ids = itertools.count(1)
        self._current: _Utterance | None = None

    @property
    def is_active(self) -> bool:
        return self._current is not None and not self._current.finished

    def speak(self, text: str, rate: float = 0.5, pitch: float = 1.0) -> AsyncIterator[PlaybackEvent]:
        """
        Start speaking ``text``.

        Playback starts immediately; iterate the returned stream to follow
        it. The stream ends after its terminal event.

        Raises:
            PlayerBusyError: If the previous utterance has not finished.
        """
        if self.is_active:
            raise PlayerBusyError("Previous utterance is still playing")

        utt = _Utterance(next(self._ids))
        utt.queue.put_nowait(PlaybackEvent(PlaybackEventKind.STARTED, utt.utterance_id))
        utt.task = asyncio.get_running_loop().create_task(self._run(utt, text, rate, pitch))
        self._current = utt
        return self._events(utt)

    def cancel(self) -> bool:
        """
        Stop the current utterance.

        After this returns no further audio is emitted and the utterance's
        ``canceled`` event is already queued.

        Returns:
            True if something was playing.
        """
        utt = self._current
        if utt is None or utt.finished:
            return False
        self._backend.stop()
        utt.finish(PlaybackEvent(PlaybackEventKind.CANCELED, utt.utterance_id))
        if utt.task is not None:
            utt.task.cancel()
        logger.info(f"[VOICE][TTS] utterance {utt.utterance_id} canceled")
        return True

    async def _run(self, utt: _Utterance, text: str, rate: float, pitch: float) -> None:
        try:
            await self._backend.play(text, rate=rate, pitch=pitch)
        except asyncio.CancelledError:
            utt.finish(PlaybackEvent(PlaybackEventKind.CANCELED, utt.utterance_id))
            raise
        except SynthesisError as e:
            utt.finish(e)
        except Exception as e:
            err = SynthesisError(f"playback failed: {e}")
            err.__cause__ = e
            utt.finish(err)
        else:
            utt.finish(PlaybackEvent(PlaybackEventKind.COMPLETED, utt.utterance_id))

    async def _events(self, utt: _Utterance) -> AsyncIterator[PlaybackEvent]:
        while True:
            item = await utt.queue.get()
            if isinstance(item, BaseException):
                raise item
            yield item
            if item.is_terminal:
                return
