"""Audio capture + playback.

This module is intentionally "dumb hardware I/O": it knows nothing about
lessons, turns or the language model.

It provides:
- continuous microphone capture as an async stream of numpy buffers
- WAV loading
- speaker playback that can be stopped from the event loop
"""

from __future__ import annotations

import asyncio
import logging
import wave
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np

logger = logging.getLogger(__name__)


class CaptureUnavailableError(RuntimeError):
    """The microphone cannot be used (missing device, denied permission, stream died)."""


@dataclass(frozen=True)
class AudioIOConfig:
    sample_rate: int = 16000
    channels: int = 1
    dtype: str = "int16"  # sounddevice dtype and WAV sample width
    block_duration_s: float = 0.1
    max_queued_buffers: int = 100

    @property
    def blocksize(self) -> int:
        return max(1, int(self.sample_rate * self.block_duration_s))


def _require_sounddevice():
    try:
        import sounddevice as sd  # type: ignore

        return sd
    except (ImportError, OSError) as e:  # pragma: no cover
        raise CaptureUnavailableError(
            "sounddevice is required for voice mode. Install Python deps with: pip install -e '.[voice]'. "
            "If you see 'PortAudio library not found', install PortAudio (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
        ) from e


class CaptureSource(Protocol):
    @property
    def sample_rate(self) -> int: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def buffers(self) -> AsyncIterator[np.ndarray]: ...


_STREAM_FINISHED = object()


class AudioCaptureSource:
    """
    Continuous microphone capture.

    The sounddevice callback runs on PortAudio's thread and hands buffers
    to the event loop with ``call_soon_threadsafe``. When the queue is full
    the oldest buffer is dropped.
    """

    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self._stream = None
        self._queue: asyncio.Queue | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._dropped = 0

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    @property
    def sample_rate(self) -> int:
        return self._config.sample_rate

    @property
    def is_running(self) -> bool:
        return self._stream is not None

    async def start(self) -> None:
        """Open the input stream.

        Raises:
            CaptureUnavailableError: If no usable input device exists.
        """
        if self._stream is not None:
            return

        sd = _require_sounddevice()
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._config.max_queued_buffers)
        self._dropped = 0
        loop = self._loop

        def callback(indata, frames, time, status):  # noqa: ANN001
            if status:
                logger.debug(f"Input status: {status}")
            loop.call_soon_threadsafe(self._enqueue, indata.copy())

        def finished() -> None:
            loop.call_soon_threadsafe(self._enqueue, _STREAM_FINISHED)

        try:
            stream = sd.InputStream(
                samplerate=self._config.sample_rate,
                channels=self._config.channels,
                dtype=self._config.dtype,
                blocksize=self._config.blocksize,
                callback=callback,
                finished_callback=finished,
            )
            await asyncio.to_thread(stream.start)
        except (sd.PortAudioError, ValueError) as e:
            raise CaptureUnavailableError(f"Could not open microphone: {e}") from e

        self._stream = stream
        logger.info(
            f"[VOICE][AUDIO] capture started sr={self._config.sample_rate} block={self._config.blocksize}"
        )

    async def stop(self) -> None:
        if self._stream is None:
            return

        stream = self._stream
        self._stream = None
        await asyncio.to_thread(stream.stop)
        await asyncio.to_thread(stream.close)
        if self._dropped:
            logger.info(f"[VOICE][AUDIO] capture stopped, dropped {self._dropped} buffer(s)")

    async def buffers(self) -> AsyncIterator[np.ndarray]:
        """Yield captured buffers until ``stop()`` is called.

        Raises:
            CaptureUnavailableError: If the stream ends while still expected to run.
        """
        if self._queue is None:
            raise CaptureUnavailableError("Capture has not been started")
        queue = self._queue
        while True:
            item = await queue.get()
            if item is _STREAM_FINISHED:
                if self._stream is not None:
                    self._stream = None
                    raise CaptureUnavailableError("Microphone stream ended unexpectedly")
                return
            yield item

    def _enqueue(self, item: object) -> None:
        if self._queue is None:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self._dropped += 1
        self._queue.put_nowait(item)


class AudioIO:
    """Speaker playback."""

    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self._stopped = False

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    def read_wav(self, wav_path: str | Path) -> tuple[np.ndarray, int]:
        wav_path = Path(wav_path)
        with wave.open(str(wav_path), "rb") as wf:
            sr = wf.getframerate()
            n_channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            if sampwidth != 2:
                raise ValueError(f"Only 16-bit WAV supported, got sampwidth={sampwidth}")
            frames = wf.readframes(wf.getnframes())

        audio = np.frombuffer(frames, dtype=np.int16)
        if n_channels > 1:
            audio = audio.reshape(-1, n_channels)
        else:
            audio = audio.reshape(-1, 1)
        return audio, sr

    async def play_wav(self, wav_path: str | Path, *, timeout_s: float = 60.0) -> bool:
        """Play a WAV file. Returns False if ``stop_playback()`` cut it short."""
        sd = _require_sounddevice()

        audio, sr = self.read_wav(wav_path)
        audio_f32 = audio.astype(np.float32) / 32768.0
        if audio_f32.shape[1] == 1:
            audio_f32 = audio_f32.squeeze(-1)

        self._stopped = False
        sd.play(audio_f32, samplerate=sr, blocking=False)
        try:
            await asyncio.wait_for(asyncio.to_thread(sd.wait), timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"[VOICE][AUDIO] playback exceeded {timeout_s:.1f}s, stopping wav={wav_path}")
            sd.stop()
            return False
        return not self._stopped

    def stop_playback(self) -> None:
        """Stop any sound currently playing. Safe to call from the event loop."""
        self._stopped = True
        try:
            sd = _require_sounddevice()
        except CaptureUnavailableError:
            return
        sd.stop()
