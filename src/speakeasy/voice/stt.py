"""Speech-to-text (offline).

Default implementation uses `faster-whisper` if installed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import numpy as np

from speakeasy.voice.vad import AudioSpan

logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000


@dataclass(frozen=True)
class STTConfig:
    model_size: str = "small"
    # Default to CPU to avoid hard crashes when CUDA/cuDNN aren't present.
    device: str = "cpu"  # cpu|cuda|auto
    compute_type: str | None = None  # e.g. int8, float16
    language: str | None = None  # BCP-47 tag or ISO code; "en-US" -> "en"
    # Spans are already cut by the voice activity monitor.
    vad_filter: bool = False


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None

    def is_confident(self, *, min_avg_logprob: float = -1.2, max_no_speech_prob: float = 0.9) -> bool:
        if self.no_speech_prob is not None and self.no_speech_prob >= max_no_speech_prob:
            return False
        if self.avg_logprob is not None and self.avg_logprob <= min_avg_logprob:
            return False
        return True


class RecognitionError(Exception):
    """Raised when a span could not be transcribed.

    ``transient`` errors (timeouts, a busy backend) are worth one retry with
    the same audio; the rest are not.
    """

    def __init__(self, message: str, *, transient: bool = True) -> None:
        super().__init__(message)
        self.transient = transient


class RecognitionAdapter:
    async def transcribe(self, span: AudioSpan) -> TranscriptionResult:
        raise NotImplementedError


def whisper_language(tag: str | None) -> str | None:
    if not tag:
        return None
    return tag.replace("_", "-").split("-", 1)[0].lower() or None


def resample(samples: np.ndarray, src_rate: int, dst_rate: int = WHISPER_SAMPLE_RATE) -> np.ndarray:
    """Linear-interpolation resample; good enough for speech recognition."""
    if src_rate == dst_rate or samples.size == 0:
        return samples.astype(np.float32, copy=False)
    n_out = int(round(samples.size * dst_rate / float(src_rate)))
    x_old = np.linspace(0.0, 1.0, num=samples.size, endpoint=False)
    x_new = np.linspace(0.0, 1.0, num=n_out, endpoint=False)
    return np.interp(x_new, x_old, samples).astype(np.float32)


class WhisperRecognizer(RecognitionAdapter):
    """faster-whisper wrapper working on in-memory spans."""

    def __init__(self, config: STTConfig | None = None) -> None:
        self._config = config or STTConfig()
        self._model = None

    @property
    def config(self) -> STTConfig:
        return self._config

    def _load_model(self):
        if self._model is not None:
            return self._model

        try:
            from faster_whisper import WhisperModel  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise RecognitionError(
                "faster-whisper is required for STT. Install with: pip install -e '.[voice]'",
                transient=False,
            ) from e

        device = self._config.device
        if device == "auto":
            # Be conservative: prefer CPU unless user explicitly requests CUDA.
            device = "cpu"

        kwargs = {}
        if self._config.compute_type:
            kwargs["compute_type"] = self._config.compute_type

        logger.info(f"[VOICE][STT] loading faster-whisper model={self._config.model_size} device={device}")
        self._model = WhisperModel(self._config.model_size, device=device, **kwargs)
        return self._model

    async def transcribe(self, span: AudioSpan) -> TranscriptionResult:
        audio = resample(span.samples, span.sample_rate)
        if audio.size == 0:
            return TranscriptionResult(text="")

        def _run() -> TranscriptionResult:
            model = self._load_model()
            segments, _info = model.transcribe(
                audio,
                language=whisper_language(self._config.language),
                vad_filter=self._config.vad_filter,
            )
            # Segments are produced lazily; consume them inside the worker thread.
            segments = list(segments)
            text = " ".join(s.text.strip() for s in segments if s.text and s.text.strip()).strip()
            if not segments:
                return TranscriptionResult(text=text)
            avg_logprob = sum(s.avg_logprob for s in segments) / len(segments)
            no_speech_prob = max(s.no_speech_prob for s in segments)
            return TranscriptionResult(text=text, avg_logprob=avg_logprob, no_speech_prob=no_speech_prob)

        try:
            return await asyncio.to_thread(_run)
        except RecognitionError:
            raise
        except RuntimeError as e:
            # CTranslate2 reports device and memory trouble as RuntimeError.
            raise RecognitionError(f"faster-whisper failed: {e}", transient=True) from e
