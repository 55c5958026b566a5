"""Text-to-speech (offline).

Default implementation uses `piper` via subprocess if available.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


class SynthesisError(RuntimeError):
    """Raised when speech could not be synthesized."""


@dataclass(frozen=True)
class TTSConfig:
    piper_bin: str = "piper"
    model_path: str | None = None  # path to *.onnx
    speaker_id: int | None = None
    max_chars_per_chunk: int = 350
    timeout_s: float = 60.0


def length_scale_for_rate(rate: float) -> float:
    """Map a 0-1 speaking rate (0.5 is normal) to Piper's length scale.

    Piper stretches phoneme durations by ``length_scale``; larger is slower.
    """
    r = min(max(rate, 0.05), 1.0)
    return round(1.0 / (0.5 + r), 3)


def chunk_text(text: str, max_chars: int) -> list[str]:
    t = (text or "").strip()
    if not t:
        return []

    # Split on sentence-ish boundaries, then re-pack into chunks.
    parts = [p.strip() for p in re.split(r"(?<=[.!?¡¿。])\s+", t) if p.strip()]
    chunks: list[str] = []
    current = ""
    for p in parts:
        if not current:
            current = p
        elif len(current) + 1 + len(p) <= max_chars:
            current = current + " " + p
        else:
            chunks.append(current)
            current = p
    if current:
        chunks.append(current)

    # Hard-split anything still over the limit.
    out: list[str] = []
    for c in chunks:
        if len(c) <= max_chars:
            out.append(c)
        else:
            out.extend(c[i : i + max_chars] for i in range(0, len(c), max_chars))
    return out


class TTSProvider:
    async def synthesize_to_wavs(
        self,
        text: str,
        out_dir: str | Path,
        base_name: str,
        *,
        length_scale: float | None = None,
    ) -> list[Path]:
        raise NotImplementedError


class PiperTTS(TTSProvider):
    def __init__(self, config: TTSConfig | None = None) -> None:
        self._config = config or TTSConfig()
        self._validated_piper_path: str | None = None

    @property
    def config(self) -> TTSConfig:
        return self._config

    def is_available(self) -> tuple[bool, str]:
        try:
            _ = self._require_piper()
            return True, "ok"
        except SynthesisError as e:
            return False, str(e)

    def _looks_like_piper_tts(self, piper_path: str) -> bool:
        try:
            r = subprocess.run(
                [piper_path, "--help"],
                check=False,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=5,
            )
        except (OSError, subprocess.SubprocessError):
            return False

        out = (r.stdout or "").lower()
        # Piper TTS CLI typically supports these flags.
        return ("--model" in out or "--output_file" in out) and "application options" not in out

    def _require_piper(self) -> str:
        if self._validated_piper_path:
            return self._validated_piper_path

        p = shutil.which(self._config.piper_bin)
        if not p:  # pragma: no cover
            raise SynthesisError(
                "piper CLI not found. Install piper (binary) and ensure it's on PATH, "
                "or set SPEAKEASY_PIPER_BIN to its path."
            )
        if not self._looks_like_piper_tts(p):  # pragma: no cover
            raise SynthesisError(
                "Found a `piper` binary, but it does not look like the Piper TTS CLI "
                "(common on Linux: /usr/bin/piper is a GTK app). "
                "Install Piper TTS and set SPEAKEASY_PIPER_BIN to that binary path, then retry."
            )
        if not self._config.model_path:  # pragma: no cover
            raise SynthesisError("Piper model path not configured. Set SPEAKEASY_PIPER_MODEL=/path/to/voice.onnx.")

        self._validated_piper_path = p
        return p

    def build_command(self, piper_bin: str, wav_path: Path, *, length_scale: float | None = None) -> list[str]:
        cmd = [piper_bin, "--model", str(self._config.model_path), "--output_file", str(wav_path)]
        if self._config.speaker_id is not None:
            cmd += ["--speaker", str(self._config.speaker_id)]
        if length_scale is not None:
            cmd += ["--length_scale", f"{length_scale:g}"]
        return cmd

    async def synthesize_to_wavs(
        self,
        text: str,
        out_dir: str | Path,
        base_name: str,
        *,
        length_scale: float | None = None,
    ) -> list[Path]:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        piper_bin = self._require_piper()
        chunks = chunk_text(text, self._config.max_chars_per_chunk)
        if not chunks:
            return []

        def _call(cmd: list[str], chunk: str) -> None:
            try:
                subprocess.run(
                    cmd,
                    input=chunk,
                    text=True,
                    check=True,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    timeout=self._config.timeout_s,
                )
            except subprocess.TimeoutExpired as e:  # pragma: no cover
                raise SynthesisError(
                    f"piper timed out after {self._config.timeout_s:.1f}s. "
                    f"model={self._config.model_path!s}. "
                    "Consider reducing max_chars_per_chunk or increasing timeout_s."
                ) from e
            except subprocess.CalledProcessError as e:  # pragma: no cover
                stderr = (e.stderr or "").strip()
                raise SynthesisError(
                    f"piper failed (exit={e.returncode}). "
                    f"model={self._config.model_path!s}. "
                    f"stderr={stderr or '<empty>'}"
                ) from e
            except OSError as e:  # pragma: no cover
                raise SynthesisError(f"could not run piper: {e}") from e

        wavs: list[Path] = []
        for idx, chunk in enumerate(chunks):
            wav_path = out_dir / f"{base_name}_{idx:02d}.wav"
            await asyncio.to_thread(_call, self.build_command(piper_bin, wav_path, length_scale=length_scale), chunk)
            wavs.append(wav_path)

        return wavs
