import asyncio
from pathlib import Path

import pytest

from speakeasy.voice.player import PiperPlaybackBackend
from speakeasy.voice.speakable import to_speakable_reply
from speakeasy.voice.tts import PiperTTS, TTSConfig, chunk_text, length_scale_for_rate


class FakeTTS(PiperTTS):
    def __init__(self) -> None:
        super().__init__(TTSConfig(model_path="/models/es_ES.onnx"))
        self.calls: list[tuple[str, float | None]] = []

    async def synthesize_to_wavs(self, text: str, out_dir, base_name: str, *, length_scale=None):
        self.calls.append((text, length_scale))
        wav = Path(out_dir) / f"{base_name}_00.wav"
        wav.write_bytes(b"RIFF")
        return [wav]


class FakeAudio:
    def __init__(self) -> None:
        self.played: list[Path] = []
        self.stopped = 0

    async def play_wav(self, wav_path, *, timeout_s: float = 60.0) -> bool:
        self.played.append(Path(wav_path))
        return True

    def stop_playback(self) -> None:
        self.stopped += 1


def test_to_speakable_strips_reasoning_and_markdown():
    text = "<think>the learner used ser instead of estar</think>**¡Muy bien!** ¿Cómo te llamas?"

    speak, dbg = to_speakable_reply(text)
    assert speak == "¡Muy bien! ¿Cómo te llamas?"
    assert dbg["stripped_reasoning"] is True
    assert dbg["skipped"] is False


def test_to_speakable_skips_json_and_code_fences():
    speak, dbg = to_speakable_reply('{"response": "Hola", "corrections": []}')
    assert speak is None
    assert dbg["skip_reason"] == "contained_json"

    speak2, dbg2 = to_speakable_reply("```json\n{\"a\": 1}\n```")
    assert speak2 is None
    assert dbg2["skip_reason"] == "contained_code_fence"

    speak3, dbg3 = to_speakable_reply("   ")
    assert speak3 is None
    assert dbg3["skip_reason"] == "empty"


def test_to_speakable_caps_sentences_and_length():
    text = "Uno. Dos. Tres. Cuatro. Cinco."
    speak, dbg = to_speakable_reply(text, max_sentences=2)
    assert speak == "Uno. Dos."
    assert dbg["truncated"] is True

    speak2, _ = to_speakable_reply("a" * 50, max_chars=10)
    assert speak2 == "a" * 9 + "…"


def test_rate_maps_to_piper_length_scale():
    assert length_scale_for_rate(0.5) == 1.0
    assert length_scale_for_rate(1.0) < 1.0 < length_scale_for_rate(0.2)


def test_chunk_text_packs_sentences():
    assert chunk_text("Hola. ¿Qué tal? Muy bien.", max_chars=16) == ["Hola. ¿Qué tal?", "Muy bien."]
    assert chunk_text("", max_chars=10) == []


def test_piper_command_includes_length_scale(tmp_path):
    tts = PiperTTS(TTSConfig(model_path="/models/es_ES.onnx", speaker_id=2))
    cmd = tts.build_command("piper", tmp_path / "out.wav", length_scale=1.25)
    assert cmd[:3] == ["piper", "--model", "/models/es_ES.onnx"]
    assert "--length_scale" in cmd
    assert cmd[cmd.index("--length_scale") + 1] == "1.25"
    assert cmd[cmd.index("--speaker") + 1] == "2"


def test_piper_backend_speaks_filtered_text_and_caches(tmp_path):
    tts = FakeTTS()
    audio = FakeAudio()
    backend = PiperPlaybackBackend(tts, audio, tmp_path / "cache")

    async def _run():
        await backend.play("<think>hidden</think>¡Hola! ¿Qué tal?", rate=0.5, pitch=1.0)
        await backend.play("<think>other</think>¡Hola! ¿Qué tal?", rate=0.5, pitch=1.0)
        await backend.play('{"response": "Hola"}', rate=0.5, pitch=1.0)

    asyncio.run(_run())

    # Same speakable text and rate: synthesized once, played twice. JSON is never spoken.
    assert tts.calls == [("¡Hola! ¿Qué tal?", 1.0)]
    assert len(audio.played) == 2


def test_piper_backend_stop_interrupts_playback(tmp_path):
    audio = FakeAudio()
    backend = PiperPlaybackBackend(FakeTTS(), audio, tmp_path / "cache")
    backend.stop()
    assert audio.stopped == 1


@pytest.mark.asyncio
async def test_missing_piper_raises_synthesis_error(tmp_path):
    from speakeasy.voice.tts import SynthesisError

    tts = PiperTTS(TTSConfig(piper_bin=str(tmp_path / "no-such-piper"), model_path=str(tmp_path / "m.onnx")))
    with pytest.raises(SynthesisError):
        await tts.synthesize_to_wavs("Hola", out_dir=tmp_path, base_name="x")
