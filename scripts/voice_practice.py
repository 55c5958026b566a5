#!/usr/bin/env python

import argparse
import asyncio
import os

from speakeasy.config import get_settings
from speakeasy.io.voice_interface import VoiceInterface
from speakeasy.main import build_voice_loop, setup_logging
from speakeasy.models.llm_client import LLMClient
from speakeasy.session.schemas import LessonReference
from speakeasy.storage.preferences import InMemoryPreferenceStore, JsonPreferenceStore


def _flag(v: str | None) -> bool | None:
    if v is None:
        return None
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Practice a spoken conversation with the SpeakEasy tutor")
    p.add_argument("--language", default=os.getenv("SPEAKEASY_LANGUAGE", "Spanish"), help="Target language")
    p.add_argument("--level", default=os.getenv("SPEAKEASY_LEVEL", "Beginner"), help="Learner level label")
    p.add_argument("--context", default="General", help="Conversation topic")
    p.add_argument("--lesson-id", default="free-conversation")
    p.add_argument("--title", default="Free conversation")

    p.add_argument(
        "--artifacts-dir",
        default=os.getenv("SPEAKEASY_ARTIFACTS_DIR", "data/sessions"),
        help="Where to store session transcripts (default: SPEAKEASY_ARTIFACTS_DIR or data/sessions)",
    )
    p.add_argument(
        "--preferences",
        default=os.getenv("SPEAKEASY_PREFERENCES_PATH", "data/voice_preferences.json"),
        help="Voice preferences JSON file (default: SPEAKEASY_PREFERENCES_PATH)",
    )
    p.add_argument("--show-states", action="store_true", help="Print loop state changes")

    # One-off overrides of the stored preferences; applied to this session only.
    p.add_argument(
        "--allow-barge-in",
        default=os.getenv("SPEAKEASY_ALLOW_BARGE_IN"),
        help="Let the learner interrupt the tutor (needs echo mode; default: stored preference)",
    )
    p.add_argument(
        "--echo-mode",
        default=os.getenv("SPEAKEASY_ECHO_MODE"),
        help="Keep the microphone live while the tutor speaks (default: stored preference)",
    )
    p.add_argument(
        "--silence-threshold",
        type=float,
        default=None,
        help="Seconds of silence that end an utterance (default: stored preference)",
    )
    p.add_argument(
        "--listening-timeout",
        type=float,
        default=None,
        help="Seconds to wait for speech to begin (default: stored preference)",
    )

    # STT
    p.add_argument(
        "--stt-model",
        default=os.getenv("SPEAKEASY_STT_MODEL", "small"),
        help="faster-whisper model size (default: SPEAKEASY_STT_MODEL or 'small')",
    )
    p.add_argument(
        "--stt-device",
        default=os.getenv("SPEAKEASY_STT_DEVICE", "cpu"),
        choices=["cpu", "cuda", "auto"],
        help="STT device (default: SPEAKEASY_STT_DEVICE or 'cpu')",
    )

    # TTS
    p.add_argument(
        "--piper-bin",
        default=os.getenv("SPEAKEASY_PIPER_BIN", "piper"),
        help="Path/name of Piper TTS binary (default: SPEAKEASY_PIPER_BIN or 'piper')",
    )
    p.add_argument(
        "--piper-model",
        default=os.getenv("SPEAKEASY_PIPER_MODEL", None),
        help="Path to Piper .onnx model (default: SPEAKEASY_PIPER_MODEL)",
    )
    p.add_argument(
        "--piper-timeout",
        type=float,
        default=float(os.getenv("SPEAKEASY_PIPER_TIMEOUT_S", "60") or "60"),
        help="Timeout (seconds) per Piper synthesis chunk (default: SPEAKEASY_PIPER_TIMEOUT_S or 60)",
    )
    p.add_argument("--sample-rate", type=int, default=int(os.getenv("SPEAKEASY_SAMPLE_RATE", "16000") or "16000"))

    return p


def session_overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {}
    barge_in = _flag(args.allow_barge_in)
    if barge_in is not None:
        overrides["interruption_allowed"] = barge_in
    echo = _flag(args.echo_mode)
    if echo is not None:
        overrides["echo_mode_enabled"] = echo
    if args.silence_threshold is not None:
        overrides["silence_threshold"] = args.silence_threshold
    if args.listening_timeout is not None:
        overrides["listening_timeout"] = args.listening_timeout
    return overrides


async def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging()

    settings = get_settings().model_copy(
        update={
            "stt_model": args.stt_model,
            "stt_device": args.stt_device,
            "piper_bin": args.piper_bin,
            "piper_model": args.piper_model,
            "piper_timeout_s": args.piper_timeout,
            "sample_rate": args.sample_rate,
            "artifacts_dir": args.artifacts_dir,
        }
    )

    stored = JsonPreferenceStore(args.preferences).load()
    config = stored.model_validate({**stored.model_dump(), **session_overrides(args)})

    llm_client = LLMClient(model=settings.llm_model_name, endpoint=settings.ollama_endpoint, timeout=settings.llm_timeout)
    loop = build_voice_loop(
        settings,
        voice=True,
        llm_client=llm_client,
        preferences=InMemoryPreferenceStore(config),
    )
    lesson = LessonReference(
        lesson_id=args.lesson_id,
        title=args.title,
        language=args.language,
        level_label=args.level,
        context=args.context,
    )

    try:
        await VoiceInterface(loop, lesson, artifacts_dir=args.artifacts_dir, show_states=args.show_states).run()
    finally:
        await llm_client.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        raise SystemExit(0)
