"""
Main entry point for the SpeakEasy practice application.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from speakeasy.agents.response_generator import TutorResponseGenerator
from speakeasy.config import Settings, get_settings
from speakeasy.io.text_interface import TextInterface
from speakeasy.models.llm_client import LLMClient
from speakeasy.orchestrator.voice_loop import VoiceLoop
from speakeasy.session.progress import JsonProgressStore, ProgressTracker
from speakeasy.session.schemas import LessonReference
from speakeasy.storage.preferences import InMemoryPreferenceStore, JsonPreferenceStore, PreferenceStore
from speakeasy.voice.audio_io import AudioCaptureSource, AudioIO, AudioIOConfig
from speakeasy.voice.player import NullPlaybackBackend, PiperPlaybackBackend, SpeechOutputPlayer
from speakeasy.voice.stt import STTConfig, WhisperRecognizer
from speakeasy.voice.tts import PiperTTS, TTSConfig


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_voice_loop(
    settings: Settings,
    *,
    voice: bool,
    llm_client: LLMClient | None = None,
    preferences: PreferenceStore | None = None,
    daily_goal: int | None = None,
) -> VoiceLoop:
    """
    Wire a VoiceLoop from settings.

    Audio components are created either way; their native dependencies are
    only loaded once voice mode is turned on. Without ``voice`` replies are
    not spoken.
    """
    preferences = preferences or JsonPreferenceStore(settings.preferences_path)
    config = preferences.load()
    audio_cfg = AudioIOConfig(sample_rate=settings.sample_rate, block_duration_s=settings.block_duration_s)

    if voice:
        tts = PiperTTS(
            TTSConfig(
                piper_bin=settings.piper_bin,
                model_path=settings.piper_model,
                timeout_s=settings.piper_timeout_s,
            )
        )
        backend = PiperPlaybackBackend(tts, AudioIO(audio_cfg), Path(settings.artifacts_dir) / "tts_cache")
    else:
        backend = NullPlaybackBackend()
        # Typed practice never opens the microphone on its own.
        preferences = InMemoryPreferenceStore(config.model_copy(update={"auto_start_recording": False}))

    progress = ProgressTracker(store=JsonProgressStore(settings.progress_path))
    if daily_goal is not None:
        progress.update_daily_goal(daily_goal)

    llm_client = llm_client or LLMClient(
        model=settings.llm_model_name,
        endpoint=settings.ollama_endpoint,
        timeout=settings.llm_timeout,
    )
    return VoiceLoop(
        capture=AudioCaptureSource(audio_cfg),
        recognizer=WhisperRecognizer(
            STTConfig(
                model_size=settings.stt_model,
                device=settings.stt_device,
                language=config.voice_language,
            )
        ),
        generator=TutorResponseGenerator(llm_client),
        player=SpeechOutputPlayer(backend),
        preferences=preferences,
        progress=progress,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="speakeasy")
    parser.add_argument(
        "--mode",
        choices=["text", "voice"],
        default="text",
        help="Run in text or voice mode",
    )
    parser.add_argument("--lesson-id", default="free-conversation")
    parser.add_argument("--title", default="Free conversation")
    parser.add_argument("--language", default="Spanish", help="Target language")
    parser.add_argument("--level", default="Beginner", help="Learner level label")
    parser.add_argument("--context", default="General", help="Conversation topic")
    parser.add_argument("--daily-goal", type=int, default=None, help="Daily practice goal in minutes")
    return parser


async def run_practice(argv: list[str] | None = None) -> None:
    """
    Run an interactive practice session.

    This is the main async entry point that initializes all components
    and runs the conversation loop.
    """
    settings = get_settings()
    logger = logging.getLogger(__name__)
    args = build_parser().parse_args(argv)

    logger.info("Initializing SpeakEasy...")
    logger.debug(f"Using LLM model: {settings.llm_model_name}")

    llm_client = LLMClient(
        model=settings.llm_model_name,
        endpoint=settings.ollama_endpoint,
        timeout=settings.llm_timeout,
    )
    loop = build_voice_loop(
        settings,
        voice=args.mode == "voice",
        llm_client=llm_client,
        daily_goal=args.daily_goal,
    )
    lesson = LessonReference(
        lesson_id=args.lesson_id,
        title=args.title,
        language=args.language,
        level_label=args.level,
        context=args.context,
    )

    if args.mode == "voice":
        from speakeasy.io.voice_interface import VoiceInterface

        interface = VoiceInterface(loop, lesson, artifacts_dir=settings.artifacts_dir)
    else:
        interface = TextInterface(loop, lesson)

    logger.info("Starting practice session...")
    try:
        await interface.run()
    finally:
        await llm_client.close()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        asyncio.run(run_practice(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nPractice session terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
