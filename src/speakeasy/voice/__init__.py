"""Voice I/O for practice sessions.

Capture, voice activity detection, speech-to-text and speech output.
Native dependencies (sounddevice, faster-whisper, piper) are loaded lazily
so text-only sessions work without them.
"""

from speakeasy.voice.audio_io import AudioCaptureSource, AudioIO, AudioIOConfig, CaptureUnavailableError
from speakeasy.voice.player import (
    NullPlaybackBackend,
    PiperPlaybackBackend,
    PlaybackEvent,
    PlaybackEventKind,
    PlayerBusyError,
    SpeechOutputPlayer,
)
from speakeasy.voice.speakable import to_speakable_reply
from speakeasy.voice.stt import RecognitionAdapter, RecognitionError, STTConfig, TranscriptionResult, WhisperRecognizer
from speakeasy.voice.tts import PiperTTS, SynthesisError, TTSConfig
from speakeasy.voice.vad import AudioSpan, VADEvent, VADEventKind, VoiceActivityMonitor

__all__ = [
    "AudioCaptureSource",
    "AudioIO",
    "AudioIOConfig",
    "AudioSpan",
    "CaptureUnavailableError",
    "NullPlaybackBackend",
    "PiperPlaybackBackend",
    "PiperTTS",
    "PlaybackEvent",
    "PlaybackEventKind",
    "PlayerBusyError",
    "RecognitionAdapter",
    "RecognitionError",
    "STTConfig",
    "SpeechOutputPlayer",
    "SynthesisError",
    "TTSConfig",
    "TranscriptionResult",
    "VADEvent",
    "VADEventKind",
    "VoiceActivityMonitor",
    "WhisperRecognizer",
    "to_speakable_reply",
]
