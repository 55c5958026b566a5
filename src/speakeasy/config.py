"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SPEAKEASY_",
        case_sensitive=False,
        extra="ignore",
    )

    # Tutor model (Ollama HTTP API)
    ollama_endpoint: str = Field(
        default="http://localhost:11434",
        description="Base URL of the Ollama server",
    )
    llm_model_name: str = Field(
        default="llama3.1:8b",
        description="Ollama model name used for tutor replies",
    )
    llm_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for a single LLM request",
    )

    # Speech-to-text (faster-whisper)
    stt_model: str = Field(default="small", description="faster-whisper model size")
    stt_device: Literal["cpu", "cuda", "auto"] = Field(default="cpu", description="STT device")

    # Text-to-speech (Piper)
    piper_bin: str = Field(default="piper", description="Path/name of the Piper TTS binary")
    piper_model: str | None = Field(default=None, description="Path to a Piper .onnx voice model")
    piper_timeout_s: float = Field(default=60.0, description="Timeout per Piper synthesis chunk")

    # Audio
    sample_rate: int = Field(default=16000, description="Microphone sample rate (Hz)")
    block_duration_s: float = Field(
        default=0.1,
        description="Duration of one captured audio buffer in seconds",
    )

    # Local storage
    preferences_path: str = Field(
        default="data/voice_preferences.json",
        description="JSON file holding the learner's voice loop preferences",
    )
    progress_path: str = Field(
        default="data/progress.json",
        description="JSON file holding daily progress and streak",
    )
    artifacts_dir: str = Field(
        default="data/sessions",
        description="Where per-session transcripts are written",
    )

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
