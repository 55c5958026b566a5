"""
Preference storage port.

The voice loop reads one VoiceLoopConfig snapshot per session through this
port and never writes back; settings screens call ``save``.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from speakeasy.session.schemas import VoiceLoopConfig

logger = logging.getLogger(__name__)


class PreferenceStore(ABC):
    """Abstract key-value backed preference store."""

    @abstractmethod
    def load(self) -> VoiceLoopConfig:
        """
        Load the current voice settings.

        Returns:
            A VoiceLoopConfig snapshot; defaults when nothing is stored.
        """
        ...

    @abstractmethod
    def save(self, config: VoiceLoopConfig) -> None:
        """
        Persist voice settings.

        Args:
            config: Settings to store.
        """
        ...


class InMemoryPreferenceStore(PreferenceStore):
    def __init__(self, config: VoiceLoopConfig | None = None) -> None:
        self._config = config or VoiceLoopConfig()

    def load(self) -> VoiceLoopConfig:
        return self._config

    def save(self, config: VoiceLoopConfig) -> None:
        self._config = config


class JsonPreferenceStore(PreferenceStore):
    """Stores preferences as a flat JSON object on disk."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> VoiceLoopConfig:
        if not self._path.exists():
            return VoiceLoopConfig()

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Preferences file {self._path} is not valid JSON, using defaults: {e}")
            return VoiceLoopConfig()

        if not isinstance(raw, dict):
            logger.warning(f"Preferences file {self._path} does not hold an object, using defaults")
            return VoiceLoopConfig()

        try:
            return VoiceLoopConfig.model_validate(raw)
        except ValidationError as e:
            # Keep the valid keys, fall back to defaults for the rest.
            bad = {".".join(str(p) for p in err["loc"]) for err in e.errors()}
            logger.warning(f"Ignoring invalid preference keys {sorted(bad)}")
            return VoiceLoopConfig.model_validate({k: v for k, v in raw.items() if k not in bad})

    def save(self, config: VoiceLoopConfig) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(config.model_dump(mode="json"), indent=2), encoding="utf-8")
