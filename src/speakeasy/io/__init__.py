"""
IO module for practice interfaces.

Provides text and voice interfaces for practicing a lesson.
"""

from speakeasy.io.text_interface import PracticeInterface, TextInterface
from speakeasy.io.voice_interface import TranscriptLog, VoiceInterface

__all__ = ["PracticeInterface", "TextInterface", "TranscriptLog", "VoiceInterface"]
