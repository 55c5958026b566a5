"""
Orchestrator module for the voice conversation loop.

Contains the turn scheduler state machine and the caller-facing VoiceLoop.
"""

from speakeasy.orchestrator.turn_scheduler import (
    FatalErrorEvent,
    FeedbackAddedEvent,
    LoopBusyError,
    LoopEvent,
    LoopState,
    NoticeEvent,
    SessionEndedError,
    StateChangedEvent,
    TurnAppendedEvent,
    TurnScheduler,
)
from speakeasy.orchestrator.voice_loop import EventSubscription, SessionHandle, VoiceLoop

__all__ = [
    "EventSubscription",
    "FatalErrorEvent",
    "FeedbackAddedEvent",
    "LoopBusyError",
    "LoopEvent",
    "LoopState",
    "NoticeEvent",
    "SessionEndedError",
    "SessionHandle",
    "StateChangedEvent",
    "TurnAppendedEvent",
    "TurnScheduler",
    "VoiceLoop",
]
