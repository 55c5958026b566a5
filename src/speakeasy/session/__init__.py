"""
Session module: practice session data model, feedback and progress.
"""

from speakeasy.session.feedback import FeedbackAccumulator, compute_score
from speakeasy.session.practice_state import PracticeState
from speakeasy.session.progress import DailyProgress, ProgressTracker
from speakeasy.session.schemas import (
    ConversationTurn,
    FeedbackKind,
    LessonReference,
    PracticeSession,
    SessionFeedback,
    SessionMetrics,
    SessionResult,
    Speaker,
    VoiceLoopConfig,
)

__all__ = [
    "ConversationTurn",
    "DailyProgress",
    "FeedbackAccumulator",
    "FeedbackKind",
    "LessonReference",
    "PracticeSession",
    "PracticeState",
    "ProgressTracker",
    "SessionFeedback",
    "SessionMetrics",
    "SessionResult",
    "Speaker",
    "VoiceLoopConfig",
    "compute_score",
]
