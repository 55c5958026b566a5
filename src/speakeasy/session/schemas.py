"""
Pydantic schemas for practice sessions.

Defines data models for conversation turns, session feedback, the voice
loop configuration snapshot and derived session metrics.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class Speaker(str, Enum):
    """Who produced a conversation turn."""

    USER = "user"
    TUTOR = "tutor"


class FeedbackKind(str, Enum):
    """Category of a correction note."""

    PRONUNCIATION = "pronunciation"
    GRAMMAR = "grammar"
    VOCABULARY = "vocabulary"
    FLUENCY = "fluency"
    COMPREHENSION = "comprehension"


class LessonReference(BaseModel):
    """The lesson a practice session belongs to."""

    lesson_id: str = Field(..., description="Identifier of the lesson")
    title: str = Field(default="", description="Lesson title")
    language: str = Field(default="Spanish", description="Target language")
    level_label: str = Field(default="Beginner", description="Learner level label")
    context: str = Field(default="General", description="Conversation context / lesson category")


class ConversationTurn(BaseModel):
    """A single turn in the practice conversation."""

    model_config = ConfigDict(frozen=True)

    turn_id: UUID = Field(default_factory=uuid4, description="Unique turn identifier")
    speaker: Speaker = Field(..., description="Who spoke")
    text: str = Field(..., description="What was said")
    translation: str | None = Field(default=None, description="Optional translation of the text")
    timestamp: datetime = Field(default_factory=_now_utc, description="When the turn was committed")


class SessionFeedback(BaseModel):
    """A correction note recorded during a session."""

    model_config = ConfigDict(frozen=True)

    feedback_id: UUID = Field(default_factory=uuid4, description="Unique feedback identifier")
    timestamp: datetime = Field(default_factory=_now_utc, description="When the note was recorded")
    kind: FeedbackKind = Field(default=FeedbackKind.GRAMMAR, description="Feedback category")
    content: str = Field(..., description="The learner's error")
    suggestion: str | None = Field(default=None, description="Suggested correction")


class PracticeSession(BaseModel):
    """A practice session and its conversation log."""

    session_id: UUID = Field(default_factory=uuid4, description="Unique session identifier")
    lesson: LessonReference = Field(..., description="Lesson being practiced")
    start_time: datetime = Field(default_factory=_now_utc, description="Session start time")
    end_time: datetime | None = Field(default=None, description="Session end time")
    score: int = Field(default=0, description="Final score, set on completion")
    feedback: list[SessionFeedback] = Field(default_factory=list, description="Recorded corrections")
    turns: list[ConversationTurn] = Field(default_factory=list, description="Conversation turns")


class VoiceLoopConfig(BaseModel):
    """
    Immutable snapshot of the learner's voice settings.

    Read once at session start. Changing a setting means building a new
    snapshot and starting a new session.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    auto_start_recording: bool = Field(default=True, description="Start listening when the session starts")
    speaking_rate: float = Field(default=0.5, gt=0.0, le=1.0, description="Tutor speaking rate (0-1, 0.5 normal)")
    pitch_multiplier: float = Field(default=1.0, gt=0.0, le=2.0, description="Tutor voice pitch multiplier")
    response_delay: float = Field(default=0.5, ge=0.0, description="Seconds to wait after the tutor finishes")
    listening_timeout: float = Field(default=3.0, gt=0.0, description="Seconds to wait for speech to begin")
    silence_threshold: float = Field(default=1.5, gt=0.0, description="Trailing silence that ends an utterance")
    pause_threshold: float = Field(default=1.5, gt=0.0, description="Silence that ends an utterance as a pause")
    interruption_allowed: bool = Field(default=True, description="Allow barge-in during tutor speech")
    echo_mode_enabled: bool = Field(default=False, description="Keep the microphone live while the tutor speaks")
    voice_detection_sensitivity: float = Field(default=0.5, ge=0.0, le=1.0, description="VAD sensitivity (0-1)")
    background_noise_reduction: bool = Field(default=True, description="Track and subtract a noise floor")

    voice_language: str = Field(default="en-US", description="Recognition language tag")
    provide_feedback_during_conversation: bool = Field(
        default=False,
        description="Publish corrections as they arrive instead of only at the end",
    )
    recognition_timeout: float = Field(default=10.0, gt=0.0, description="Max seconds to wait for recognition")
    generation_timeout: float = Field(default=30.0, gt=0.0, description="Max seconds to wait for a tutor reply")
    max_automatic_retries: int = Field(default=1, ge=0, le=1, description="Automatic retries on transient errors")
    min_transcript_chars: int = Field(default=2, ge=1, description="Shorter transcripts count as nothing said")

    @property
    def barge_in_enabled(self) -> bool:
        """Barge-in needs both the permission and a live microphone during playback."""
        return self.interruption_allowed and self.echo_mode_enabled


class FluencySummary(BaseModel):
    """Aggregated fluency indicators over the learner's utterances."""

    words_per_minute: float = Field(default=0.0, description="Average speaking rate")
    vocabulary_diversity: float = Field(default=0.0, description="Unique words / total words")
    filler_word_ratio: float = Field(default=0.0, description="Filler words / total words")
    sentence_complexity: float = Field(default=0.0, description="Average words per sentence")
    pause_count: int = Field(default=0, description="Pauses detected inside utterances")
    average_pause_s: float = Field(default=0.0, description="Average pause length in seconds")
    confidence_score: float = Field(default=0.0, ge=0.0, le=10.0, description="Heuristic confidence (0-10)")


class SessionMetrics(BaseModel):
    """Derived session metrics; recomputed on demand."""

    session_id: UUID = Field(..., description="Session these metrics describe")
    session_start_time: datetime = Field(..., description="Session start time")
    duration_seconds: float = Field(default=0.0, description="Elapsed session time")
    minutes_practiced: int = Field(default=0, description="Whole minutes practiced")
    message_count: int = Field(default=0, description="Number of turns")
    user_turns: int = Field(default=0, description="Number of learner turns")
    tutor_turns: int = Field(default=0, description="Number of tutor turns")
    total_words: int = Field(default=0, description="Words spoken or typed by the learner")
    feedback_count: int = Field(default=0, description="Number of corrections recorded")
    feedback_by_kind: dict[FeedbackKind, int] = Field(default_factory=dict, description="Corrections per kind")
    average_reply_latency_s: float = Field(default=0.0, description="Mean time from user turn to tutor turn")
    barge_ins: int = Field(default=0, description="Tutor utterances interrupted by the learner")
    notices: int = Field(default=0, description="Recoverable errors surfaced to the learner")
    last_feedback: SessionFeedback | None = Field(default=None, description="Most recent correction")
    fluency: FluencySummary = Field(default_factory=FluencySummary, description="Fluency indicators")


class SessionResult(BaseModel):
    """Returned by complete_session."""

    session: PracticeSession = Field(..., description="The finalized session")
    score: int = Field(..., description="Final score")
    metrics: SessionMetrics = Field(..., description="Session metrics at completion")
