"""
Practice session state management.

Tracks the live state of one practice session: the conversation log,
recorded feedback and the session's start/end times.
"""

from datetime import datetime, timezone
from uuid import UUID

from speakeasy.session.schemas import (
    ConversationTurn,
    LessonReference,
    PracticeSession,
    SessionFeedback,
    Speaker,
)


class TurnOrderError(ValueError):
    """Raised when appending a turn would break conversation ordering."""


class SessionFinalizedError(RuntimeError):
    """Raised when mutating a session that has already been completed."""


class PracticeState:
    """
    Manages the mutable state of a practice session.

    The wrapped PracticeSession is only ever mutated through this class;
    callers that need to read it get a deep copy via ``snapshot()``.
    """

    def __init__(self, lesson: LessonReference, *, start_time: datetime | None = None) -> None:
        """
        Initialize practice state.

        Args:
            lesson: Lesson being practiced.
            start_time: Session start time (defaults to now, UTC).
        """
        self._session = PracticeSession(
            lesson=lesson,
            start_time=start_time or datetime.now(timezone.utc),
        )
        self._is_complete = False

    @property
    def session_id(self) -> UUID:
        """Get the unique session identifier."""
        return self._session.session_id

    @property
    def lesson(self) -> LessonReference:
        """Get the lesson reference."""
        return self._session.lesson

    @property
    def start_time(self) -> datetime:
        return self._session.start_time

    @property
    def turns(self) -> list[ConversationTurn]:
        """Get all conversation turns."""
        return self._session.turns.copy()

    @property
    def feedback(self) -> list[SessionFeedback]:
        """Get all recorded feedback."""
        return self._session.feedback.copy()

    @property
    def is_complete(self) -> bool:
        """Check if the session has been finalized."""
        return self._is_complete

    @property
    def last_speaker(self) -> Speaker | None:
        return self._session.turns[-1].speaker if self._session.turns else None

    def add_turn(
        self,
        speaker: Speaker,
        text: str,
        *,
        translation: str | None = None,
        timestamp: datetime | None = None,
    ) -> ConversationTurn:
        """
        Append a conversation turn.

        A tutor turn must answer a user turn, and timestamps never go
        backwards.

        Args:
            speaker: Who spoke.
            text: What was said.
            translation: Optional translation.
            timestamp: Commit time (defaults to now, UTC).

        Returns:
            The created ConversationTurn.

        Raises:
            TurnOrderError: If the turn would break ordering.
            SessionFinalizedError: If the session is already complete.
        """
        self._require_open()

        if speaker is Speaker.TUTOR and self.last_speaker is not Speaker.USER:
            raise TurnOrderError("A tutor turn must follow a user turn")

        ts = timestamp or datetime.now(timezone.utc)
        if self._session.turns and ts < self._session.turns[-1].timestamp:
            ts = self._session.turns[-1].timestamp

        turn = ConversationTurn(speaker=speaker, text=text, translation=translation, timestamp=ts)
        self._session.turns.append(turn)
        return turn

    def add_feedback(self, feedback: SessionFeedback) -> None:
        """
        Record a feedback entry.

        Args:
            feedback: The feedback to add.
        """
        self._require_open()
        if any(f.feedback_id == feedback.feedback_id for f in self._session.feedback):
            return
        self._session.feedback.append(feedback)

    def complete(self, *, end_time: datetime, score: int) -> PracticeSession:
        """
        Finalize the session exactly once.

        Args:
            end_time: Session end time.
            score: Final score.

        Returns:
            A copy of the finalized PracticeSession.
        """
        self._require_open()
        self._session.end_time = end_time
        self._session.score = score
        self._is_complete = True
        return self.snapshot()

    def snapshot(self) -> PracticeSession:
        """Return a deep copy safe to hand to readers."""
        return self._session.model_copy(deep=True)

    def get_conversation_context(self, max_turns: int | None = None) -> list[dict[str, str]]:
        """
        Get conversation history in a format suitable for LLM context.

        Args:
            max_turns: Maximum number of turns to include (None for all).

        Returns:
            List of role/content dicts for LLM consumption.
        """
        turns = self._session.turns[-max_turns:] if max_turns else self._session.turns
        return [
            {"role": "user" if t.speaker is Speaker.USER else "assistant", "content": t.text}
            for t in turns
        ]

    def _require_open(self) -> None:
        if self._is_complete:
            raise SessionFinalizedError("Practice session has already been completed.")
