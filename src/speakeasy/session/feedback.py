"""
Feedback accumulation and session scoring.

Collects correction notes and per-turn timing data, derives
SessionMetrics on demand and computes the final session score.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING

from speakeasy.session.fluency import UtteranceSample, summarize, tokenize
from speakeasy.session.schemas import (
    FeedbackKind,
    SessionFeedback,
    SessionMetrics,
    Speaker,
)

if TYPE_CHECKING:
    from speakeasy.agents.response_generator import Correction
    from speakeasy.session.practice_state import PracticeState

logger = logging.getLogger(__name__)

POINTS_PER_MINUTE = 10
NO_CORRECTIONS_BONUS = 50


def minutes_practiced(start_time: datetime, end_time: datetime) -> int:
    """Whole minutes between start and end (never negative)."""
    seconds = (end_time - start_time).total_seconds()
    return max(0, int(seconds // 60))


def compute_score(start_time: datetime, end_time: datetime, feedback_count: int) -> int:
    """
    Score a finished session.

    10 points per whole minute practiced, plus a 50 point bonus when no
    corrections were recorded.
    """
    score = minutes_practiced(start_time, end_time) * POINTS_PER_MINUTE
    if feedback_count == 0:
        score += NO_CORRECTIONS_BONUS
    return score


class FeedbackAccumulator:
    """
    Turns tutor corrections into SessionFeedback and keeps timing data.

    Only the TurnScheduler calls into the accumulator, so it needs no
    locking of its own.
    """

    def __init__(self, state: PracticeState) -> None:
        self._state = state
        self._samples: list[UtteranceSample] = []
        self._reply_latencies: list[float] = []
        self._barge_ins = 0
        self._notices = 0

    def record_corrections(
        self,
        corrections: list[Correction],
        *,
        timestamp: datetime | None = None,
    ) -> list[SessionFeedback]:
        """
        Convert corrections 1:1 into SessionFeedback entries.

        A correction that names no error has nothing to show and is skipped.

        Args:
            corrections: Corrections returned with a tutor reply.
            timestamp: When the reply arrived.

        Returns:
            The feedback entries that were recorded.
        """
        recorded: list[SessionFeedback] = []
        for c in corrections:
            if not (c.error or "").strip():
                logger.debug(f"[FEEDBACK] dropping correction without an error: {c.correction!r}")
                continue
            fields = {
                "kind": c.kind or FeedbackKind.GRAMMAR,
                "content": c.error.strip(),
                "suggestion": (c.correction or "").strip() or None,
            }
            if timestamp is not None:
                fields["timestamp"] = timestamp
            entry = SessionFeedback(**fields)
            self._state.add_feedback(entry)
            recorded.append(entry)
        if recorded:
            logger.debug(f"[FEEDBACK] recorded {len(recorded)} correction(s)")
        return recorded

    def record_utterance(self, sample: UtteranceSample) -> None:
        self._samples.append(sample)

    def record_reply_latency(self, seconds: float) -> None:
        self._reply_latencies.append(max(0.0, seconds))

    def record_barge_in(self) -> None:
        self._barge_ins += 1

    def record_notice(self) -> None:
        self._notices += 1

    def metrics(self, *, now: datetime) -> SessionMetrics:
        """
        Recompute session metrics from the current state.

        Args:
            now: End of the measured interval (the end time once completed).

        Returns:
            SessionMetrics snapshot.
        """
        session = self._state.snapshot()
        end = session.end_time or now
        user_turns = [t for t in session.turns if t.speaker is Speaker.USER]
        tutor_turns = [t for t in session.turns if t.speaker is Speaker.TUTOR]
        by_kind = Counter(f.kind for f in session.feedback)

        return SessionMetrics(
            session_id=session.session_id,
            session_start_time=session.start_time,
            duration_seconds=max(0.0, (end - session.start_time).total_seconds()),
            minutes_practiced=minutes_practiced(session.start_time, end),
            message_count=len(session.turns),
            user_turns=len(user_turns),
            tutor_turns=len(tutor_turns),
            total_words=sum(len(tokenize(t.text)) for t in user_turns),
            feedback_count=len(session.feedback),
            feedback_by_kind=dict(by_kind),
            average_reply_latency_s=(
                sum(self._reply_latencies) / len(self._reply_latencies) if self._reply_latencies else 0.0
            ),
            barge_ins=self._barge_ins,
            notices=self._notices,
            last_feedback=session.feedback[-1] if session.feedback else None,
            fluency=summarize(self._samples),
        )

    def final_score(self, end_time: datetime) -> int:
        return compute_score(self._state.start_time, end_time, len(self._state.feedback))
