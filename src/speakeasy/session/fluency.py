"""
Fluency analysis of learner utterances.

Simple text and timing heuristics; no language model involved.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from speakeasy.session.schemas import FluencySummary

FILLER_WORDS = frozenset({"um", "uh", "like", "well", "so", "actually", "basically", "er", "hmm"})
FILLER_PHRASES = ("you know",)

_WORD_RE = re.compile(r"[^\W\d_]+(?:'[^\W\d_]+)?", re.UNICODE)
_SENTENCE_RE = re.compile(r"[.!?]+")


@dataclass(frozen=True)
class UtteranceSample:
    """One learner utterance with its timing."""

    text: str
    speech_seconds: float = 0.0
    pause_count: int = 0
    pause_seconds: float = 0.0


def tokenize(text: str) -> list[str]:
    return [w.lower() for w in _WORD_RE.findall(text or "")]


def count_fillers(text: str) -> int:
    words = tokenize(text)
    count = sum(1 for w in words if w in FILLER_WORDS)
    lowered = (text or "").lower()
    for phrase in FILLER_PHRASES:
        count += lowered.count(phrase)
    return count


def sentence_count(text: str) -> int:
    parts = [p for p in _SENTENCE_RE.split(text or "") if p.strip()]
    return len(parts)


def confidence_score(summary: FluencySummary, longest_speech_s: float) -> float:
    """0-10 heuristic: a base of 5 plus one point per healthy indicator."""
    score = 5.0
    if summary.words_per_minute > 120:
        score += 1
    if summary.pause_count < 5:
        score += 1
    if longest_speech_s > 10:
        score += 1
    if summary.vocabulary_diversity > 0.5:
        score += 1
    if summary.filler_word_ratio < 0.1:
        score += 1
    return min(10.0, score)


def summarize(samples: list[UtteranceSample]) -> FluencySummary:
    """
    Aggregate fluency indicators over a list of utterances.

    Args:
        samples: Learner utterances in the order they were spoken.

    Returns:
        FluencySummary with zeros when there is nothing to analyze.
    """
    if not samples:
        return FluencySummary()

    words: list[str] = []
    fillers = 0
    sentences = 0
    timed_words = 0
    speech_seconds = 0.0
    pauses = 0
    pause_seconds = 0.0
    longest = 0.0

    for s in samples:
        w = tokenize(s.text)
        words.extend(w)
        fillers += count_fillers(s.text)
        sentences += max(1, sentence_count(s.text)) if w else 0
        if s.speech_seconds > 0:
            timed_words += len(w)
            speech_seconds += s.speech_seconds
        pauses += s.pause_count
        pause_seconds += s.pause_seconds
        longest = max(longest, s.speech_seconds)

    total = len(words)
    summary = FluencySummary(
        words_per_minute=(timed_words / (speech_seconds / 60.0)) if speech_seconds > 0 else 0.0,
        vocabulary_diversity=(len(set(words)) / total) if total else 0.0,
        filler_word_ratio=fillers / max(total, 1),
        sentence_complexity=(total / sentences) if sentences else 0.0,
        pause_count=pauses,
        average_pause_s=(pause_seconds / pauses) if pauses else 0.0,
    )
    return summary.model_copy(update={"confidence_score": confidence_score(summary, longest)})
