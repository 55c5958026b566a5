from datetime import datetime, timedelta, timezone

import pytest

from speakeasy.agents.response_generator import Correction
from speakeasy.session.feedback import FeedbackAccumulator, compute_score, minutes_practiced
from speakeasy.session.fluency import UtteranceSample
from speakeasy.session.practice_state import PracticeState, SessionFinalizedError, TurnOrderError
from speakeasy.session.schemas import FeedbackKind, LessonReference, Speaker

T0 = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def _state() -> PracticeState:
    return PracticeState(LessonReference(lesson_id="cafe", language="Spanish"), start_time=T0)


def test_tutor_turn_must_follow_user_turn():
    state = _state()
    with pytest.raises(TurnOrderError):
        state.add_turn(Speaker.TUTOR, "Hola")

    state.add_turn(Speaker.USER, "hola")
    state.add_turn(Speaker.TUTOR, "¡Hola! ¿Qué tal?")
    with pytest.raises(TurnOrderError):
        state.add_turn(Speaker.TUTOR, "¿Sigues ahí?")

    # A user turn may follow another user turn (e.g. after a failed reply).
    state.add_turn(Speaker.USER, "bien")
    state.add_turn(Speaker.USER, "¿y tú?")
    assert [t.speaker for t in state.turns] == [Speaker.USER, Speaker.TUTOR, Speaker.USER, Speaker.USER]


def test_turn_timestamps_never_go_backwards():
    state = _state()
    first = state.add_turn(Speaker.USER, "uno", timestamp=T0 + timedelta(seconds=10))
    second = state.add_turn(Speaker.TUTOR, "dos", timestamp=T0 + timedelta(seconds=5))
    assert second.timestamp == first.timestamp


def test_complete_only_once_and_freezes_the_session():
    state = _state()
    state.add_turn(Speaker.USER, "hola")
    session = state.complete(end_time=T0 + timedelta(minutes=3), score=80)
    assert session.end_time == T0 + timedelta(minutes=3)
    assert session.score == 80
    assert state.is_complete

    with pytest.raises(SessionFinalizedError):
        state.complete(end_time=T0 + timedelta(minutes=4), score=90)
    with pytest.raises(SessionFinalizedError):
        state.add_turn(Speaker.USER, "otra vez")


def test_snapshot_is_a_copy():
    state = _state()
    state.add_turn(Speaker.USER, "hola")
    snap = state.snapshot()
    snap.turns.clear()
    assert len(state.turns) == 1


def test_conversation_context_maps_roles():
    state = _state()
    state.add_turn(Speaker.USER, "hola")
    state.add_turn(Speaker.TUTOR, "¡Hola!")
    state.add_turn(Speaker.USER, "me llamo Ana")
    assert state.get_conversation_context(max_turns=2) == [
        {"role": "assistant", "content": "¡Hola!"},
        {"role": "user", "content": "me llamo Ana"},
    ]


def test_score_is_ten_points_per_minute_plus_clean_session_bonus():
    assert compute_score(T0, T0 + timedelta(minutes=12), 0) == 170
    assert compute_score(T0, T0 + timedelta(minutes=12), 2) == 120
    assert compute_score(T0, T0 + timedelta(seconds=59), 0) == 50
    assert minutes_practiced(T0, T0 - timedelta(minutes=1)) == 0


def test_corrections_become_feedback_one_to_one(caplog):
    caplog.set_level("DEBUG", logger="speakeasy.session.feedback")
    state = _state()
    acc = FeedbackAccumulator(state)
    state.add_turn(Speaker.USER, "yo es estudiante")

    recorded = acc.record_corrections(
        [
            Correction(error="yo es", correction="yo soy", explanation="ser: yo soy"),
            Correction(error="el problema", correction="el problema", kind="vocabulary"),
            Correction(error="  ", correction="nothing"),
        ]
    )

    assert [f.kind for f in recorded] == [FeedbackKind.GRAMMAR, FeedbackKind.VOCABULARY]
    assert recorded[0].content == "yo es"
    assert recorded[0].suggestion == "yo soy"
    assert len(state.feedback) == 2
    assert "dropping correction without an error: 'nothing'" in caplog.text

    # Re-adding the same entry does not duplicate it.
    state.add_feedback(recorded[0])
    assert len(state.feedback) == 2


def test_metrics_are_derived_from_the_log():
    state = _state()
    acc = FeedbackAccumulator(state)
    state.add_turn(Speaker.USER, "hola me llamo Ana")
    acc.record_utterance(UtteranceSample(text="hola me llamo Ana", speech_seconds=2.0))
    state.add_turn(Speaker.TUTOR, "¡Encantada, Ana!")
    acc.record_reply_latency(1.5)
    acc.record_reply_latency(0.5)
    acc.record_barge_in()
    acc.record_corrections([Correction(error="me llamo", correction="me llamo", kind="pronunciation")])

    m = acc.metrics(now=T0 + timedelta(minutes=5, seconds=30))
    assert m.minutes_practiced == 5
    assert m.message_count == 2
    assert m.user_turns == 1
    assert m.tutor_turns == 1
    assert m.total_words == 4
    assert m.feedback_count == 1
    assert m.feedback_by_kind == {FeedbackKind.PRONUNCIATION: 1}
    assert m.average_reply_latency_s == pytest.approx(1.0)
    assert m.barge_ins == 1
    assert m.last_feedback is not None
    assert m.fluency.words_per_minute == pytest.approx(120.0)
