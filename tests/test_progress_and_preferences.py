import json
from datetime import date, timedelta

import pytest

from speakeasy.config import Settings
from speakeasy.session.fluency import UtteranceSample, count_fillers, summarize
from speakeasy.session.progress import DailyProgress, JsonProgressStore, ProgressTracker
from speakeasy.session.schemas import VoiceLoopConfig
from speakeasy.storage.preferences import JsonPreferenceStore

TODAY = date(2026, 3, 14)
YESTERDAY = TODAY - timedelta(days=1)


def test_record_practice_same_day_adds_minutes_without_crediting_streak():
    tracker = ProgressTracker(DailyProgress(daily_goal=15, today_minutes=8, streak=3, last_activity_date=TODAY))

    p = tracker.record_practice(10, today=TODAY)
    assert p.today_minutes == 18
    assert p.streak == 3

    p = tracker.record_practice(5, today=TODAY)
    assert p.today_minutes == 23
    assert p.streak == 3


def test_first_practice_of_the_day_credits_streak_once_below_goal():
    tracker = ProgressTracker(DailyProgress(daily_goal=15, streak=2, last_activity_date=YESTERDAY))

    p = tracker.record_practice(5, today=TODAY)
    assert p.today_minutes == 5
    assert p.streak == 3
    assert p.last_activity_date == TODAY
    assert p.progress_percentage == pytest.approx(5 / 15)

    assert tracker.record_practice(20, today=TODAY).streak == 3


def test_record_practice_drops_minutes_from_an_earlier_day():
    tracker = ProgressTracker(DailyProgress(daily_goal=15, today_minutes=14, streak=2, last_activity_date=YESTERDAY))
    p = tracker.record_practice(1, today=TODAY)
    assert p.today_minutes == 1
    assert p.streak == 3


def test_streak_restarts_after_a_missed_day():
    tracker = ProgressTracker(
        DailyProgress(today_minutes=30, streak=6, last_activity_date=TODAY - timedelta(days=3))
    )
    p = tracker.record_practice(4, today=TODAY)
    assert p.today_minutes == 4
    assert p.streak == 1


def test_roll_over_resets_today_and_breaks_lapsed_streak():
    tracker = ProgressTracker(DailyProgress(today_minutes=20, streak=5, last_activity_date=YESTERDAY))
    p = tracker.roll_over(today=TODAY)
    assert p.today_minutes == 0
    assert p.streak == 5

    p = tracker.roll_over(today=TODAY + timedelta(days=1))
    assert p.streak == 0


def test_update_daily_goal_validates():
    tracker = ProgressTracker()
    assert tracker.update_daily_goal(30).daily_goal == 30
    with pytest.raises(ValueError):
        tracker.update_daily_goal(0)


def test_progress_store_persists_json(tmp_path):
    store = JsonProgressStore(tmp_path / "progress.json")
    tracker = ProgressTracker(store=store)
    tracker.record_practice(20, today=TODAY)

    reloaded = JsonProgressStore(tmp_path / "progress.json").load()
    assert reloaded.today_minutes == 20
    assert reloaded.streak == 1
    assert reloaded.last_activity_date == TODAY


def test_preferences_default_when_missing_or_unreadable(tmp_path):
    path = tmp_path / "prefs.json"
    assert JsonPreferenceStore(path).load() == VoiceLoopConfig()

    path.write_text("{not json", encoding="utf-8")
    assert JsonPreferenceStore(path).load() == VoiceLoopConfig()


def test_preferences_keep_valid_keys_and_drop_invalid_ones(tmp_path):
    path = tmp_path / "prefs.json"
    path.write_text(
        json.dumps({"silence_threshold": 2.5, "speaking_rate": 7, "echo_mode_enabled": True, "unknown": 1}),
        encoding="utf-8",
    )
    cfg = JsonPreferenceStore(path).load()
    assert cfg.silence_threshold == 2.5
    assert cfg.echo_mode_enabled is True
    assert cfg.speaking_rate == VoiceLoopConfig().speaking_rate


def test_preferences_save_then_load(tmp_path):
    store = JsonPreferenceStore(tmp_path / "nested" / "prefs.json")
    cfg = VoiceLoopConfig(listening_timeout=4.0, interruption_allowed=False)
    store.save(cfg)
    assert store.load() == cfg


def test_barge_in_needs_permission_and_echo_mode():
    assert VoiceLoopConfig(interruption_allowed=True, echo_mode_enabled=True).barge_in_enabled
    assert not VoiceLoopConfig(interruption_allowed=True, echo_mode_enabled=False).barge_in_enabled
    assert not VoiceLoopConfig(interruption_allowed=False, echo_mode_enabled=True).barge_in_enabled


def test_settings_read_prefixed_env(monkeypatch):
    monkeypatch.setenv("SPEAKEASY_LLM_MODEL_NAME", "llama3.2:3b")
    monkeypatch.setenv("SPEAKEASY_SAMPLE_RATE", "22050")
    s = Settings()
    assert s.llm_model_name == "llama3.2:3b"
    assert s.sample_rate == 22050


def test_fluency_summary():
    samples = [
        UtteranceSample(text="Um, me gusta el café.", speech_seconds=3.0, pause_count=1, pause_seconds=0.8),
        UtteranceSample(text="Y el té, you know.", speech_seconds=3.0),
    ]
    assert count_fillers("um you know") == 2

    s = summarize(samples)
    assert s.pause_count == 1
    assert s.average_pause_s == pytest.approx(0.8)
    assert s.words_per_minute == pytest.approx(10 / 0.1)
    assert 0.0 <= s.confidence_score <= 10.0
    assert summarize([]).words_per_minute == 0.0
