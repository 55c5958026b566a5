import numpy as np
import pytest

from speakeasy.session.schemas import VoiceLoopConfig
from speakeasy.voice.vad import (
    MonitorMode,
    VADEventKind,
    VoiceActivityMonitor,
    threshold_for_sensitivity,
    to_mono_float32,
)

SR = 16000
BLOCK = 1600  # 0.1s


def tone(amp: float, n: int = BLOCK) -> np.ndarray:
    return np.full(n, amp, dtype=np.float32)


def silence(n: int = BLOCK) -> np.ndarray:
    return np.zeros(n, dtype=np.float32)


def feed(monitor: VoiceActivityMonitor, buffers) -> list:
    events = []
    for b in buffers:
        ev = monitor.process(b)
        if ev is not None:
            events.append(ev)
    return events


def _config(**overrides) -> VoiceLoopConfig:
    fields = {"listening_timeout": 1.0, "silence_threshold": 0.5, "pause_threshold": 0.5}
    fields.update(overrides)
    return VoiceLoopConfig(**fields)


def test_threshold_follows_sensitivity():
    assert threshold_for_sensitivity(1.0) == pytest.approx(0.005)
    assert threshold_for_sensitivity(0.0) == pytest.approx(0.05)
    assert threshold_for_sensitivity(0.5) == pytest.approx(0.0275)
    assert threshold_for_sensitivity(3.0) == pytest.approx(0.005)


def test_int16_and_stereo_buffers_are_normalized():
    stereo = np.array([[16384, 0], [-16384, 0]], dtype=np.int16)
    mono = to_mono_float32(stereo)
    assert mono.dtype == np.float32
    assert mono.tolist() == pytest.approx([0.25, -0.25])


def test_stopped_monitor_ignores_buffers():
    monitor = VoiceActivityMonitor(_config(), SR)
    assert monitor.mode is MonitorMode.STOPPED
    assert feed(monitor, [tone(0.5)] * 5) == []


def test_utterance_is_finalized_once_after_trailing_silence():
    monitor = VoiceActivityMonitor(_config(), SR)
    monitor.begin_listening()

    events = feed(monitor, [silence(), tone(0.3), tone(0.3), tone(0.3)] + [silence()] * 8)
    kinds = [e.kind for e in events]

    assert kinds.count(VADEventKind.UTTERANCE_FINALIZED) == 1
    assert kinds[-1] is VADEventKind.UTTERANCE_FINALIZED
    assert VADEventKind.LISTENING_TIMED_OUT not in kinds
    span = events[-1].span
    # Pre-roll (the leading silent buffer) is kept; capture stops at finalization.
    assert span.duration_s == pytest.approx(0.9)
    assert span.speech_seconds == pytest.approx(0.4)
    assert monitor.mode is MonitorMode.STOPPED


def test_listening_times_out_without_speech():
    monitor = VoiceActivityMonitor(_config(listening_timeout=0.5), SR)
    monitor.begin_listening()

    events = feed(monitor, [silence()] * 8)
    assert [e.kind for e in events] == [VADEventKind.LISTENING_TIMED_OUT]
    assert events[0].elapsed_s == pytest.approx(0.5)


def test_single_loud_blip_is_not_speech():
    monitor = VoiceActivityMonitor(_config(listening_timeout=0.5), SR)
    monitor.begin_listening()

    events = feed(monitor, [tone(0.3), silence(), tone(0.3), silence(), silence()])
    assert [e.kind for e in events] == [VADEventKind.LISTENING_TIMED_OUT]
    assert not monitor.speech_detected


def test_no_timeout_once_speech_started():
    monitor = VoiceActivityMonitor(_config(listening_timeout=0.3, silence_threshold=5.0), SR)
    monitor.begin_listening()

    events = feed(monitor, [tone(0.3)] * 10)
    assert all(e.kind is VADEventKind.SPEECH_ONGOING for e in events)
    assert monitor.speech_detected


def test_pause_threshold_ends_utterance_before_silence_threshold():
    monitor = VoiceActivityMonitor(_config(silence_threshold=2.0, pause_threshold=0.5), SR)
    monitor.begin_listening()

    events = feed(monitor, [tone(0.3)] * 3 + [silence()] * 8)
    kinds = [e.kind for e in events]
    assert kinds.count(VADEventKind.UTTERANCE_FINALIZED) == 1
    final = events[-1]
    assert final.kind is VADEventKind.UTTERANCE_FINALIZED
    assert final.elapsed_s == pytest.approx(0.8)
    assert final.span.pause_count == 1
    assert final.span.pause_seconds == pytest.approx(0.5)
    assert final.span.speech_seconds == pytest.approx(0.3)


def test_silence_shorter_than_pause_threshold_is_not_a_pause():
    monitor = VoiceActivityMonitor(_config(silence_threshold=0.3, pause_threshold=1.0), SR)
    monitor.begin_listening()

    events = feed(monitor, [tone(0.3)] * 2 + [silence()] * 2 + [tone(0.3)] + [silence()] * 3)
    final = [e for e in events if e.kind is VADEventKind.UTTERANCE_FINALIZED]
    assert len(final) == 1
    assert final[0].span.pause_count == 0
    assert final[0].span.speech_seconds == pytest.approx(0.5)


def test_long_utterance_is_capped():
    monitor = VoiceActivityMonitor(_config(silence_threshold=5.0), SR, max_utterance_s=1.0)
    monitor.begin_listening()
    events = feed(monitor, [tone(0.3)] * 15)
    assert [e.kind for e in events].count(VADEventKind.UTTERANCE_FINALIZED) == 1


def test_speaking_mode_reports_onset_once():
    monitor = VoiceActivityMonitor(_config(), SR)
    monitor.begin_speaking()

    events = feed(monitor, [silence(), tone(0.3), silence(), tone(0.3), tone(0.3), tone(0.3)])
    assert [e.kind for e in events] == [VADEventKind.SPEECH_ONSET]
    assert monitor.mode is MonitorMode.STOPPED


def test_sensitivity_changes_what_counts_as_speech():
    quiet_voice = [tone(0.02)] * 6 + [silence()] * 6

    sensitive = VoiceActivityMonitor(_config(voice_detection_sensitivity=0.9, background_noise_reduction=False), SR)
    sensitive.begin_listening()
    assert VADEventKind.UTTERANCE_FINALIZED in [e.kind for e in feed(sensitive, quiet_voice)]

    deaf = VoiceActivityMonitor(_config(voice_detection_sensitivity=0.1, background_noise_reduction=False), SR)
    deaf.begin_listening()
    assert VADEventKind.UTTERANCE_FINALIZED not in [e.kind for e in feed(deaf, quiet_voice)]


def test_noise_floor_tracks_steady_hum():
    hum = [tone(0.02)] * 60
    burst = [tone(0.035)] * 3

    reduced = VoiceActivityMonitor(_config(listening_timeout=30.0), SR)
    reduced.begin_listening()
    feed(reduced, hum)
    assert reduced.noise_floor == pytest.approx(0.02, abs=0.002)
    feed(reduced, burst)
    assert not reduced.speech_detected

    raw = VoiceActivityMonitor(_config(listening_timeout=30.0, background_noise_reduction=False), SR)
    raw.begin_listening()
    feed(raw, hum + burst)
    assert raw.speech_detected
