def test_voice_runner_env_defaults_are_used(monkeypatch):
    # Lightweight: verifies the CLI defaults are wired to environment variables.
    monkeypatch.setenv("SPEAKEASY_PIPER_BIN", "/tmp/piper")
    monkeypatch.setenv("SPEAKEASY_PIPER_MODEL", "/tmp/voice.onnx")
    monkeypatch.setenv("SPEAKEASY_STT_MODEL", "medium")
    monkeypatch.setenv("SPEAKEASY_STT_DEVICE", "cpu")
    monkeypatch.setenv("SPEAKEASY_LANGUAGE", "French")

    from scripts.voice_practice import build_parser

    args = build_parser().parse_args(["--level", "Intermediate"])
    assert args.piper_bin == "/tmp/piper"
    assert args.piper_model == "/tmp/voice.onnx"
    assert args.stt_model == "medium"
    assert args.stt_device == "cpu"
    assert args.language == "French"
    assert args.level == "Intermediate"


def test_voice_runner_session_overrides(monkeypatch):
    monkeypatch.setenv("SPEAKEASY_ALLOW_BARGE_IN", "yes")
    monkeypatch.delenv("SPEAKEASY_ECHO_MODE", raising=False)

    from scripts.voice_practice import build_parser, session_overrides

    args = build_parser().parse_args(["--echo-mode", "off", "--silence-threshold", "2.0"])
    assert session_overrides(args) == {
        "interruption_allowed": True,
        "echo_mode_enabled": False,
        "silence_threshold": 2.0,
    }

    monkeypatch.delenv("SPEAKEASY_ALLOW_BARGE_IN")
    assert session_overrides(build_parser().parse_args([])) == {}
