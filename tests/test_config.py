from tvreceiver.config import DEFAULT_SIGNALING_URL, Settings
from tvreceiver.types import Identity


def test_settings_defaults(monkeypatch):
    for name in ("TVR_SIGNALING_URL", "TVR_ID", "TVR_NAME", "TVR_RECONNECT", "TVR_METRICS_PORT"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.signaling_url == DEFAULT_SIGNALING_URL
    assert settings.identity == Identity("tv-1", "AndroidTV")
    assert settings.reconnect is False
    assert settings.metrics_port == 0
    assert settings.validate() == []


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("TVR_SIGNALING_URL", "wss://signal.example/ws?token=abc")
    monkeypatch.setenv("TVR_ID", "living-room")
    monkeypatch.setenv("TVR_NAME", "")
    monkeypatch.setenv("TVR_RECONNECT", "yes")
    monkeypatch.setenv("TVR_LOGLEVEL", "DEBUG")
    monkeypatch.setenv("TVR_STUN_URL", "stun:stun.example.org")
    settings = Settings.from_env()
    assert settings.signaling_url == "wss://signal.example/ws?token=abc"
    assert settings.identity == Identity("living-room", None)
    assert settings.reconnect is True
    assert settings.log_level == "DEBUG"
    assert settings.stun_url == "stun:stun.example.org"


def test_validate_reports_errors():
    settings = Settings(
        signaling_url="http://wrong",
        tv_id="",
        turn_url="turn:turn.example.org",
        metrics_port=70000,
        log_format="xml",
        log_level="LOUD",
    )
    errors = settings.validate()
    assert len(errors) == 6
    assert any("TVR_SIGNALING_URL" in e for e in errors)
    assert any("TVR_TURN_USER" in e for e in errors)
