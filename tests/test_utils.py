from tvreceiver.utils import env_bool, redact_url, safe_mkdir


def test_safe_mkdir(tmp_path):
    path = tmp_path / "a" / "b"
    result = safe_mkdir(path)
    assert result == path
    assert path.exists()


def test_env_bool(monkeypatch):
    monkeypatch.setenv("FLAG", "true")
    assert env_bool("FLAG", False) is True
    monkeypatch.setenv("FLAG", "0")
    assert env_bool("FLAG", True) is False
    monkeypatch.delenv("FLAG")
    assert env_bool("FLAG", True) is True


def test_redact_url():
    assert redact_url("ws://host:8080/ws?token=abc") == "ws://host:8080/ws?token=%2A%2A%2A"
    assert redact_url("ws://192.168.0.41:8080") == "ws://192.168.0.41:8080"
