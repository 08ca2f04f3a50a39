import logging
from unittest.mock import MagicMock

import pytest

import mqtt_tools.publish as pub
from mqtt_tools.config import InvocationConfig


@pytest.fixture
def isolated_cwd(monkeypatch, tmp_path):
    """main() reads .env files; keep it away from the developer's ones"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    return tmp_path


def test_run_publish_sends_message_at_qos0(fake_paho_client, pub_cfg):
    assert pub.run_publish(pub_cfg) == 0

    fake_paho_client.connect.assert_called_once_with("localhost", 1883, keepalive=60)
    fake_paho_client.publish.assert_called_once_with("test", payload=b"hello", qos=0, retain=False)
    fake_paho_client.disconnect.assert_called_once()


def test_run_publish_with_retain(fake_paho_client):
    cfg = InvocationConfig(topic="test", message="hello", retain=True)

    assert pub.run_publish(cfg) == 0
    fake_paho_client.publish.assert_called_once_with("test", payload=b"hello", qos=0, retain=True)


def test_run_publish_encodes_utf8(fake_paho_client):
    cfg = InvocationConfig(topic="test", message="grüße")

    assert pub.run_publish(cfg) == 0
    _, kwargs = fake_paho_client.publish.call_args
    assert kwargs["payload"] == "grüße".encode("utf-8")


def test_run_publish_failure_still_tears_down(fake_paho_client, pub_cfg, caplog):
    fake_paho_client.publish.return_value = MagicMock(rc=4)

    with caplog.at_level(logging.ERROR):
        assert pub.run_publish(pub_cfg) == 1

    fake_paho_client.disconnect.assert_called_once()
    assert "failed to publish message" in caplog.text


def test_run_publish_connect_failure_single_diagnostic(fake_paho_client, pub_cfg, caplog):
    fake_paho_client.connect.side_effect = OSError("Name or service not known")

    with caplog.at_level(logging.ERROR):
        assert pub.run_publish(pub_cfg) == 1

    errors = [r for r in caplog.records if r.levelno >= logging.ERROR]
    assert len(errors) == 1
    assert "failed to connect to MQTT broker" in errors[0].getMessage()
    fake_paho_client.publish.assert_not_called()
    fake_paho_client.disconnect.assert_not_called()


def test_main_help_prints_usage_and_exits_zero(isolated_cwd, capsys):
    with pytest.raises(SystemExit) as exc:
        pub.main(["--help"])

    assert exc.value.code == 0
    out = capsys.readouterr().out
    assert "Publish message to MQTT topic" in out
    assert "-m, --message" in out
    assert "mqtt-pub -t test -m hello" in out


def test_main_missing_message_prints_usage_and_fails(isolated_cwd, monkeypatch, capsys):
    called = {"n": 0}
    monkeypatch.setattr(pub, "run_publish", lambda cfg: called.__setitem__("n", 1) or 0)

    with pytest.raises(SystemExit) as exc:
        pub.main(["-t", "test"])

    assert exc.value.code == 1
    assert "Usage:" in capsys.readouterr().out
    assert called["n"] == 0


def test_main_exits_with_run_publish_code(isolated_cwd, monkeypatch):
    seen = []

    def fake_run(cfg):
        seen.append(cfg)
        return 7

    monkeypatch.setattr(pub, "run_publish", fake_run)

    with pytest.raises(SystemExit) as exc:
        pub.main(["-t", "test", "-m", "hello", "-r"])

    assert exc.value.code == 7
    assert seen[0].topic == "test"
    assert seen[0].message == "hello"
    assert seen[0].retain is True


def test_main_end_to_end(isolated_cwd, fake_paho_client):
    with pytest.raises(SystemExit) as exc:
        pub.main(["-t", "test", "-m", "hello"])

    assert exc.value.code == 0
    fake_paho_client.publish.assert_called_once_with("test", payload=b"hello", qos=0, retain=False)


def test_main_interrupt_exits_nonzero(isolated_cwd, monkeypatch, caplog):
    def interrupted(cfg):
        raise KeyboardInterrupt

    monkeypatch.setattr(pub, "run_publish", interrupted)

    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as exc:
            pub.main(["-t", "test", "-m", "hello"])

    assert exc.value.code == 1
    errors = [r for r in caplog.records if r.levelno >= logging.ERROR]
    assert len(errors) == 1


def test_main_applies_log_level_from_env_file(isolated_cwd):
    (isolated_cwd / ".env").write_text("MQTT_TOOLS_LOG_LEVEL=WARNING\n")
    root = logging.getLogger()
    previous = root.level
    try:
        with pytest.raises(SystemExit):
            pub.main(["--help"])
        assert root.level == logging.WARNING
    finally:
        root.setLevel(previous)
