from __future__ import annotations

import pytest

from confpipe.config import ConfpipeConfig
from confpipe.exceptions import ConfpipeConfigError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CONFPIPE_BACKEND",
        "CONFPIPE_MQTT_HOST",
        "CONFPIPE_MQTT_PORT",
        "CONFPIPE_MQTT_KEEPALIVE",
        "CONFPIPE_MQTT_ROOT",
        "CONFPIPE_MQTT_TLS",
        "CONFPIPE_MQTT_CONNECT_TIMEOUT",
        "CONFPIPE_VERBOSE",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    config = ConfpipeConfig.from_env()
    assert config.backend == "memory"
    assert config.mqtt_port == 1883
    assert config.mqtt_tls is False
    assert config.verbose is False


def test_env_values_are_read(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONFPIPE_BACKEND", "mqtt")
    monkeypatch.setenv("CONFPIPE_MQTT_HOST", "broker")
    monkeypatch.setenv("CONFPIPE_MQTT_PORT", "8883")
    monkeypatch.setenv("CONFPIPE_MQTT_CONNECT_TIMEOUT", "2.5")
    monkeypatch.setenv("CONFPIPE_MQTT_TLS", "yes")

    config = ConfpipeConfig.from_env()

    assert config.backend == "mqtt"
    assert config.mqtt_host == "broker"
    assert config.mqtt_port == 8883
    assert config.mqtt_connect_timeout == 2.5
    assert config.mqtt_tls is True


def test_overrides_win_and_none_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONFPIPE_MQTT_HOST", "from-env")
    monkeypatch.setenv("CONFPIPE_MQTT_PORT", "1999")

    config = ConfpipeConfig.from_env(mqtt_host=None, mqtt_port=2000, verbose=True)

    assert config.mqtt_host == "from-env"
    assert config.mqtt_port == 2000
    assert config.verbose is True


def test_bad_numeric_env_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONFPIPE_MQTT_PORT", "eighty")
    with pytest.raises(ConfpipeConfigError):
        ConfpipeConfig.from_env()


def test_unknown_backend_raises() -> None:
    with pytest.raises(ConfpipeConfigError):
        ConfpipeConfig(backend="redis")


def test_port_range_checked() -> None:
    with pytest.raises(ConfpipeConfigError):
        ConfpipeConfig(mqtt_port=0)
