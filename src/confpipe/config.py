"""Runtime configuration for confpipe."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from confpipe.exceptions import ConfpipeConfigError

BACKENDS = ("memory", "mqtt")


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(value)
    except ValueError as exc:
        raise ConfpipeConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class ConfpipeConfig:
    """Bridge configuration.

    Parameters
    ----------
    backend : str
        Store adapter to use: ``"memory"`` (in-process store) or
        ``"mqtt"`` (retained messages on an MQTT broker).
    mqtt_host : str
        Broker hostname for the ``mqtt`` backend.
    mqtt_port : int
        Broker port.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_root : str
        Topic prefix under which configuration keys are stored.  The key
        ``/apps/foo`` maps to the topic ``<mqtt_root>/apps/foo``.
    mqtt_username : str or None
        Optional broker username.
    mqtt_password : str or None
        Optional broker password.
    mqtt_tls : bool
        Enable TLS with the system trust store.
    mqtt_connect_timeout : float
        Seconds to wait for the broker CONNACK at startup.
    verbose : bool
        Enable debug logging on stderr.
    """

    backend: str = "memory"
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_keepalive: int = 60
    mqtt_root: str = "confpipe"
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    mqtt_connect_timeout: float = 10.0
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ConfpipeConfigError(f"Unknown backend {self.backend!r}; expected one of {', '.join(BACKENDS)}")
        if not 0 < self.mqtt_port < 65536:
            raise ConfpipeConfigError(f"mqtt_port out of range: {self.mqtt_port}")

    @classmethod
    def from_env(cls, **overrides: Any) -> ConfpipeConfig:
        """Create configuration from ``CONFPIPE_*`` environment variables.

        Explicit keyword arguments override environment values.  Overrides
        whose value is ``None`` are ignored so callers can pass optional
        command-line values straight through.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        ConfpipeConfig
            Populated configuration.
        """
        env = os.environ
        overrides = {key: value for key, value in overrides.items() if value is not None}

        _ENV_STR_MAP = {
            "CONFPIPE_BACKEND": "backend",
            "CONFPIPE_MQTT_HOST": "mqtt_host",
            "CONFPIPE_MQTT_ROOT": "mqtt_root",
            "CONFPIPE_MQTT_USERNAME": "mqtt_username",
            "CONFPIPE_MQTT_PASSWORD": "mqtt_password",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMBER_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "CONFPIPE_MQTT_PORT": ("mqtt_port", int),
            "CONFPIPE_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "CONFPIPE_MQTT_CONNECT_TIMEOUT": ("mqtt_connect_timeout", float),
        }
        for env_key, (field_name, kind) in _ENV_NUMBER_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, kind)

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("CONFPIPE_MQTT_TLS"), False)
        if "verbose" not in overrides:
            config_kwargs["verbose"] = _env_bool(env.get("CONFPIPE_VERBOSE"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
