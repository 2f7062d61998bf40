"""MQTT broker used as a configuration store.

Each key is a topic below ``ConfpipeConfig.mqtt_root`` holding a retained
JSON payload (see :func:`~confpipe.models.values.value_to_json`).  An
empty retained payload deletes the key.  Subscribing to ``<dir>/#``
makes the broker replay every retained value under the directory, which
provides the initial current-state sweep, and then push live changes.

Notifications run on paho's network thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, cast

import paho.mqtt.client as mqtt

from confpipe.config import ConfpipeConfig
from confpipe.exceptions import CodecError, StoreConnectionError, StoreError, StoreWriteError
from confpipe.models.values import ChangeEvent, ConfigValue, ValueType, value_from_json, value_to_json
from confpipe.store.base import (
    ChangeCallback,
    SubscriptionRegistry,
    TypedSetters,
    WatchedDirs,
    is_below,
    validate_key,
)

_logger = logging.getLogger(__name__)

ClientFactory = Callable[[], mqtt.Client]


class MqttStore(TypedSetters):
    """paho-mqtt backed implementation of :class:`~confpipe.store.base.ConfigStore`.

    The store keeps the last value seen for each key under a watched
    directory.  That cache only answers :meth:`get_type` before a write
    and re-primes subscribers in :meth:`notify`.  Keys outside watched
    directories read as unset unless they were written through this store.
    """

    def __init__(
        self,
        config: ConfpipeConfig,
        *,
        client_factory: ClientFactory | None = None,
        qos: int = 1,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or self._default_client
        self._qos = qos
        self._root = config.mqtt_root.strip("/")
        self._client: mqtt.Client | None = None
        self._connected = threading.Event()
        self._connect_error: str | None = None
        self._lock = threading.Lock()
        self._values: dict[str, ConfigValue] = {}
        self._dirs = WatchedDirs()
        self._subscriptions = SubscriptionRegistry()

    def _default_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(_logger)
        if self._config.mqtt_username:
            client.username_pw_set(self._config.mqtt_username, self._config.mqtt_password)
        if self._config.mqtt_tls:
            client.tls_set()
        return client

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Connect to the broker and wait for the CONNACK."""
        config = self._config
        _logger.debug("MQTT store connecting host=%s port=%s root=%s", config.mqtt_host, config.mqtt_port, self._root)

        client = self._client_factory()
        client.on_connect = self._on_connect
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect
        try:
            client.connect(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        except OSError as exc:
            raise StoreConnectionError(f"Cannot reach MQTT broker {config.mqtt_host}:{config.mqtt_port}: {exc}") from exc
        client.loop_start()
        self._client = client

        if not self._connected.wait(config.mqtt_connect_timeout) or self._connect_error:
            reason = self._connect_error or "timed out"
            self.close()
            raise StoreConnectionError(f"MQTT connect failed: {reason}")

    def __enter__(self) -> MqttStore:
        self.connect()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _on_connect(
        self,
        client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.value != 0:
            _logger.warning("MQTT connect failed: %s", reason_code)
            self._connect_error = str(reason_code)
            self._connected.set()
            return
        _logger.debug("MQTT connected reason=%s", reason_code)
        self._connect_error = None
        # Resubscribe after a reconnect; the broker replays retained values.
        for path in self._dirs.paths():
            client.subscribe(self._filter(path), qos=self._qos)
        self._connected.set()

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        _logger.debug("MQTT disconnected: %s", reason_code)

    def _on_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        self.handle_message(msg.topic, msg.payload)

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Apply one retained/live publication and notify subscribers."""
        key = self._key(topic)
        if key is None:
            return

        value: ConfigValue | None = None
        if payload:
            try:
                value = value_from_json(payload)
            except CodecError:
                _logger.warning("Ignoring undecodable payload on %s", topic)
                return

        with self._lock:
            if value is None:
                self._values.pop(key, None)
            else:
                self._values[key] = value

        event = ChangeEvent(key=key, value=value)
        for callback in self._subscriptions.matching(key):
            try:
                callback(event)
            except Exception:
                _logger.debug("Change callback failed for %s", key, exc_info=True)

    # ------------------------------------------------------------------
    # Topic mapping
    # ------------------------------------------------------------------

    def _topic(self, key: str) -> str:
        return f"{self._root}{key}" if self._root else key.lstrip("/")

    def _filter(self, path: str) -> str:
        if path == "/":
            return f"{self._root}/#" if self._root else "#"
        return f"{self._topic(path)}/#"

    def _key(self, topic: str) -> str | None:
        if self._root:
            prefix = self._root + "/"
            if not topic.startswith(prefix):
                return None
            return "/" + topic[len(prefix) :]
        return "/" + topic

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def get(self, key: str) -> ConfigValue | None:
        with self._lock:
            return self._values.get(key)

    def get_type(self, key: str) -> ValueType | None:
        value = self.get(key)
        return value.value_type if value is not None else None

    def set(self, key: str, value: ConfigValue) -> None:
        self._publish(key, value_to_json(value).encode("utf-8"))
        # Remember the type even when the key is not under a watched directory.
        with self._lock:
            self._values[key] = value

    def unset(self, key: str) -> None:
        self._publish(key, b"")
        with self._lock:
            self._values.pop(key, None)

    def _publish(self, key: str, payload: bytes) -> None:
        try:
            validate_key(key)
        except StoreError as exc:
            raise StoreWriteError(str(exc), key=key) from exc
        if key == "/":
            raise StoreWriteError("Cannot store a value at the root", key=key)
        client = self._client
        if client is None:
            raise StoreWriteError("MQTT store is not connected", key=key)
        info = client.publish(self._topic(key), payload, qos=self._qos, retain=True)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise StoreWriteError(f"MQTT publish failed: {mqtt.error_string(info.rc)}", key=key)
        _logger.debug("Published %s (%d bytes)", key, len(payload))

    # ------------------------------------------------------------------
    # Watches and notifications
    # ------------------------------------------------------------------

    def add_dir(self, path: str) -> None:
        validate_key(path)
        client = self._client
        if client is None:
            raise StoreError("MQTT store is not connected")
        if not self._dirs.add(path):
            return
        result, _mid = client.subscribe(self._filter(path), qos=self._qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._dirs.remove(path)
            raise StoreError(f"MQTT subscribe to {path} failed: {mqtt.error_string(result)}")
        _logger.debug("Watching %s", path)

    def remove_dir(self, path: str) -> None:
        if not self._dirs.remove(path):
            return
        client = self._client
        if client is not None:
            client.unsubscribe(self._filter(path))
        with self._lock:
            stale = [key for key in self._values if is_below(path, key) and not self._dirs.covers(key)]
            for key in stale:
                del self._values[key]
        _logger.debug("Stopped watching %s", path)

    def notify_add(self, path: str, callback: ChangeCallback) -> int:
        validate_key(path)
        return self._subscriptions.add(path, callback)

    def notify_remove(self, subscription_id: int) -> None:
        self._subscriptions.remove(subscription_id)

    def notify(self, path: str) -> None:
        """Re-emit every cached value under *path*.

        Retained values that arrive after this call are delivered by the
        broker replay itself.
        """
        validate_key(path)
        with self._lock:
            snapshot = sorted((key, value) for key, value in self._values.items() if is_below(path, key))
        for key, value in snapshot:
            event = ChangeEvent(key=key, value=value)
            for callback in self._subscriptions.matching(key):
                callback(event)

    def close(self) -> None:
        """Disconnect and stop the network thread."""
        client = self._client
        self._client = None
        self._subscriptions.clear()
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            _logger.debug("MQTT network loop stopped")
