"""Configuration store adapters."""

from __future__ import annotations

from confpipe.config import ConfpipeConfig
from confpipe.store.base import ChangeCallback, ConfigStore, is_below, validate_key
from confpipe.store.memory import MemoryStore


def open_store(config: ConfpipeConfig) -> ConfigStore:
    """Create and connect the store selected by ``config.backend``."""
    if config.backend == "mqtt":
        # Imported lazily so the memory backend never loads paho.
        from confpipe.store.mqtt import MqttStore

        store = MqttStore(config)
        store.connect()
        return store
    return MemoryStore()


__all__ = [
    "ChangeCallback",
    "ConfigStore",
    "MemoryStore",
    "is_below",
    "open_store",
    "validate_key",
]
