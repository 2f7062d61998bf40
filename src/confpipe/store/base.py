"""Configuration store contract.

The bridge never talks to a storage engine directly.  It consumes the
small surface defined by :class:`ConfigStore`: typed reads and writes,
directory watches, change subscriptions and a current-state sweep.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from confpipe.exceptions import StoreError, StoreWriteError
from confpipe.models.values import (
    BoolValue,
    ChangeEvent,
    ConfigValue,
    FloatValue,
    IntValue,
    StringValue,
    ValueType,
)

ChangeCallback = Callable[[ChangeEvent], None]


def validate_key(key: str) -> str:
    """Return *key* if it is a valid absolute store path.

    Paths are slash separated, start with ``/``, have no empty segments
    and no trailing slash.  The root ``/`` is valid.
    """
    if key == "/":
        return key
    if not key.startswith("/") or key.endswith("/") or "//" in key:
        raise StoreError(f"Invalid store path: {key!r}")
    if any(ch in key for ch in "\t\n\r\0#+"):
        raise StoreError(f"Invalid character in store path: {key!r}")
    return key


def is_below(directory: str, key: str) -> bool:
    """Whether *key* is *directory* itself or lies beneath it."""
    if directory == "/":
        return True
    return key == directory or key.startswith(directory + "/")


@runtime_checkable
class ConfigStore(Protocol):
    """What the bridge requires from a configuration store.

    Notification callbacks may run on a thread owned by the store; the
    consumer is responsible for moving them onto its own loop.
    """

    def get(self, key: str) -> ConfigValue | None: ...

    def get_type(self, key: str) -> ValueType | None: ...

    def set(self, key: str, value: ConfigValue) -> None: ...

    def set_string(self, key: str, value: str) -> None: ...

    def set_int(self, key: str, value: int) -> None: ...

    def set_float(self, key: str, value: float) -> None: ...

    def set_bool(self, key: str, value: bool) -> None: ...

    def unset(self, key: str) -> None: ...

    def add_dir(self, path: str) -> None: ...

    def remove_dir(self, path: str) -> None: ...

    def notify_add(self, path: str, callback: ChangeCallback) -> int: ...

    def notify_remove(self, subscription_id: int) -> None: ...

    def notify(self, path: str) -> None: ...

    def close(self) -> None: ...


class SubscriptionRegistry:
    """Thread-safe table of directory subscriptions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscriptions: dict[int, tuple[str, ChangeCallback]] = {}

    def add(self, path: str, callback: ChangeCallback) -> int:
        with self._lock:
            subscription_id = next(self._ids)
            self._subscriptions[subscription_id] = (path, callback)
        return subscription_id

    def remove(self, subscription_id: int) -> None:
        with self._lock:
            if self._subscriptions.pop(subscription_id, None) is None:
                raise StoreError(f"Unknown subscription id {subscription_id}")

    def matching(self, key: str) -> list[ChangeCallback]:
        """Callbacks whose directory contains *key*, in registration order."""
        with self._lock:
            return [callback for path, callback in self._subscriptions.values() if is_below(path, key)]

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)


class WatchedDirs:
    """Reference-counted set of watched directories."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}

    def add(self, path: str) -> bool:
        """Register *path*; returns ``True`` on the first registration."""
        with self._lock:
            count = self._counts.get(path, 0)
            self._counts[path] = count + 1
            return count == 0

    def remove(self, path: str) -> bool:
        """Drop one registration; returns ``True`` when the last one goes."""
        with self._lock:
            count = self._counts.get(path, 0)
            if count == 0:
                raise StoreError(f"Directory is not watched: {path!r}")
            if count == 1:
                del self._counts[path]
                return True
            self._counts[path] = count - 1
            return False

    def covers(self, key: str) -> bool:
        with self._lock:
            return any(is_below(path, key) for path in self._counts)

    def paths(self) -> list[str]:
        with self._lock:
            return list(self._counts)


class TypedSetters:
    """``set_string``/``set_int``/``set_float``/``set_bool`` on top of ``set``.

    Python values of the wrong type are rejected with
    :class:`~confpipe.exceptions.StoreWriteError` before reaching the store.
    """

    def set(self, key: str, value: ConfigValue) -> None:
        raise NotImplementedError

    def set_string(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StoreWriteError(f"Expected str for {key}, got {type(value).__name__}", key=key)
        self.set(key, StringValue(value=value))

    def set_int(self, key: str, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int):
            raise StoreWriteError(f"Expected int for {key}, got {type(value).__name__}", key=key)
        self.set(key, IntValue(value=value))

    def set_float(self, key: str, value: float) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise StoreWriteError(f"Expected float for {key}, got {type(value).__name__}", key=key)
        self.set(key, FloatValue(value=float(value)))

    def set_bool(self, key: str, value: bool) -> None:
        if not isinstance(value, bool):
            raise StoreWriteError(f"Expected bool for {key}, got {type(value).__name__}", key=key)
        self.set(key, BoolValue(value=value))
