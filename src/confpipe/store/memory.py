"""In-process configuration store.

Values live in a dict guarded by a lock.  Change notifications are
delivered on a dedicated daemon thread, so subscribers see the same
threading model as with an out-of-process store.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Mapping
from typing import Any

from confpipe.exceptions import StoreError, StoreWriteError
from confpipe.models.values import ChangeEvent, ConfigValue, ValueType, from_python
from confpipe.store.base import (
    ChangeCallback,
    SubscriptionRegistry,
    TypedSetters,
    WatchedDirs,
    is_below,
    validate_key,
)

_logger = logging.getLogger(__name__)

_Delivery = tuple[ChangeCallback, ChangeEvent]


class MemoryStore(TypedSetters):
    """Thread-safe in-memory implementation of :class:`~confpipe.store.base.ConfigStore`.

    Parameters
    ----------
    initial : Mapping[str, Any] or None
        Values to seed the store with.  Plain Python values are converted
        with :func:`~confpipe.models.values.from_python`.  Seeding does not
        notify.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._lock = threading.RLock()
        self._values: dict[str, ConfigValue] = {}
        self._dirs = WatchedDirs()
        self._subscriptions = SubscriptionRegistry()
        self._deliveries: queue.Queue[_Delivery | None] = queue.Queue()
        self._closed = False

        for key, value in (initial or {}).items():
            self._values[validate_key(key)] = from_python(value)

        self._thread = threading.Thread(target=self._deliver_forever, name="confpipe-notify", daemon=True)
        self._thread.start()

    def __enter__(self) -> MemoryStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> ConfigValue | None:
        with self._lock:
            return self._values.get(key)

    def get_type(self, key: str) -> ValueType | None:
        value = self.get(key)
        return value.value_type if value is not None else None

    def keys(self, path: str = "/") -> list[str]:
        """Currently set keys under *path*, sorted."""
        with self._lock:
            return sorted(key for key in self._values if is_below(path, key))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, value: ConfigValue) -> None:
        self._check_writable(key)
        with self._lock:
            self._values[key] = value
        _logger.debug("Set %s (%s)", key, value.value_type)
        self._publish(ChangeEvent(key=key, value=value))

    def unset(self, key: str) -> None:
        self._check_writable(key)
        with self._lock:
            existed = self._values.pop(key, None) is not None
        if existed:
            _logger.debug("Unset %s", key)
            self._publish(ChangeEvent(key=key, value=None))

    def _check_writable(self, key: str) -> None:
        if self._closed:
            raise StoreWriteError("Store is closed", key=key)
        try:
            validate_key(key)
        except StoreError as exc:
            raise StoreWriteError(str(exc), key=key) from exc
        if key == "/":
            raise StoreWriteError("Cannot store a value at the root", key=key)

    # ------------------------------------------------------------------
    # Watches and notifications
    # ------------------------------------------------------------------

    def add_dir(self, path: str) -> None:
        validate_key(path)
        if self._dirs.add(path):
            _logger.debug("Watching %s", path)

    def remove_dir(self, path: str) -> None:
        if self._dirs.remove(path):
            _logger.debug("Stopped watching %s", path)

    def notify_add(self, path: str, callback: ChangeCallback) -> int:
        validate_key(path)
        subscription_id = self._subscriptions.add(path, callback)
        _logger.debug("Subscription %d added for %s", subscription_id, path)
        return subscription_id

    def notify_remove(self, subscription_id: int) -> None:
        self._subscriptions.remove(subscription_id)
        _logger.debug("Subscription %d removed", subscription_id)

    def notify(self, path: str) -> None:
        """Queue one change event per key currently set under *path*."""
        validate_key(path)
        with self._lock:
            snapshot = sorted((key, value) for key, value in self._values.items() if is_below(path, key))
        for key, value in snapshot:
            event = ChangeEvent(key=key, value=value)
            for callback in self._subscriptions.matching(key):
                self._deliveries.put((callback, event))

    def _publish(self, event: ChangeEvent) -> None:
        # Only keys under a watched directory are pushed to subscribers.
        if not self._dirs.covers(event.key):
            return
        for callback in self._subscriptions.matching(event.key):
            self._deliveries.put((callback, event))

    def _deliver_forever(self) -> None:
        while True:
            item = self._deliveries.get()
            try:
                if item is None:
                    return
                callback, event = item
                try:
                    callback(event)
                except Exception:
                    _logger.debug("Change callback failed for %s", event.key, exc_info=True)
            finally:
                self._deliveries.task_done()

    def flush(self) -> None:
        """Block until every queued notification has been delivered."""
        self._deliveries.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._subscriptions.clear()
        self._deliveries.put(None)
        if threading.current_thread() is not self._thread:
            self._thread.join()
        _logger.debug("Memory store closed")
