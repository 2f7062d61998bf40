"""Stream protocol engine.

:class:`StreamBridge` ties a configuration store to a pair of text
streams on a single asyncio loop:

* store notifications arrive on the store's own thread, hop onto the
  loop with ``call_soon_threadsafe`` and are queued; one output task
  drains the queue, so output lines are never interleaved;
* an input task reads ``key<TAB>value`` lines and writes them back to
  the store, probing the key's current type first.

The bridge runs until shutdown is requested, either stream fails, or the
input path ends (EOF, read error, malformed line).
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from collections.abc import Sequence
from enum import StrEnum
from typing import Any, TextIO

from confpipe.codec import format_line, parse_value, split_line
from confpipe.exceptions import MalformedLineError, StoreError, ValueParseError
from confpipe.models.values import (
    SCALAR_TYPES,
    BoolValue,
    ChangeEvent,
    ConfigValue,
    FloatValue,
    IntValue,
    PendingWrite,
    StringValue,
    ValueType,
)
from confpipe.store.base import ConfigStore

_logger = logging.getLogger(__name__)


class BridgeState(StrEnum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class LineOutcome(StrEnum):
    APPLIED = "applied"
    DROPPED = "dropped"
    MALFORMED = "malformed"


class StreamBridge:
    """Bridge between a :class:`ConfigStore` and line-oriented streams.

    Must be created on the loop that will run it; :meth:`on_change` is the
    only method safe to call from other threads.
    """

    def __init__(
        self,
        store: ConfigStore,
        reader: asyncio.StreamReader,
        writer: TextIO,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        encoding: str = "utf-8",
        drain_timeout: float = 0.05,
    ) -> None:
        self._store = store
        self._reader = reader
        self._writer = writer
        self._loop = loop or asyncio.get_running_loop()
        self._encoding = encoding
        self._drain_timeout = drain_timeout
        self._events: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._shutdown = asyncio.Event()
        self._state = BridgeState.STARTING
        self._stop_reason: str | None = None
        self._output_failed = False
        self._output_fd: int | None = None
        self._watched: list[str] = []
        self._subscription_ids: list[int] = []

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def stop_reason(self) -> str | None:
        """Why the bridge left the running state, once it has."""
        return self._stop_reason

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def watch(self, directories: Sequence[str]) -> None:
        """Watch, subscribe and prime each directory, in order."""
        for directory in directories:
            self._store.add_dir(directory)
            self._watched.append(directory)
            self._subscription_ids.append(self._store.notify_add(directory, self.on_change))
            self._store.notify(directory)
            _logger.debug("Watching %s", directory)

    def unwatch(self) -> None:
        """Drop subscriptions and watches in reverse order of creation."""
        while self._subscription_ids:
            subscription_id = self._subscription_ids.pop()
            try:
                self._store.notify_remove(subscription_id)
            except StoreError:
                _logger.debug("Failed to remove subscription %d", subscription_id, exc_info=True)
        while self._watched:
            directory = self._watched.pop()
            try:
                self._store.remove_dir(directory)
            except StoreError:
                _logger.debug("Failed to unwatch %s", directory, exc_info=True)

    def on_change(self, event: ChangeEvent) -> None:
        """Queue a store notification; safe to call from any thread."""
        try:
            self._loop.call_soon_threadsafe(self._events.put_nowait, event)
        except RuntimeError:
            # Loop already closed: the process is shutting down.
            _logger.debug("Dropped change for %s after loop close", event.key)

    # ------------------------------------------------------------------
    # Input path
    # ------------------------------------------------------------------

    def handle_line(self, line: str) -> LineOutcome:
        """Apply one input line to the store."""
        try:
            pending = split_line(line)
        except MalformedLineError:
            _logger.warning("Input line without TAB separator; closing input")
            return LineOutcome.MALFORMED
        return self.apply_write(pending)

    def apply_write(self, pending: PendingWrite) -> LineOutcome:
        """Convert and store one pending write.

        Unset keys are written as strings.  Keys holding lists or pairs
        cannot be written and end the input path.
        """
        try:
            expected = self._store.get_type(pending.key) or ValueType.STRING
        except StoreError as exc:
            _logger.warning("Dropped write to %s: %s", pending.key, exc)
            return LineOutcome.DROPPED
        if expected not in SCALAR_TYPES:
            _logger.critical("Invalid value type %s for %s", expected, pending.key)
            return LineOutcome.MALFORMED

        try:
            value = parse_value(pending.raw_value, expected)
            self._set(pending.key, value)
        except (ValueParseError, StoreError) as exc:
            _logger.warning("Dropped write to %s: %s", pending.key, exc)
            return LineOutcome.DROPPED
        _logger.debug("Wrote %s as %s", pending.key, expected)
        return LineOutcome.APPLIED

    def _set(self, key: str, value: ConfigValue) -> None:
        match value:
            case StringValue(value=text):
                self._store.set_string(key, text)
            case IntValue(value=number):
                self._store.set_int(key, number)
            case FloatValue(value=number):
                self._store.set_float(key, number)
            case BoolValue(value=flag):
                self._store.set_bool(key, flag)

    async def _read_lines(self) -> None:
        while True:
            try:
                raw = await self._reader.readline()
            except (OSError, ValueError) as exc:
                # ValueError covers an over-long line (StreamReader limit).
                self._stop(f"input stream error: {exc}")
                return
            if not raw:
                self._stop("input stream closed")
                return
            if self.handle_line(raw.decode(self._encoding, errors="replace")) is LineOutcome.MALFORMED:
                self._stop("malformed input")
                return

    # ------------------------------------------------------------------
    # Output path
    # ------------------------------------------------------------------

    def write_event(self, event: ChangeEvent) -> None:
        """Write one change line and flush it."""
        self._writer.write(format_line(event))
        self._writer.flush()

    async def _write_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                self.write_event(event)
            except (OSError, ValueError) as exc:
                # ValueError: write to a closed file.
                self._output_failed = True
                self._stop(f"output stream error: {exc}")
                return

    async def _drain_events(self) -> None:
        """Write changes still queued (or still in flight) at shutdown."""
        try:
            async with asyncio.timeout(self._drain_timeout):
                while True:
                    self.write_event(await self._events.get())
        except TimeoutError:
            pass
        except (OSError, ValueError) as exc:
            _logger.debug("Dropped queued changes: %s", exc)

    def _watch_output(self) -> None:
        """Watch a pipe on the output side for the reader going away.

        The write end of a pipe polls as an error once its last reader is
        closed, which the selector reports as readable.  Other kinds of
        output (regular files, terminals, in-memory buffers) are only
        checked on write.
        """
        try:
            fd = self._writer.fileno()
            is_pipe = stat.S_ISFIFO(os.fstat(fd).st_mode)
        except (AttributeError, OSError, ValueError):
            return
        if not is_pipe:
            return
        try:
            self._loop.add_reader(fd, self._on_output_hangup)
        except (NotImplementedError, OSError, ValueError):
            _logger.debug("Cannot watch output fd %d for hang-up", fd, exc_info=True)
            return
        self._output_fd = fd

    def _unwatch_output(self) -> None:
        if self._output_fd is not None:
            self._loop.remove_reader(self._output_fd)
            self._output_fd = None

    def _on_output_hangup(self) -> None:
        self._unwatch_output()
        self._output_failed = True
        self.request_shutdown("output stream hang-up")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def request_shutdown(self, reason: str = "shutdown requested") -> None:
        """Ask the loop to stop at its next iteration."""
        self._stop(reason)
        self._shutdown.set()

    def _stop(self, reason: str) -> None:
        if self._stop_reason is None:
            self._stop_reason = reason
            _logger.debug("Stopping: %s", reason)

    async def run(self) -> None:
        """Run until shutdown, a stream fault, or the end of input.

        Changes already queued when the input path ends are still written,
        unless the output stream is the reason for stopping.
        """
        self._state = BridgeState.RUNNING
        self._watch_output()
        tasks = {
            asyncio.create_task(self._read_lines(), name="confpipe-input"),
            asyncio.create_task(self._write_events(), name="confpipe-output"),
            asyncio.create_task(self._shutdown.wait(), name="confpipe-shutdown"),
        }
        done: set[asyncio.Task[Any]] = set()
        try:
            done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._state = BridgeState.STOPPING
            self._unwatch_output()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if done and not self._output_failed:
                await self._drain_events()
            self._state = BridgeState.STOPPED
        for task in done:
            if not task.cancelled():
                task.result()
