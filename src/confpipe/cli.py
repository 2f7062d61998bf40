"""Command-line entry point.

Usage::

    confpipe [--backend memory|mqtt] DIR [DIR ...]

Every change under the watched directories is printed as
``key<TAB>value`` on stdout; ``key<TAB>value`` lines on stdin are written
back to the store.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import enum
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Any, TextIO

from confpipe import __version__
from confpipe.bridge import StreamBridge
from confpipe.config import BACKENDS, ConfpipeConfig
from confpipe.exceptions import ConfpipeConfigError, StoreConnectionError, StoreError
from confpipe.store import open_store, validate_key

_logger = logging.getLogger(__name__)

#: Signals that end the loop gracefully instead of killing the process.
SHUTDOWN_SIGNALS = ("SIGHUP", "SIGPIPE", "SIGINT", "SIGTERM")


class ExitCode(enum.IntEnum):
    OK = 0
    USAGE = 1
    SIGNALS = 2
    STDOUT_BUFFERING = 3
    STDIN_BUFFERING = 4
    STORE = 5


class SetupError(Exception):
    """Startup failed; carries the process exit code."""

    def __init__(self, message: str, exit_code: ExitCode) -> None:
        self.exit_code = exit_code
        super().__init__(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="confpipe",
        description="Stream configuration store changes to stdout and apply key<TAB>value lines from stdin.",
    )
    parser.add_argument(
        "directories",
        nargs="*",
        metavar="DIR",
        help="Configuration directory to watch (e.g. /apps/editor).",
    )
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default=None,
        help="Store backend (default: $CONFPIPE_BACKEND or memory).",
    )
    parser.add_argument("--mqtt-host", default=None, help="MQTT broker host.")
    parser.add_argument("--mqtt-port", type=int, default=None, help="MQTT broker port.")
    parser.add_argument("--mqtt-root", default=None, help="Topic prefix holding the configuration tree.")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=None,
        help="Enable debug logs on stderr.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _line_buffer(stream: TextIO, exit_code: ExitCode) -> None:
    try:
        stream.reconfigure(line_buffering=True)  # type: ignore[attr-defined]
    except (AttributeError, OSError, ValueError) as exc:
        name = getattr(stream, "name", "stream")
        raise SetupError(f"Unable to switch {name} to line buffering: {exc}", exit_code) from exc


def _restore_signal(loop: asyncio.AbstractEventLoop, signum: signal.Signals, previous: Any) -> None:
    loop.remove_signal_handler(signum)
    if previous is not None:
        signal.signal(signum, previous)


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop, bridge: StreamBridge
) -> list[tuple[signal.Signals, Any]]:
    installed: list[tuple[signal.Signals, Any]] = []
    try:
        for name in SHUTDOWN_SIGNALS:
            signum = signal.Signals[name]
            previous = signal.getsignal(signum)
            loop.add_signal_handler(signum, bridge.request_shutdown, f"received {name}")
            installed.append((signum, previous))
    except (KeyError, NotImplementedError, RuntimeError, ValueError) as exc:
        for signum, previous in installed:
            _restore_signal(loop, signum, previous)
        raise SetupError(f"Unable to trap signals: {exc}", ExitCode.SIGNALS) from exc
    return installed


async def _pump_file(stream: TextIO, reader: asyncio.StreamReader) -> None:
    # Regular files cannot be registered with the selector; they never
    # block, so a worker thread reads them chunk by chunk.
    buffer = stream.buffer  # type: ignore[attr-defined]
    while chunk := await asyncio.to_thread(buffer.read1, 65536):
        reader.feed_data(chunk)
    reader.feed_eof()


async def open_line_reader(
    stream: TextIO,
    stack: contextlib.AsyncExitStack,
) -> asyncio.StreamReader:
    """Attach *stream* to a non-blocking :class:`asyncio.StreamReader`."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    try:
        transport, _protocol = await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), stream)
    except ValueError:
        task = asyncio.create_task(_pump_file(stream, reader), name="confpipe-stdin-file")
        stack.callback(task.cancel)
        return reader
    stack.callback(transport.close)
    return reader


async def _serve(config: ConfpipeConfig, directories: Sequence[str], stdin: TextIO, stdout: TextIO) -> None:
    loop = asyncio.get_running_loop()
    async with contextlib.AsyncExitStack() as stack:
        try:
            store = open_store(config)
        except StoreConnectionError as exc:
            raise SetupError(str(exc), ExitCode.STORE) from exc
        stack.callback(store.close)

        reader = await open_line_reader(stdin, stack)
        bridge = StreamBridge(store, reader, stdout, loop=loop)

        for signum, previous in _install_signal_handlers(loop, bridge):
            stack.callback(_restore_signal, loop, signum, previous)

        stack.callback(bridge.unwatch)
        try:
            bridge.watch(directories)
        except StoreError as exc:
            raise SetupError(f"Unable to watch directories: {exc}", ExitCode.STORE) from exc

        await bridge.run()
        _logger.debug("Bridge stopped: %s", bridge.stop_reason)


def main(argv: Sequence[str] | None = None, *, stdin: TextIO | None = None, stdout: TextIO | None = None) -> int:
    """Run confpipe; returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout

    if not args.directories:
        parser.print_usage(sys.stderr)
        print("confpipe: at least one directory is required", file=sys.stderr)
        return ExitCode.USAGE

    overrides: dict[str, Any] = {
        "backend": args.backend,
        "mqtt_host": args.mqtt_host,
        "mqtt_port": args.mqtt_port,
        "mqtt_root": args.mqtt_root,
        "verbose": args.verbose,
    }
    try:
        config = ConfpipeConfig.from_env(**overrides)
        for directory in args.directories:
            validate_key(directory)
    except (ConfpipeConfigError, StoreError) as exc:
        print(f"confpipe: {exc}", file=sys.stderr)
        return ExitCode.USAGE

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        _line_buffer(stdout, ExitCode.STDOUT_BUFFERING)
        _line_buffer(stdin, ExitCode.STDIN_BUFFERING)
        asyncio.run(_serve(config, args.directories, stdin, stdout))
    except SetupError as exc:
        print(f"confpipe: {exc}", file=sys.stderr)
        return exc.exit_code
    return ExitCode.OK
