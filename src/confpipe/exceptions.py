"""Custom exception hierarchy for confpipe."""

from __future__ import annotations


class ConfpipeError(Exception):
    """Base exception for all confpipe errors."""


class ConfpipeConfigError(ConfpipeError):
    """Invalid or missing configuration."""


class StoreError(ConfpipeError):
    """Configuration store failure (invalid path, closed store, ...)."""


class StoreConnectionError(StoreError):
    """Could not connect to the backing configuration store."""


class StoreWriteError(StoreError):
    """The store rejected a typed write."""

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)


class CodecError(ConfpipeError):
    """Wire-format encode/decode failure."""


class MalformedLineError(CodecError):
    """An input line has no TAB separator."""

    def __init__(self, message: str, *, line: str = "") -> None:
        self.line = line
        super().__init__(message)


class ValueParseError(CodecError):
    """Raw text could not be scanned as the expected value type."""

    def __init__(self, message: str, *, raw: str = "", expected: str = "") -> None:
        self.raw = raw
        self.expected = expected
        super().__init__(message)


class UnsupportedWriteTypeError(CodecError):
    """The key holds a composite value (list/pair) which cannot be written.

    The line format has no grammar for re-parsing nested list or pair text,
    so these keys are never write targets.
    """

    def __init__(self, message: str, *, expected: str = "") -> None:
        self.expected = expected
        super().__init__(message)
