"""Line wire format: ``key<TAB>value\\n``.

Values are rendered by a depth-first, left-to-right walk.  Composite
members are separated by ``,`` and only the very last scalar of the walk
carries the caller's terminator, so ``[(1, 2), 3]`` renders as
``1,2,3\\n``.  The rendering is lossy for composites, which is why only
scalar types are accepted on the write path.
"""

from __future__ import annotations

import re
from typing import TextIO

from confpipe.exceptions import MalformedLineError, UnsupportedWriteTypeError, ValueParseError
from confpipe.models.values import (
    BoolValue,
    ChangeEvent,
    ConfigValue,
    FloatValue,
    IntValue,
    ListValue,
    PairValue,
    PendingWrite,
    StringValue,
    ValueType,
)

SEPARATOR = "\t"
TERMINATOR = "\n"
MEMBER_SEPARATOR = ","

_INT_PREFIX = re.compile(r"\s*[+-]?\d+", re.ASCII)
_FLOAT_PREFIX = re.compile(
    r"""
    \s*[+-]?
    (?:
        (?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?
      | inf(?:inity)?
      | nan
    )
    """,
    re.VERBOSE | re.IGNORECASE | re.ASCII,
)


def serialize(value: ConfigValue | None, terminator: str = TERMINATOR) -> str:
    """Render *value* followed by *terminator*.

    ``None`` (an unset key) renders as the empty string, as does an empty
    list.
    """
    match value:
        case None:
            return ""
        case StringValue(value=text):
            return f"{text}{terminator}"
        case BoolValue(value=flag):
            return f"{'true' if flag else 'false'}{terminator}"
        case IntValue(value=number):
            return f"{number}{terminator}"
        case FloatValue(value=number):
            return f"{number!r}{terminator}"
        case ListValue(items=items):
            last = len(items) - 1
            return "".join(
                serialize(item, terminator if index == last else MEMBER_SEPARATOR) for index, item in enumerate(items)
            )
        case PairValue(first=first, second=second):
            return serialize(first, MEMBER_SEPARATOR) + serialize(second, terminator)
    return ""


def write_value(stream: TextIO, value: ConfigValue | None, terminator: str = TERMINATOR) -> int:
    """Write the rendering of *value* to *stream*.

    Returns the number of UTF-8 bytes emitted.  The count is informational
    only.
    """
    text = serialize(value, terminator)
    if text:
        stream.write(text)
    return len(text.encode("utf-8"))


def format_line(event: ChangeEvent) -> str:
    """Render a change notification as one output line.

    An unset key produces ``key<TAB>`` followed by a bare newline.
    """
    if event.value is None:
        return f"{event.key}{SEPARATOR}{TERMINATOR}"
    body = serialize(event.value, TERMINATOR)
    if not body:
        # Empty list: keep the line shape intact.
        body = TERMINATOR
    return f"{event.key}{SEPARATOR}{body}"


def split_line(line: str) -> PendingWrite:
    """Split an input line on its last TAB.

    One trailing newline (``\\n`` or ``\\r\\n``) is stripped first.  A line
    without a TAB raises :class:`MalformedLineError`.
    """
    if line.endswith("\n"):
        line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
    key, sep, raw = line.rpartition(SEPARATOR)
    if not sep:
        raise MalformedLineError("Input line has no TAB separator", line=line)
    return PendingWrite(key=key, raw_value=raw)


def parse_value(raw: str, expected: ValueType) -> ConfigValue:
    """Convert raw line text into a value of the *expected* type.

    Integers and floats are scanned from the start of the text; anything
    after a valid numeric prefix is ignored.  Booleans never fail: only the
    exact text ``true`` is true.
    """
    if expected == ValueType.STRING:
        return StringValue(value=raw)

    if expected == ValueType.INT:
        scanned = _INT_PREFIX.match(raw)
        if scanned is None:
            raise ValueParseError(f"Not an integer: {raw!r}", raw=raw, expected=expected)
        return IntValue(value=int(scanned.group()))

    if expected == ValueType.FLOAT:
        scanned = _FLOAT_PREFIX.match(raw)
        if scanned is None:
            raise ValueParseError(f"Not a number: {raw!r}", raw=raw, expected=expected)
        return FloatValue(value=float(scanned.group()))

    if expected == ValueType.BOOL:
        return BoolValue(value=raw == "true")

    raise UnsupportedWriteTypeError(f"Cannot write {expected} values from text", expected=expected)
