"""confpipe - Bridge a hierarchical configuration store to key<TAB>value line streams."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("confpipe")
except PackageNotFoundError:
    __version__ = "0+local"
from confpipe.bridge import BridgeState, LineOutcome, StreamBridge
from confpipe.codec import format_line, parse_value, serialize, split_line, write_value
from confpipe.config import ConfpipeConfig
from confpipe.exceptions import (
    CodecError,
    ConfpipeConfigError,
    ConfpipeError,
    MalformedLineError,
    StoreConnectionError,
    StoreError,
    StoreWriteError,
    UnsupportedWriteTypeError,
    ValueParseError,
)
from confpipe.models import (
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
    from_python,
)
from confpipe.store import ConfigStore, MemoryStore, open_store

__all__ = [
    "__version__",
    "BoolValue",
    "BridgeState",
    "ChangeEvent",
    "CodecError",
    "ConfigStore",
    "ConfigValue",
    "ConfpipeConfig",
    "ConfpipeConfigError",
    "ConfpipeError",
    "FloatValue",
    "IntValue",
    "LineOutcome",
    "ListValue",
    "MalformedLineError",
    "MemoryStore",
    "PairValue",
    "PendingWrite",
    "StoreConnectionError",
    "StoreError",
    "StoreWriteError",
    "StreamBridge",
    "StringValue",
    "UnsupportedWriteTypeError",
    "ValueParseError",
    "ValueType",
    "format_line",
    "from_python",
    "open_store",
    "parse_value",
    "serialize",
    "split_line",
    "write_value",
]
