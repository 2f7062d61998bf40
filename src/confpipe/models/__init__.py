"""Data model for configuration values and stream events."""

from confpipe.models.values import (
    SCALAR_TYPES,
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
    value_from_json,
    value_to_json,
)

__all__ = [
    "SCALAR_TYPES",
    "BoolValue",
    "ChangeEvent",
    "ConfigValue",
    "FloatValue",
    "IntValue",
    "ListValue",
    "PairValue",
    "PendingWrite",
    "StringValue",
    "ValueType",
    "from_python",
    "value_from_json",
    "value_to_json",
]
