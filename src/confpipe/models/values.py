"""Typed configuration values.

A configuration value is a tagged union over six variants.  Scalars
(:class:`StringValue`, :class:`IntValue`, :class:`FloatValue`,
:class:`BoolValue`) carry a single Python value; composites
(:class:`ListValue`, :class:`PairValue`) nest further values of any
variant, so every consumer walks them recursively.

The union is discriminated on the ``type`` field, which also makes the
JSON form self-describing::

    {"type": "pair", "first": {"type": "string", "value": "a"},
     "second": {"type": "int", "value": 5}}
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from confpipe.exceptions import CodecError


class ValueType(StrEnum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    LIST = "list"
    PAIR = "pair"


#: Types a line on the input stream can be written as.
SCALAR_TYPES = frozenset({ValueType.STRING, ValueType.INT, ValueType.FLOAT, ValueType.BOOL})


class _ValueModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def value_type(self) -> ValueType:
        return ValueType(getattr(self, "type"))


class StringValue(_ValueModel):
    type: Literal["string"] = "string"
    value: str


class IntValue(_ValueModel):
    type: Literal["int"] = "int"
    value: int


class FloatValue(_ValueModel):
    model_config = ConfigDict(frozen=True, extra="forbid", ser_json_inf_nan="constants")

    type: Literal["float"] = "float"
    value: float


class BoolValue(_ValueModel):
    type: Literal["bool"] = "bool"
    value: bool


class ListValue(_ValueModel):
    type: Literal["list"] = "list"
    items: list[ConfigValue] = Field(default_factory=list)
    item_type: ValueType | None = Field(
        default=None,
        description="Declared element type, if the store tracks one. Informational only.",
    )


class PairValue(_ValueModel):
    type: Literal["pair"] = "pair"
    first: ConfigValue
    second: ConfigValue


ConfigValue = Annotated[
    StringValue | IntValue | FloatValue | BoolValue | ListValue | PairValue,
    Field(discriminator="type"),
]

ListValue.model_rebuild()
PairValue.model_rebuild()

_ADAPTER: TypeAdapter[Any] = TypeAdapter(ConfigValue)


def value_to_json(value: ConfigValue) -> str:
    """Serialize a value to its self-describing JSON form."""
    return _ADAPTER.dump_json(value).decode("utf-8")


def value_from_json(data: str | bytes) -> ConfigValue:
    """Parse the JSON form produced by :func:`value_to_json`."""
    try:
        value: ConfigValue = _ADAPTER.validate_json(data)
    except ValidationError as exc:
        raise CodecError(f"Invalid JSON config value: {exc.error_count()} error(s)") from exc
    return value


def from_python(obj: Any) -> ConfigValue:
    """Build a config value from plain Python data.

    ``str``/``int``/``float``/``bool`` map to the scalar variants, a
    ``list`` to :class:`ListValue` and a 2-``tuple`` to :class:`PairValue`.
    Existing config values are returned unchanged.
    """
    if isinstance(obj, _ValueModel):
        return obj  # type: ignore[return-value]
    # bool first: it is an int subclass
    if isinstance(obj, bool):
        return BoolValue(value=obj)
    if isinstance(obj, int):
        return IntValue(value=obj)
    if isinstance(obj, float):
        return FloatValue(value=obj)
    if isinstance(obj, str):
        return StringValue(value=obj)
    if isinstance(obj, tuple) and len(obj) == 2:
        return PairValue(first=from_python(obj[0]), second=from_python(obj[1]))
    if isinstance(obj, list):
        items = [from_python(item) for item in obj]
        kinds = {item.value_type for item in items}
        item_type = kinds.pop() if len(kinds) == 1 else None
        return ListValue(items=items, item_type=item_type)
    raise TypeError(f"Cannot convert {type(obj).__name__} to a config value")


@dataclass(frozen=True)
class ChangeEvent:
    """One notified mutation for a single key.

    ``value`` is ``None`` when the key was unset.
    """

    key: str
    value: ConfigValue | None


@dataclass(frozen=True)
class PendingWrite:
    """A ``key``/raw value pair taken from one input line."""

    key: str
    raw_value: str
