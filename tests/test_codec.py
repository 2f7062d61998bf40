"""Tests for the line wire format."""

from __future__ import annotations

import io
import math

import pytest

from confpipe.codec import format_line, parse_value, serialize, split_line, write_value
from confpipe.exceptions import MalformedLineError, UnsupportedWriteTypeError, ValueParseError
from confpipe.models.values import (
    BoolValue,
    ChangeEvent,
    FloatValue,
    IntValue,
    ListValue,
    PairValue,
    PendingWrite,
    StringValue,
    ValueType,
)

# ------------------------------------------------------------------
# serialize
# ------------------------------------------------------------------


class TestSerialize:
    def test_scalars(self) -> None:
        assert serialize(StringValue(value="hello")) == "hello\n"
        assert serialize(IntValue(value=-7)) == "-7\n"
        assert serialize(FloatValue(value=2.5)) == "2.5\n"
        assert serialize(BoolValue(value=True)) == "true\n"
        assert serialize(BoolValue(value=False)) == "false\n"

    def test_custom_terminator(self) -> None:
        assert serialize(IntValue(value=1), ";") == "1;"

    def test_list_of_ints(self) -> None:
        value = ListValue(items=[IntValue(value=1), IntValue(value=2), IntValue(value=3)])
        assert serialize(value, "\n") == "1,2,3\n"

    def test_pair(self) -> None:
        value = PairValue(first=StringValue(value="a"), second=IntValue(value=5))
        assert serialize(value, "\n") == "a,5\n"

    def test_nested_list_and_pair(self) -> None:
        value = ListValue(
            items=[
                PairValue(first=IntValue(value=1), second=IntValue(value=2)),
                IntValue(value=3),
            ]
        )
        assert serialize(value, "\n") == "1,2,3\n"

    def test_pair_of_lists(self) -> None:
        value = PairValue(
            first=ListValue(items=[BoolValue(value=True), BoolValue(value=False)]),
            second=ListValue(items=[StringValue(value="x")]),
        )
        assert serialize(value) == "true,false,x\n"

    def test_empty_list_and_none_emit_nothing(self) -> None:
        assert serialize(ListValue(items=[])) == ""
        assert serialize(None) == ""

    def test_large_float_uses_scientific_form(self) -> None:
        assert serialize(FloatValue(value=1e20)) == "1e+20\n"

    def test_write_value_returns_byte_count(self) -> None:
        stream = io.StringIO()
        count = write_value(stream, StringValue(value="héllo"), "\n")
        assert stream.getvalue() == "héllo\n"
        assert count == 7

    def test_write_value_none_writes_nothing(self) -> None:
        stream = io.StringIO()
        assert write_value(stream, None) == 0
        assert stream.getvalue() == ""


# ------------------------------------------------------------------
# format_line / split_line
# ------------------------------------------------------------------


def test_format_line_for_value() -> None:
    event = ChangeEvent(key="/apps/editor/font", value=StringValue(value="Mono 10"))
    assert format_line(event) == "/apps/editor/font\tMono 10\n"


def test_format_line_for_unset_key() -> None:
    assert format_line(ChangeEvent(key="key", value=None)) == "key\t\n"


def test_format_line_keeps_line_shape_for_empty_list() -> None:
    assert format_line(ChangeEvent(key="/k", value=ListValue())) == "/k\t\n"


def test_split_line_uses_last_tab() -> None:
    assert split_line("/a\tb\tc\n") == PendingWrite(key="/a\tb", raw_value="c")


def test_split_line_strips_crlf_once() -> None:
    assert split_line("/a\tvalue\r\n") == PendingWrite(key="/a", raw_value="value")
    assert split_line("/a\tvalue\n\n") == PendingWrite(key="/a", raw_value="value\n")


def test_split_line_empty_value() -> None:
    assert split_line("/a\t\n") == PendingWrite(key="/a", raw_value="")


def test_split_line_without_tab_is_malformed() -> None:
    with pytest.raises(MalformedLineError):
        split_line("novalueline\n")


# ------------------------------------------------------------------
# parse_value
# ------------------------------------------------------------------


class TestParseValue:
    def test_string_is_verbatim(self) -> None:
        assert parse_value("  spaced, out ", ValueType.STRING) == StringValue(value="  spaced, out ")

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("42", 42), ("-3", -3), ("+8", 8), (" 12", 12), ("17abc", 17)],
    )
    def test_int_scans_prefix(self, raw: str, expected: int) -> None:
        assert parse_value(raw, ValueType.INT) == IntValue(value=expected)

    @pytest.mark.parametrize("raw", ["notanumber", "", "-", "abc12"])
    def test_int_rejects_non_numbers(self, raw: str) -> None:
        with pytest.raises(ValueParseError):
            parse_value(raw, ValueType.INT)

    @pytest.mark.parametrize("raw", ["\u0664\u0662", "\uff14\uff12", "\u00a012"])
    def test_int_accepts_ascii_digits_only(self, raw: str) -> None:
        with pytest.raises(ValueParseError):
            parse_value(raw, ValueType.INT)

    @pytest.mark.parametrize("raw", ["\u0661.\u0665", "\u00a01.5"])
    def test_float_accepts_ascii_digits_only(self, raw: str) -> None:
        with pytest.raises(ValueParseError):
            parse_value(raw, ValueType.FLOAT)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("2.25", 2.25), ("-0.5", -0.5), (".5", 0.5), ("3", 3.0), ("1e3", 1000.0), ("3.5abc", 3.5)],
    )
    def test_float_scans_float_literal(self, raw: str, expected: float) -> None:
        assert parse_value(raw, ValueType.FLOAT) == FloatValue(value=expected)

    def test_float_keeps_fraction(self) -> None:
        # An integer scanner would truncate this to 3.
        value = parse_value("3.75", ValueType.FLOAT)
        assert isinstance(value, FloatValue)
        assert value.value == 3.75

    def test_float_special_values(self) -> None:
        inf = parse_value("inf", ValueType.FLOAT)
        nan = parse_value("NaN", ValueType.FLOAT)
        assert isinstance(inf, FloatValue) and math.isinf(inf.value)
        assert isinstance(nan, FloatValue) and math.isnan(nan.value)

    @pytest.mark.parametrize("raw", ["x1.5", "", "."])
    def test_float_rejects_non_numbers(self, raw: str) -> None:
        with pytest.raises(ValueParseError):
            parse_value(raw, ValueType.FLOAT)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("true", True), ("True", False), ("TRUE", False), ("1", False), ("", False), ("true ", False)],
    )
    def test_bool_is_exact_true(self, raw: str, expected: bool) -> None:
        assert parse_value(raw, ValueType.BOOL) == BoolValue(value=expected)

    @pytest.mark.parametrize("kind", [ValueType.LIST, ValueType.PAIR])
    def test_composites_are_not_write_targets(self, kind: ValueType) -> None:
        with pytest.raises(UnsupportedWriteTypeError):
            parse_value("1,2", kind)
