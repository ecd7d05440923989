"""Tests for value normalization into cells."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal

from cells import NULL, NULL_TEXT, Cell, CellKind, normalize, normalize_row, text_row


class TestNull:
    def test_none_is_null(self):
        assert normalize(None) is NULL
        assert NULL.is_null

    def test_null_distinct_from_empty_string(self):
        empty = normalize("")
        assert empty.kind is CellKind.TEXT
        assert empty != NULL
        assert empty.display() == ""
        assert NULL.display() == NULL_TEXT

    def test_custom_null_text(self):
        assert NULL.display("∅") == "∅"

    def test_null_exports_as_json_null(self):
        assert NULL.to_json() is None
        assert normalize("").to_json() == ""


class TestNumbers:
    def test_integer(self):
        assert normalize(42) == Cell(CellKind.INTEGER, "42")

    def test_bool_before_int(self):
        assert normalize(True) == Cell(CellKind.BOOLEAN, "true")

    def test_int_with_boolean_hint(self):
        assert normalize(0, "boolean") == Cell(CellKind.BOOLEAN, "false")

    def test_decimal_keeps_precision(self):
        assert normalize(Decimal("12.50")) == Cell(CellKind.DECIMAL, "12.50")

    def test_float_under_decimal_hint(self):
        """SQLite returns REAL for DECIMAL columns; keep the shortest repr."""
        assert normalize(9.5, "decimal(10,2)") == Cell(CellKind.DECIMAL, "9.5")

    def test_float(self):
        cell = normalize(0.1)
        assert cell.kind is CellKind.FLOAT
        assert cell.to_json() == 0.1


class TestTemporal:
    def test_datetime(self):
        cell = normalize(datetime(2024, 1, 2, 3, 4, 5))
        assert cell == Cell(CellKind.DATETIME, "2024-01-02 03:04:05")

    def test_timestamp_text_with_hint(self):
        cell = normalize("2024-01-02 03:04:05", "timestamp")
        assert cell == normalize(datetime(2024, 1, 2, 3, 4, 5))

    def test_unparseable_timestamp_stays_text(self):
        assert normalize("yesterday", "timestamp") == Cell(CellKind.TEXT, "yesterday")

    def test_date_and_time(self):
        assert normalize(date(2024, 5, 6)) == Cell(CellKind.DATE, "2024-05-06")
        assert normalize(time(7, 8, 9)) == Cell(CellKind.TIME, "07:08:09")

    def test_mysql_time_as_timedelta(self):
        assert normalize(timedelta(hours=26, seconds=5), "time") == Cell(CellKind.TIME, "26:00:05")

    def test_interval(self):
        cell = normalize(timedelta(minutes=-1, microseconds=500))
        assert cell.kind is CellKind.INTERVAL
        assert cell.text == "-00:00:59.999500"


class TestOther:
    def test_binary_as_hex(self):
        assert normalize(b"\x00\xff") == Cell(CellKind.BINARY, "0x00ff")
        assert normalize(memoryview(b"ab")).text == "0x6162"

    def test_mysql_bit(self):
        assert normalize(b"\x01\x00", "bit") == Cell(CellKind.INTEGER, "256")

    def test_json_value(self):
        cell = normalize({"a": [1, 2]})
        assert cell.kind is CellKind.JSON
        assert cell.to_json() == {"a": [1, 2]}

    def test_json_text_with_hint(self):
        assert normalize('{"a":1}', "json") == Cell(CellKind.JSON, '{"a": 1}')

    def test_unknown_type_falls_back_to_text(self):
        class Point:
            def __str__(self):
                return "(1,2)"

        assert normalize(Point()) == Cell(CellKind.TEXT, "(1,2)")


class TestRows:
    def test_hints_shorter_than_row(self):
        row = normalize_row([1, "2024-01-01"], ["integer"])
        assert row == (Cell(CellKind.INTEGER, "1"), Cell(CellKind.TEXT, "2024-01-01"))

    def test_text_row_maps_none_to_null(self):
        assert text_row("a", None) == (Cell(CellKind.TEXT, "a"), NULL)
