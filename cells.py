from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence, Tuple

NULL_TEXT = "NULL"


class CellKind(Enum):
    NULL = "null"
    INTEGER = "integer"
    DECIMAL = "decimal"
    FLOAT = "float"
    BOOLEAN = "boolean"
    TEXT = "text"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    INTERVAL = "interval"
    BINARY = "binary"
    JSON = "json"


@dataclass(frozen=True)
class Cell:
    """One backend value after normalization.

    ``text`` is the canonical textual form; two cells coming from different
    engines compare equal when kind and text match.
    """

    kind: CellKind
    text: str = ""

    @property
    def is_null(self) -> bool:
        return self.kind is CellKind.NULL

    def display(self, null_text: str = NULL_TEXT) -> str:
        if self.is_null:
            return null_text
        return self.text

    def to_json(self) -> Any:
        """Value for JSON export."""
        if self.is_null:
            return None
        if self.kind is CellKind.INTEGER:
            return int(self.text)
        if self.kind is CellKind.FLOAT:
            return float(self.text)
        if self.kind is CellKind.BOOLEAN:
            return self.text == "true"
        if self.kind is CellKind.JSON:
            return json.loads(self.text)
        return self.text


NULL = Cell(CellKind.NULL)

Row = Tuple[Cell, ...]


def _format_interval(value: timedelta) -> str:
    micros = value // timedelta(microseconds=1)
    sign = "-" if micros < 0 else ""
    seconds, micros = divmod(abs(micros), 1_000_000)
    hours, rest = divmod(seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    text = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
    if micros:
        text += f".{micros:06d}"
    return text


def _from_hinted_text(value: str, hint: str) -> Optional[Cell]:
    # SQLite keeps temporal values as text; the declared type tells us what it is.
    try:
        if "timestamp" in hint or "datetime" in hint:
            return Cell(CellKind.DATETIME, datetime.fromisoformat(value).isoformat(sep=" "))
        if hint.startswith("date"):
            return Cell(CellKind.DATE, date.fromisoformat(value).isoformat())
        if hint.startswith("time"):
            return Cell(CellKind.TIME, time.fromisoformat(value).isoformat())
    except ValueError:
        return None
    if hint.startswith("json"):
        try:
            return Cell(CellKind.JSON, json.dumps(json.loads(value), ensure_ascii=False))
        except ValueError:
            return None
    return None


def normalize(value: Any, hint: str = "") -> Cell:
    """Map a driver-native value to exactly one Cell.

    ``hint`` is an optional lower-cased declared type supplied by the adapter
    for engines whose drivers do not convert values themselves.
    """
    if value is None:
        return NULL
    hint = (hint or "").lower()

    if isinstance(value, bool):
        return Cell(CellKind.BOOLEAN, "true" if value else "false")
    if isinstance(value, int):
        if "bool" in hint:
            return Cell(CellKind.BOOLEAN, "true" if value else "false")
        if hint.startswith(("decimal", "numeric")):
            return Cell(CellKind.DECIMAL, str(value))
        return Cell(CellKind.INTEGER, str(value))
    if isinstance(value, Decimal):
        return Cell(CellKind.DECIMAL, str(value))
    if isinstance(value, float):
        if hint.startswith(("decimal", "numeric")):
            return Cell(CellKind.DECIMAL, str(Decimal(repr(value))))
        return Cell(CellKind.FLOAT, repr(value))
    if isinstance(value, datetime):
        return Cell(CellKind.DATETIME, value.isoformat(sep=" "))
    if isinstance(value, date):
        return Cell(CellKind.DATE, value.isoformat())
    if isinstance(value, time):
        return Cell(CellKind.TIME, value.isoformat())
    if isinstance(value, timedelta):
        # MySQL hands TIME columns back as timedelta
        if hint.startswith("time"):
            return Cell(CellKind.TIME, _format_interval(value))
        return Cell(CellKind.INTERVAL, _format_interval(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if hint == "bit":
            return Cell(CellKind.INTEGER, str(int.from_bytes(raw, "big")))
        return Cell(CellKind.BINARY, "0x" + raw.hex())
    if isinstance(value, (dict, list)):
        return Cell(CellKind.JSON, json.dumps(value, ensure_ascii=False, default=str))
    if isinstance(value, str):
        if hint:
            hinted = _from_hinted_text(value, hint)
            if hinted is not None:
                return hinted
        return Cell(CellKind.TEXT, value)
    return Cell(CellKind.TEXT, str(value))


def normalize_row(values: Sequence[Any], hints: Optional[Sequence[str]] = None) -> Row:
    if not hints:
        return tuple(normalize(v) for v in values)
    padded = list(hints) + [""] * (len(values) - len(hints))
    return tuple(normalize(v, h) for v, h in zip(values, padded))


def normalize_rows(rows: Iterable[Sequence[Any]], hints: Optional[Sequence[str]] = None) -> List[Row]:
    return [normalize_row(row, hints) for row in rows]


def text_row(*values: Optional[str]) -> Row:
    """Row of TEXT cells, used for metadata built by the adapters themselves."""
    return tuple(NULL if v is None else Cell(CellKind.TEXT, v) for v in values)
