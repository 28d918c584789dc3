"""
Value Dictionary with Integer ID Encoding.

Literal attribute values (strings, longs, doubles, booleans) are interned to
integer ValueIds so that the fact log can hold every datom as four integer
columns. The value kind lives in the high bits of the id, the same tagged-id
layout used for entity ids.

The dictionary is append-only: interning during a transaction that later
fails leaves unreferenced ids behind, which is harmless.
"""

from __future__ import annotations

from enum import IntEnum
from threading import Lock
from typing import Any, Optional

import polars as pl


class ValueKind(IntEnum):
    """Literal value kinds, encoded in the high bits of a ValueId."""
    STRING = 0
    LONG = 1
    DOUBLE = 2
    BOOLEAN = 3


ValueId = int

KIND_SHIFT = 56
KIND_MASK = 0xF
PAYLOAD_MASK = (1 << KIND_SHIFT) - 1


def make_value_id(kind: ValueKind, payload: int) -> ValueId:
    return (kind << KIND_SHIFT) | (payload & PAYLOAD_MASK)


def get_value_kind(value_id: ValueId) -> ValueKind:
    return ValueKind((value_id >> KIND_SHIFT) & KIND_MASK)


def kind_of(value: Any) -> ValueKind:
    """Infer the kind of a Python value. bool is checked before int."""
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int):
        return ValueKind.LONG
    if isinstance(value, float):
        return ValueKind.DOUBLE
    if isinstance(value, str):
        return ValueKind.STRING
    raise TypeError(f"Unsupported literal value: {value!r} ({type(value).__name__})")


def _to_lex(kind: ValueKind, value: Any) -> str:
    if kind == ValueKind.BOOLEAN:
        return "true" if value else "false"
    if kind == ValueKind.DOUBLE:
        return repr(float(value))
    return str(value)


def _from_lex(kind: ValueKind, lex: str) -> Any:
    if kind == ValueKind.BOOLEAN:
        return lex == "true"
    if kind == ValueKind.LONG:
        return int(lex)
    if kind == ValueKind.DOUBLE:
        return float(lex)
    return lex


class ValueDict:
    """
    Bidirectional mapping between literal values and ValueIds.

    Keys are (kind, value) pairs so that True and 1 never share an id.
    """

    def __init__(self):
        self._lock = Lock()
        self._value_to_id: dict[tuple[ValueKind, Any], ValueId] = {}
        self._id_to_value: dict[ValueId, Any] = {}
        self._next_payload: dict[ValueKind, int] = {kind: 0 for kind in ValueKind}

    def __len__(self) -> int:
        return len(self._id_to_value)

    def intern(self, value: Any, kind: Optional[ValueKind] = None) -> ValueId:
        """Get or create the id for a value."""
        kind = kind_of(value) if kind is None else kind
        if kind == ValueKind.DOUBLE:
            value = float(value)
        key = (kind, value)
        with self._lock:
            existing = self._value_to_id.get(key)
            if existing is not None:
                return existing
            payload = self._next_payload[kind]
            self._next_payload[kind] = payload + 1
            value_id = make_value_id(kind, payload)
            self._value_to_id[key] = value_id
            self._id_to_value[value_id] = value
            return value_id

    def lookup(self, value: Any, kind: Optional[ValueKind] = None) -> Optional[ValueId]:
        """Get the id for a value without creating one."""
        kind = kind_of(value) if kind is None else kind
        if kind == ValueKind.DOUBLE:
            value = float(value)
        return self._value_to_id.get((kind, value))

    def get(self, value_id: ValueId) -> Any:
        return self._id_to_value[value_id]

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dataframe(self) -> pl.DataFrame:
        ids = list(self._id_to_value.keys())
        return pl.DataFrame(
            {
                "value_id": ids,
                "kind": [int(get_value_kind(i)) for i in ids],
                "lex": [_to_lex(get_value_kind(i), self._id_to_value[i]) for i in ids],
            },
            schema={"value_id": pl.Int64, "kind": pl.Int8, "lex": pl.Utf8},
        )

    @classmethod
    def from_dataframe(cls, df: pl.DataFrame) -> "ValueDict":
        values = cls()
        for value_id, kind_int, lex in df.select(["value_id", "kind", "lex"]).iter_rows():
            kind = ValueKind(kind_int)
            value = _from_lex(kind, lex)
            values._value_to_id[(kind, value)] = value_id
            values._id_to_value[value_id] = value
            payload = value_id & PAYLOAD_MASK
            if payload >= values._next_payload[kind]:
                values._next_payload[kind] = payload + 1
        return values
